from __future__ import annotations

import re
from collections.abc import Callable, Iterator

DYNAMIC_PSEUDO_PATTERN = re.compile(
    r"::?(?:hover|active|focus-visible|focus-within|focus|visited|link|checked|disabled|enabled|"
    r"before|after|placeholder|selection|first-letter|first-line|marker)(?![\w-])"
)
COMPOUND_PATTERN = re.compile(
    r"^(?P<tag>[a-zA-Z][\w-]*|\*)?(?P<rest>(?:[.#][\w-]+|:[\w-]+(?:\([^()]*\))?|\[[^\]]*\])*)$"
)
PART_PATTERN = re.compile(r"([.#])([\w-]+)|:([\w-]+)(?:\(([^()]*)\))?")
WAIT_FOR_ELEMENT_PATTERN = re.compile(r"waitForElement\s*\(\s*(['\"`])((?:(?!\1).)+?)\1", re.DOTALL)
QUERY_SELECTOR_PATTERN = re.compile(
    r"(?:querySelector|querySelectorAll|closest|matches)\s*\(\s*(['\"`])((?:(?!\1).)+?)\1",
    re.DOTALL,
)
CSS_COMMENT_PATTERN = re.compile(r"/\*.*?\*/", re.DOTALL)
DECLARATION_PROPERTY_PATTERN = re.compile(r"(?:^|;)\s*(-{0,2}[a-zA-Z][\w-]*)\s*:")
CLASS_ASSIGN_PATTERN = re.compile(r"\.className\s*=\s*(['\"`])([^'\"`]*)\1")
CLASS_LIST_ADD_PATTERN = re.compile(r"\.classList\.add\s*\(([^)]*)\)")
ID_ASSIGN_PATTERN = re.compile(r"\.id\s*=\s*(['\"`])([\w-]+)\1")
SET_ATTRIBUTE_PATTERN = re.compile(r"setAttribute\s*\(\s*['\"](class|id)['\"]\s*,\s*(['\"`])([^'\"`]*)\2")
HTML_ATTRIBUTE_PATTERN = re.compile(r"\b(class|id)\s*=\s*\\?(['\"])([^'\"\\]*)\\?\2")
QUOTED_WORD_PATTERN = re.compile(r"(['\"`])([\w-]+)\1")

GROUPING_AT_RULES = {"media", "supports", "container", "layer", "document"}
DOCUMENT_SELECTORS = {"html", "body", ":root", "*", "html body"}
POSITIONAL_PSEUDOS = {"nth-child", "nth-of-type", "first-child", "last-child", "first-of-type", "last-of-type"}


def strip_css_comments(css: str) -> str:
    return CSS_COMMENT_PATTERN.sub(lambda match: " " * len(match.group(0)), css)


def iter_rule_heads(css: str) -> Iterator[tuple[int, int, str]]:
    """Yields (start, end, text) for every style-rule head in a stylesheet.

    Grouping at-rules such as @media are descended into; the bodies of
    other at-rules (@keyframes, @font-face) are skipped. Positions refer
    to the original string so callers can rewrite heads in place.
    """

    source = strip_css_comments(css)
    length = len(source)
    position = 0
    head_start = 0
    while position < length:
        char = source[position]
        if char in "'\"":
            position = _skip_string(source, position)
            continue
        if char == ";":
            head_start = position + 1
        elif char == "}":
            head_start = position + 1
        elif char == "{":
            head = source[head_start:position]
            stripped = head.strip()
            if stripped.startswith("@"):
                name = re.match(r"@([\w-]+)", stripped)
                if name and name.group(1).lower() in GROUPING_AT_RULES:
                    position += 1
                    head_start = position
                    continue
                position = _skip_block(source, position)
                head_start = position
                continue
            if stripped:
                offset = len(head) - len(head.lstrip())
                start = head_start + offset
                yield start, start + len(stripped), stripped
            position = _skip_block(source, position)
            head_start = position
            continue
        position += 1


def split_selector_list(head: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in head:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth = max(depth - 1, 0)
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def extract_css_selectors(css: str) -> list[str]:
    selectors: list[str] = []
    for _, _, head in iter_rule_heads(css or ""):
        selectors.extend(split_selector_list(head))
    return selectors


def extract_css_declarations(css: str) -> list[tuple[str, str]]:
    """(selector, property) pairs for the declarations of every style rule."""

    source = strip_css_comments(css or "")
    pairs: list[tuple[str, str]] = []
    for _, end, head in iter_rule_heads(source):
        brace = source.find("{", end)
        body = source[brace + 1 : _skip_block(source, brace)].removesuffix("}")
        properties = [match.group(1).lower() for match in DECLARATION_PROPERTY_PATTERN.finditer(body)]
        for selector in split_selector_list(head):
            pairs.extend((selector, name) for name in properties)
    return pairs


def extract_js_selectors(js: str) -> list[str]:
    selectors: list[str] = []
    for match in WAIT_FOR_ELEMENT_PATTERN.finditer(js or ""):
        value = match.group(2).strip()
        if match.group(1) == "`" and "${" in value:
            continue
        selectors.append(value)
    return selectors


def extract_query_selectors(js: str) -> list[str]:
    """Selectors passed to waitForElement or any querySelector-style call."""

    selectors = extract_js_selectors(js)
    for match in QUERY_SELECTOR_PATTERN.finditer(js or ""):
        value = match.group(2).strip()
        if "${" not in value:
            selectors.append(value)
    return selectors


def extract_selectors(css: str, js: str) -> list[tuple[str, str]]:
    """Returns (selector, context) pairs for one block of CSS and JS."""

    pairs = [(selector, "css") for selector in extract_css_selectors(css)]
    pairs.extend((selector, "js") for selector in extract_js_selectors(js))
    return pairs


def strip_pseudo(selector: str) -> str:
    stripped = DYNAMIC_PSEUDO_PATTERN.sub("", selector)
    return re.sub(r"\s+", " ", stripped).strip()


def split_pseudo(selector: str) -> tuple[str, str]:
    """Splits a trailing run of dynamic pseudo-classes off a selector."""

    match = re.search(r"(?:" + DYNAMIC_PSEUDO_PATTERN.pattern + r")+$", selector.strip())
    if not match:
        return selector.strip(), ""
    return selector.strip()[: match.start()], match.group(0)


def parse_compound(selector: str) -> dict | None:
    """Parses a single compound selector such as ``button.cta:nth-child(2)``.

    Returns None for selector lists, combinators and anything unusual.
    """

    candidate = selector.strip()
    if not candidate or any(char in candidate for char in " >+~,"):
        return None
    match = COMPOUND_PATTERN.match(candidate)
    if not match:
        return None
    compound = {"tag": (match.group("tag") or "").lower(), "id": None, "classes": [], "pseudos": []}
    rest = match.group("rest")
    if "[" in rest:
        compound["attributes"] = True
        rest = re.sub(r"\[[^\]]*\]", "", rest)
    for part in PART_PATTERN.finditer(rest):
        if part.group(1) == "#":
            compound["id"] = part.group(2)
        elif part.group(1) == ".":
            compound["classes"].append(part.group(2))
        elif part.group(3):
            compound["pseudos"].append(part.group(3).lower())
    return compound


def is_specific_selector(selector: str) -> bool:
    if "#" in selector:
        return True
    return any(f":{pseudo}" in selector for pseudo in POSITIONAL_PSEUDOS)


def is_document_selector(selector: str) -> bool:
    return strip_pseudo(selector).lower() in DOCUMENT_SELECTORS


def extract_dynamic_names(js: str) -> tuple[set[str], set[str]]:
    """Collects class names and ids the script assigns to nodes it creates."""

    classes: set[str] = set()
    ids: set[str] = set()
    if not js or not any(token in js for token in ("createElement", "innerHTML", "insertAdjacentHTML")):
        return classes, ids
    for match in CLASS_ASSIGN_PATTERN.finditer(js):
        classes.update(match.group(2).split())
    for match in CLASS_LIST_ADD_PATTERN.finditer(js):
        classes.update(item.group(2) for item in QUOTED_WORD_PATTERN.finditer(match.group(1)))
    for match in ID_ASSIGN_PATTERN.finditer(js):
        ids.add(match.group(2))
    for pattern, name_group, value_group in ((SET_ATTRIBUTE_PATTERN, 1, 3), (HTML_ATTRIBUTE_PATTERN, 1, 3)):
        for match in pattern.finditer(js):
            target = classes if match.group(name_group) == "class" else ids
            target.update(match.group(value_group).split())
    return classes, ids


def references_names(selector: str, classes: set[str], ids: set[str]) -> bool:
    for part in PART_PATTERN.finditer(selector):
        if part.group(1) == "." and part.group(2) in classes:
            return True
        if part.group(1) == "#" and part.group(2) in ids:
            return True
    return False


def rewrite_css_selectors(css: str, replace: Callable[[str], str | None]) -> str:
    """Rewrites selectors inside rule heads, leaving declarations untouched."""

    if not css:
        return css
    pieces: list[str] = []
    cursor = 0
    for start, end, head in iter_rule_heads(css):
        rewritten: list[str] = []
        changed = False
        for item in split_selector_list(head):
            replacement = replace(item)
            if replacement and replacement != item:
                changed = True
                rewritten.append(replacement)
            else:
                rewritten.append(item)
        if changed:
            pieces.append(css[cursor:start])
            pieces.append(", ".join(rewritten))
            cursor = end
    pieces.append(css[cursor:])
    return "".join(pieces)


def rewrite_js_selector(js: str, old: str, new: str) -> str:
    if not js:
        return js
    pattern = re.compile(r"(['\"`])" + re.escape(old) + r"\1")
    return pattern.sub(lambda match: f"{match.group(1)}{new}{match.group(1)}", js)


def _skip_string(source: str, position: int) -> int:
    quote = source[position]
    position += 1
    while position < len(source):
        if source[position] == "\\":
            position += 2
            continue
        if source[position] == quote:
            return position + 1
        position += 1
    return position


def _skip_block(source: str, position: int) -> int:
    depth = 0
    while position < len(source):
        char = source[position]
        if char in "'\"":
            position = _skip_string(source, position)
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return position + 1
        position += 1
    return position
