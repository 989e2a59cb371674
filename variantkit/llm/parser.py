from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from variantkit.core.models import GeneratedCode, Variation

log = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"```[ \t]*([\w+-]*)[^\n]*\n(.*?)```", re.DOTALL)
TRUNCATION_MARKER = "// Code was truncated"

VARIATION_HEADER_PATTERNS = (
    re.compile(r"^VARIATION\s+(\d+)\s*[-–—]\s*(.+)$", re.IGNORECASE),
    re.compile(r"^VARIATION\s+(\d+)\s*:\s*(.+)$", re.IGNORECASE),
    re.compile(r"^VARIATION\s+(\d+)\s+([A-Z].*)$", re.IGNORECASE),
    re.compile(r"^VARIATION\s+(\d+)\s*$", re.IGNORECASE),
)
TITLE_PATTERN = re.compile(r"^-{3,}\s*(.+?)\s*-{3,}$")
GLOBAL_HEADER_PATTERN = re.compile(r"^GLOBAL(?:\s+EXPERIENCE)?\s+(CSS|JS|JAVASCRIPT)\s*:?\s*$", re.IGNORECASE)
SECTION_MARKER_PATTERN = re.compile(r"^(CSS|JS|JAVASCRIPT)\s*:\s*(.*)$", re.IGNORECASE)
HEADER_DECORATION_PATTERN = re.compile(r"^[#*\s]+|[#*\s]+$")
FENCE_OPEN_PATTERN = re.compile(r"^```\s*(css|scss|js|javascript)\b", re.IGNORECASE)

CSS_LANGUAGES = {"css", "scss"}
JS_LANGUAGES = {"js", "javascript"}

Strategy = Callable[[str], "GeneratedCode | None"]


def parse_generated_code(raw_text: str) -> GeneratedCode:
    """Turns a model response into variations, trying each strategy in order.

    Never raises: when nothing matches an empty result flagged as
    exhausted is returned and the raw text is logged.
    """

    text = (raw_text or "").strip()
    if text:
        for name, strategy in STRATEGIES:
            try:
                result = strategy(text)
            except (ValueError, TypeError, AttributeError) as exc:
                log.debug("Parse strategy %s failed: %s", name, exc)
                continue
            if result is not None and result.has_variation_code:
                result.parse_strategy = name
                log.debug("Parsed %s variation(s) with %s", len(result.variations), name)
                return result
    log.warning("Could not parse generated code from response: %r", text[:2000])
    return GeneratedCode(exhausted=True)


def parse_strict_json(text: str) -> GeneratedCode | None:
    if not (text.startswith("{") and text.endswith("}")):
        return None
    return _code_from_payload(_loads(text))


def parse_fenced_json(text: str) -> GeneratedCode | None:
    for language, body in iter_fenced_blocks(text):
        candidate = body.strip()
        if language not in ("", "json") or not candidate.startswith("{"):
            continue
        try:
            result = _code_from_payload(_loads(candidate))
        except ValueError:
            continue
        if result is not None:
            return result
    return None


def parse_embedded_json(text: str) -> GeneratedCode | None:
    start = text.find("{")
    if start < 0:
        return None
    candidate = text[start:]
    decoder = json.JSONDecoder(strict=False)
    try:
        payload, _ = decoder.raw_decode(candidate)
        return _code_from_payload(payload)
    except ValueError:
        pass
    repaired = close_truncated_json(candidate)
    if repaired is None:
        return None
    result = _code_from_payload(_loads(repaired))
    if result is None:
        return None
    for variation in result.variations:
        variation.js = f"{variation.js}\n{TRUNCATION_MARKER}" if variation.js else TRUNCATION_MARKER
    log.warning("Recovered truncated JSON response with %s variation(s)", len(result.variations))
    return result


def parse_fenced_code_blocks(text: str) -> GeneratedCode | None:
    css_blocks: list[str] = []
    js_blocks: list[str] = []
    for language, body in iter_fenced_blocks(text):
        if language in CSS_LANGUAGES:
            css_blocks.append(body.strip())
        elif language in JS_LANGUAGES:
            js_blocks.append(body.strip())
    if not css_blocks and not js_blocks:
        return None
    headers = [line for line in text.splitlines() if _match_variation_header(HEADER_DECORATION_PATTERN.sub("", line.strip()))]
    if len(headers) > 1:
        # several labelled variations; the marker parser keeps them apart
        return None
    return GeneratedCode(
        variations=[
            Variation(number=1, name="Variation 1", css="\n\n".join(css_blocks), js="\n\n".join(js_blocks))
        ]
    )


def parse_legacy_markers(text: str) -> GeneratedCode | None:
    """Reads the older plain-text layout of VARIATION headers and CSS:/JS: markers."""

    variations: list[Variation] = []
    globals_ = {"css": [], "js": []}
    current: Variation | None = None
    buffers: dict[str, list[str]] = {"css": [], "js": []}
    section: str | None = None
    fenced = False
    target = "variation"

    def flush() -> None:
        if target == "global":
            for key in ("css", "js"):
                if buffers[key]:
                    globals_[key].append(_clean_block("\n".join(buffers[key])))
        elif current is not None:
            current.css = _join(current.css, _clean_block("\n".join(buffers["css"])))
            current.js = _join(current.js, _clean_block("\n".join(buffers["js"])))
        buffers["css"].clear()
        buffers["js"].clear()

    for raw_line in text.splitlines():
        line = HEADER_DECORATION_PATTERN.sub("", raw_line.strip())
        header = _match_variation_header(line)
        if header is not None:
            flush()
            number, name = header
            current = Variation(number=number, name=name or f"Enhanced Version {number}")
            variations.append(current)
            target, section, fenced = "variation", None, False
            continue
        title = TITLE_PATTERN.match(raw_line.strip())
        if title and not GLOBAL_HEADER_PATTERN.match(title.group(1)):
            flush()
            number = len(variations) + 1
            current = Variation(number=number, name=title.group(1).strip())
            variations.append(current)
            target, section, fenced = "variation", None, False
            continue
        global_header = GLOBAL_HEADER_PATTERN.match(line) or (title and GLOBAL_HEADER_PATTERN.match(title.group(1)))
        if global_header:
            flush()
            target = "global"
            section = "css" if global_header.group(1).lower() == "css" else "js"
            fenced = False
            continue
        fence = FENCE_OPEN_PATTERN.match(raw_line.strip())
        if fence:
            section = "css" if fence.group(1).lower() in CSS_LANGUAGES else "js"
            fenced = True
            continue
        if raw_line.strip().startswith("```"):
            # a bare fence closes a fenced block, or opens one under a CSS:/JS: marker
            if fenced:
                section, fenced = None, False
            else:
                fenced = section is not None
            continue
        marker = SECTION_MARKER_PATTERN.match(line)
        if marker:
            section = "css" if marker.group(1).lower() == "css" else "js"
            fenced = False
            if marker.group(2).strip():
                buffers[section].append(marker.group(2))
            continue
        if section is None:
            continue
        buffers[section].append(raw_line)
    flush()

    variations = [item for item in variations if item.css or item.js]
    global_css = "\n\n".join(item for item in globals_["css"] if item)
    global_js = "\n\n".join(item for item in globals_["js"] if item)
    if not variations:
        return None
    return GeneratedCode(variations=variations, global_css=global_css, global_js=global_js)


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("strict_json", parse_strict_json),
    ("fenced_json", parse_fenced_json),
    ("embedded_json", parse_embedded_json),
    ("fenced_code_blocks", parse_fenced_code_blocks),
    ("legacy_markers", parse_legacy_markers),
)


def iter_fenced_blocks(text: str):
    for match in FENCE_PATTERN.finditer(text):
        yield match.group(1).lower(), match.group(2)


def recover_json_object(text: str) -> dict[str, Any] | None:
    """Best-effort extraction of one JSON object from a model response."""

    stripped = (text or "").strip()
    if not stripped:
        return None
    candidates = [stripped]
    candidates.extend(body.strip() for language, body in iter_fenced_blocks(stripped) if language in ("", "json"))
    for candidate in candidates:
        if not candidate.startswith("{"):
            continue
        try:
            payload = _loads(candidate)
        except ValueError:
            continue
        if isinstance(payload, dict):
            return payload
    start = stripped.find("{")
    if start < 0:
        return None
    try:
        payload, _ = json.JSONDecoder(strict=False).raw_decode(stripped[start:])
    except ValueError:
        repaired = close_truncated_json(stripped[start:])
        if repaired is None:
            return None
        try:
            payload = _loads(repaired)
        except ValueError:
            return None
    return payload if isinstance(payload, dict) else None


def close_truncated_json(text: str) -> str | None:
    """Closes open strings, arrays and objects of a cut-off JSON document."""

    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            if not stack or stack[-1] != char:
                return None
            stack.pop()
            if not stack:
                return None
    if not stack:
        return None
    repaired = text
    if escaped:
        repaired = repaired[:-1]
    if in_string:
        repaired += '"'
    repaired = re.sub(r"[,:\s]+$", "", repaired)
    repaired = re.sub(r',\s*"[^"]*"$', "", repaired) if repaired.endswith('"') and _dangling_key(repaired) else repaired
    return repaired + "".join(reversed(stack))


def _dangling_key(text: str) -> bool:
    """True when the text ends with an object key that never got its value."""

    match = re.search(r'[{,]\s*"[^"]*"$', text)
    return bool(match)


def _loads(text: str) -> Any:
    return json.loads(text, strict=False)


def _code_from_payload(payload: Any) -> GeneratedCode | None:
    if not isinstance(payload, dict):
        return None
    raw_variations = payload.get("variations")
    if not isinstance(raw_variations, list) or not raw_variations:
        return None
    variations: list[Variation] = []
    for index, item in enumerate(raw_variations, start=1):
        if not isinstance(item, dict):
            continue
        number = item.get("number")
        if not isinstance(number, int) or any(existing.number == number for existing in variations):
            number = index
        variations.append(
            Variation(
                number=number,
                name=str(item.get("name") or f"Variation {number}"),
                css=str(item.get("css") or ""),
                js=str(item.get("js") or ""),
            )
        )
    if not variations:
        return None
    return GeneratedCode(
        variations=variations,
        global_css=str(payload.get("globalCSS") or payload.get("global_css") or ""),
        global_js=str(payload.get("globalJS") or payload.get("global_js") or ""),
    )


def _match_variation_header(line: str) -> tuple[int, str] | None:
    for pattern in VARIATION_HEADER_PATTERNS:
        match = pattern.match(line)
        if match:
            name = match.group(2).strip() if match.lastindex and match.lastindex >= 2 else ""
            return int(match.group(1)), name
    return None


def _clean_block(block: str) -> str:
    lines = [line for line in block.splitlines() if not line.strip().startswith("```")]
    return "\n".join(lines).strip()


def _join(existing: str, addition: str) -> str:
    if not addition:
        return existing
    if not existing:
        return addition
    return f"{existing}\n{addition}"
