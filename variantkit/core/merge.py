from __future__ import annotations

import re

from variantkit.core.models import GeneratedCode, MergeViolation
from variantkit.utils.selectors import extract_css_declarations, extract_css_selectors, extract_query_selectors

FUNCTION_DEF_PATTERN = re.compile(r"function\s+([A-Za-z_$][\w$]*)\s*\(")
TEXT_ASSIGN_PATTERN = re.compile(r"\.(?:textContent|innerText)\s*=\s*(['\"`])([^'\"`]+)\1")
REMOVAL_WORDS = ("remove", "delete", "undo", "revert", "get rid of", "start over", "replace everything")
TEXT_WORDS = ("text", "copy", "wording", "headline", "label", "say", "rename", "title")


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for value in values:
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


def extract_contract(code: GeneratedCode) -> dict[str, list[str]]:
    """What a refinement of this code must keep.

    Styles are listed as ``selector { property }`` so a rule that survives
    with some of its declarations dropped is still caught.
    """

    css = code.combined_css()
    js = code.combined_js()
    return {
        "selectors": _unique(extract_css_selectors(css) + extract_query_selectors(js)),
        "functions": _unique(FUNCTION_DEF_PATTERN.findall(js)),
        "texts": _unique([match.group(2) for match in TEXT_ASSIGN_PATTERN.finditer(js)]),
        "styles": _unique([f"{selector} {{ {name} }}" for selector, name in extract_css_declarations(css)]),
    }


def detect_merge_violations(previous: GeneratedCode, new: GeneratedCode, request: str = "") -> list[MergeViolation]:
    """Lists parts of the applied code that a refinement silently dropped.

    Requests that explicitly ask to remove or start over are exempt, and text
    changes are not checked when the request is about wording.
    """

    lowered = request.lower()
    if any(word in lowered for word in REMOVAL_WORDS):
        return []
    before = extract_contract(previous)
    after = extract_contract(new)
    new_source = f"{new.combined_css()}\n{new.combined_js()}"

    violations: list[MergeViolation] = []
    kept_selectors = set(after["selectors"])
    for selector in before["selectors"]:
        if selector not in kept_selectors and selector not in new_source:
            violations.append(MergeViolation(kind="selector", value=selector))
    missing = {item.value for item in violations}
    kept_styles = set(extract_css_declarations(new.combined_css()))
    for selector, name in extract_css_declarations(previous.combined_css()):
        if selector in missing or _style_kept(selector, name, kept_styles):
            continue
        value = f"{selector} {{ {name} }}"
        if value not in missing:
            missing.add(value)
            violations.append(MergeViolation(kind="style", value=value))
    kept_functions = set(after["functions"])
    for name in before["functions"]:
        if name not in kept_functions:
            violations.append(MergeViolation(kind="function", value=name))
    if not any(word in lowered for word in TEXT_WORDS):
        for text in before["texts"]:
            if text not in new_source:
                violations.append(MergeViolation(kind="text", value=text))
    return violations


def _style_kept(selector: str, name: str, kept: set[tuple[str, str]]) -> bool:
    # background and background-color count as the same property
    return any(
        other_selector == selector
        and (other == name or other.startswith(f"{name}-") or name.startswith(f"{other}-"))
        for other_selector, other in kept
    )
