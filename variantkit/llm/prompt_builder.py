from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from variantkit.config.schema import PromptSettings
from variantkit.core.models import ElementDatabase, ElementRecord, PageData, SelectedElement, VariationSpec
from variantkit.llm.messages import ChatMessage, image_part, system_message, text_part, user_message
from variantkit.llm.prompts import GENERATION_SYSTEM_PROMPT, RESPONSE_SCHEMA_EXAMPLE, WAIT_FOR_ELEMENT_NOTE

LEVEL_ORDER = {"primary": 0, "proximity": 1, "structure": 2}
CONTAINER_KEYWORDS = ("background", "section", "container", "this area", "this block", "wrapper")
VISIBLE_TEXT_LIMIT = 15
SCREENSHOT_NOTE = (
    "FULL PAGE SCREENSHOT (BEFORE ANY CHANGES): use it to match the page's brand colors, "
    "typography, button styles and spacing."
)


def select_prompt_elements(
    database: ElementDatabase,
    settings: PromptSettings,
    selected_element: SelectedElement | None = None,
) -> list[ElementRecord]:
    """Picks the records the prompt covers, in a deterministic order.

    Every record survives unless a selected scope filters the list; the
    `max_elements` cap only applies to the serialized detail block.
    """

    elements = list(database.elements)
    if database.is_element_focused:
        elements.sort(key=lambda item: LEVEL_ORDER.get(item.level, len(LEVEL_ORDER)))
    if selected_element and len(elements) >= settings.scope_filter_min_elements:
        scoped = filter_to_scope(elements, selected_element)
        if scoped:
            elements = scoped
    return elements


def filter_to_scope(elements: Sequence[ElementRecord], selected_element: SelectedElement) -> list[ElementRecord]:
    token = selected_element.selector.replace("#", "").strip()
    scoped = []
    for element in elements:
        if element.selector == selected_element.selector:
            scoped.append(element)
        elif token and (token in element.selector or (element.section and token in element.section)):
            scoped.append(element)
    return scoped


def build_selector_whitelist(
    database: ElementDatabase,
    elements: Sequence[ElementRecord],
    selected_element: SelectedElement | None = None,
) -> list[str]:
    """Selected element first when it is a database selector, then database order."""

    covered = {element.selector for element in elements}
    whitelist: list[str] = []
    if selected_element and selected_element.selector in database.selectors:
        whitelist.append(selected_element.selector)
    for selector in database.selectors:
        if selector in covered and selector not in whitelist:
            whitelist.append(selector)
    return whitelist


def compact_element(element: ElementRecord, settings: PromptSettings) -> dict[str, Any]:
    visual = {
        key: value
        for key, value in element.visual.model_dump().items()
        if value not in (None, "", 0)
    }
    compact: dict[str, Any] = {
        "selector": element.selector,
        "tag": element.tag,
        "text": element.text[: settings.text_limit],
        "level": element.level,
        "visual": visual,
        "classes": list(element.classes[: settings.max_classes]),
        "id": element.id,
        "section": element.section,
    }
    return {key: value for key, value in compact.items() if value not in (None, "", [], {})}


def build_generation_prompt(
    page_data: PageData,
    description: str,
    variation_specs: Sequence[VariationSpec],
    settings: PromptSettings,
    selected_element: SelectedElement | None = None,
    conversation_context: str | None = None,
) -> str:
    """Builds the code-generation prompt.

    The output depends only on the arguments, so identical inputs give
    identical prompts.
    """

    database = page_data.element_database
    elements = select_prompt_elements(database, settings, selected_element)
    whitelist = build_selector_whitelist(database, elements, selected_element)
    specs = list(variation_specs) or [VariationSpec(name="Variation 1")]

    sections = [_whitelist_section(whitelist)]
    if selected_element:
        sections.append(_scope_section(selected_element, description))
    sections.append(_context_mode_section(database))
    sections.append(f"PAGE: {database.metadata.title or 'Untitled'} ({database.metadata.url or 'unknown url'})")
    sections.append(f"USER REQUEST:\n{description.strip()}")
    if conversation_context:
        sections.append(f"PREVIOUS CONVERSATION:\n{conversation_context.strip()}")
    detail = elements[: settings.max_elements]
    visible = _visible_text_section(detail)
    if visible:
        sections.append(visible)
    compact = [compact_element(element, settings) for element in detail]
    sections.append("ELEMENT DATABASE:\n" + json.dumps(compact, indent=2, sort_keys=True))
    sections.append(_rules_section(settings))
    sections.append(_variations_section(specs))
    sections.append(WAIT_FOR_ELEMENT_NOTE)
    sections.append(_output_section(len(specs)))
    return "\n\n".join(sections)


def build_generation_messages(prompt: str, screenshot: str | None = None, system_prompt: str | None = None) -> list[ChatMessage]:
    parts = []
    if screenshot:
        parts.extend([image_part(screenshot), text_part(SCREENSHOT_NOTE)])
    parts.append(text_part(prompt))
    return [system_message(system_prompt or GENERATION_SYSTEM_PROMPT), user_message(*parts)]


def is_container_request(description: str) -> bool:
    lowered = description.lower()
    return any(keyword in lowered for keyword in CONTAINER_KEYWORDS)


def _whitelist_section(whitelist: Sequence[str]) -> str:
    lines = ["YOU MUST ONLY USE THESE SELECTORS (copy them exactly):"]
    lines.extend(f'{index}. "{selector}"' for index, selector in enumerate(whitelist, start=1))
    lines.append("IF YOU USE ANY SELECTOR NOT IN THE LIST ABOVE, THE CODE WILL FAIL.")
    return "\n".join(lines)


def _scope_section(selected_element: SelectedElement, description: str) -> str:
    lines = [
        "SELECTED AREA (SEARCH SCOPE):",
        f'The user selected "{selected_element.selector}" ({selected_element.tag or "element"}).',
        "This is the area to search in, not necessarily the element to change.",
        "Find the element inside this area whose type or text matches the request and modify that element.",
    ]
    if is_container_request(description):
        lines.append("The request is about the area itself, so apply the change to the selected container.")
    else:
        lines.append("Only modify the container itself for background, section or container-level requests.")
    return "\n".join(lines)


def _context_mode_section(database: ElementDatabase) -> str:
    if database.is_element_focused:
        focus = database.metadata.focus_path or "the selected element"
        return (
            "CONTEXT MODE: element-focused. The database covers "
            f"{focus} (primary), nearby elements (proximity) and surrounding structure."
        )
    return "CONTEXT MODE: full-page. The database covers the main interactive elements of the page."


def _visible_text_section(elements: Sequence[ElementRecord]) -> str:
    lines = [
        f'- {element.selector}: "{element.text[:60]}"'
        for element in elements[:VISIBLE_TEXT_LIMIT]
        if element.text.strip()
    ]
    if not lines:
        return ""
    return "KEY VISIBLE TEXT:\n" + "\n".join(lines)


def _rules_section(settings: PromptSettings) -> str:
    return "\n".join(
        [
            "RULES:",
            "1. Use only selectors from the numbered list.",
            "2. Prefer CSS for visual changes and JavaScript for text, structure and behavior.",
            "3. Use !important in CSS where page styles may override yours.",
            "4. Guard JavaScript so it only applies once (for example with element.dataset.varApplied).",
            f"5. Keep each variation's CSS under {settings.max_css_chars} characters "
            f"and JavaScript under {settings.max_js_chars} characters.",
            "6. Do not use external libraries, alerts or console output.",
        ]
    )


def _variations_section(specs: Sequence[VariationSpec]) -> str:
    lines = ["VARIATIONS TO CREATE:"]
    for index, spec in enumerate(specs, start=1):
        detail = f": {spec.description}" if spec.description else ""
        lines.append(f"{index}. {spec.name}{detail}")
    lines.append("Name each variation after the change it makes.")
    return "\n".join(lines)


def _output_section(count: int) -> str:
    return "\n".join(
        [
            "OUTPUT FORMAT (STRICT JSON, REQUIRED):",
            f"Return one JSON object with exactly {count} item(s) in \"variations\", "
            "each with number, name, css and js, plus globalCSS and globalJS strings.",
            "No markdown, no explanation, no text outside the JSON object.",
            "Example:",
            RESPONSE_SCHEMA_EXAMPLE,
        ]
    )
