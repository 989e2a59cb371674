from __future__ import annotations

import logging

from variantkit.core.models import ElementDatabase, GeneratedCode, SelectorWarning, Variation
from variantkit.utils.selectors import (
    extract_dynamic_names,
    extract_selectors,
    is_document_selector,
    is_specific_selector,
    parse_compound,
    references_names,
    rewrite_css_selectors,
    rewrite_js_selector,
    split_pseudo,
    strip_pseudo,
)

log = logging.getLogger(__name__)


class SelectorValidator:
    """Checks generated code against the element database and repairs what it safely can."""

    def validate(self, code: GeneratedCode, database: ElementDatabase) -> list[SelectorWarning]:
        known = database.known_selectors()
        dynamic_classes, dynamic_ids = extract_dynamic_names(code.combined_js())
        warnings: list[SelectorWarning] = []
        seen: set[tuple[str, str]] = set()
        for variation_number, css, js in _code_blocks(code):
            for selector, context in extract_selectors(css, js):
                base = strip_pseudo(selector)
                key = (base, context)
                if key in seen:
                    continue
                if selector in known or base in known:
                    continue
                seen.add(key)
                kind = "unknown"
                if is_document_selector(selector):
                    kind = "document"
                elif references_names(selector, dynamic_classes, dynamic_ids):
                    kind = "dynamic"
                warnings.append(
                    SelectorWarning(
                        selector=selector,
                        context=context,
                        variation_number=variation_number,
                        kind=kind,
                    )
                )
        return warnings

    def repair(self, code: GeneratedCode, database: ElementDatabase) -> GeneratedCode:
        """Rewrites generic tag.class selectors to their single specific database match.

        The code is updated in place and returned. Running it again is a no-op
        because repaired selectors are database selectors.
        """

        mapping: dict[str, str] = {}
        for warning in self.validate(code, database):
            if warning.kind != "unknown":
                continue
            base, _ = split_pseudo(warning.selector)
            if base in mapping:
                continue
            replacement = self.find_replacement(base, database)
            if replacement:
                mapping[base] = replacement
        if not mapping:
            return code

        for generic, specific in mapping.items():
            log.info("Repairing generic selector %s -> %s", generic, specific)

        def replace(selector: str) -> str | None:
            base, suffix = split_pseudo(selector)
            if base in mapping:
                return mapping[base] + suffix
            return None

        for variation in code.variations:
            self._repair_variation(variation, mapping, replace)
        code.global_css = rewrite_css_selectors(code.global_css, replace)
        for generic, specific in mapping.items():
            code.global_js = rewrite_js_selector(code.global_js, generic, specific)
        return code

    @staticmethod
    def find_replacement(selector: str, database: ElementDatabase) -> str | None:
        compound = parse_compound(selector)
        if not compound or compound.get("attributes") or compound["id"] or compound["pseudos"]:
            return None
        if not compound["tag"] or compound["tag"] == "*" or not compound["classes"]:
            return None
        wanted = set(compound["classes"])
        matches = {
            element.selector
            for element in database.elements
            if element.tag == compound["tag"]
            and wanted.issubset(element.classes)
            and is_specific_selector(element.selector)
        }
        if len(matches) != 1:
            return None
        return matches.pop()

    @staticmethod
    def _repair_variation(variation: Variation, mapping: dict[str, str], replace) -> None:
        variation.css = rewrite_css_selectors(variation.css, replace)
        for generic, specific in mapping.items():
            variation.js = rewrite_js_selector(variation.js, generic, specific)


def _code_blocks(code: GeneratedCode):
    if code.global_css or code.global_js:
        yield None, code.global_css, code.global_js
    for variation in code.variations:
        yield variation.number, variation.css, variation.js


def log_unrepaired(warnings: list[SelectorWarning]) -> None:
    for warning in warnings:
        log.warning("Selector warning: %s", warning.message)
