from __future__ import annotations

from tests.helpers import make_code
from variantkit.core.models import GeneratedCode, Variation
from variantkit.core.selector_validator import SelectorValidator
from variantkit.utils.selectors import (
    extract_css_selectors,
    extract_dynamic_names,
    extract_js_selectors,
    parse_compound,
    rewrite_js_selector,
    split_pseudo,
    strip_pseudo,
)


def test_css_selectors_skip_comments_and_keyframes():
    css = (
        "/* a { color: blue; } */\n"
        "@media (max-width: 600px) { #cta, h1.hero-title { color: red; } }\n"
        "@keyframes pulse { from { opacity: 0; } to { opacity: 1; } }\n"
        ".x:hover { content: '{'; }"
    )
    assert extract_css_selectors(css) == ["#cta", "h1.hero-title", ".x:hover"]


def test_js_selectors_ignore_interpolated_templates():
    js = "waitForElement('#cta', cb); waitForElement(\"h1.hero-title\", cb); waitForElement(`#item-${i}`, cb);"
    assert extract_js_selectors(js) == ["#cta", "h1.hero-title"]


def test_pseudo_helpers():
    assert strip_pseudo("#cta:hover") == "#cta"
    assert strip_pseudo("a:nth-child(2)::before") == "a:nth-child(2)"
    assert split_pseudo("button.btn:hover") == ("button.btn", ":hover")
    assert split_pseudo("#cta") == ("#cta", "")
    assert parse_compound("button.btn.large") == {"tag": "button", "id": None, "classes": ["btn", "large"], "pseudos": []}
    assert parse_compound("nav > a") is None


def test_dynamic_names_need_element_creation():
    js = "const bar = document.createElement('div'); bar.className = 'promo-bar wide'; bar.id = 'promo';"
    assert extract_dynamic_names(js) == ({"promo-bar", "wide"}, {"promo"})
    assert extract_dynamic_names("el.className = 'promo-bar';") == (set(), set())


def test_rewrite_js_selector_only_touches_exact_strings():
    js = "waitForElement('button.btn', cb); waitForElement('button.btn-large', cb);"
    assert rewrite_js_selector(js, "button.btn", "#cta") == (
        "waitForElement('#cta', cb); waitForElement('button.btn-large', cb);"
    )


def test_known_selectors_produce_no_warnings(element_database):
    code = make_code(
        css="#cta:hover { color: red; }\nh1.hero-title { font-size: 3rem; }\n[data-testid='cta'] { outline: 0; }",
        js="waitForElement('#cta', (el) => { el.textContent = 'Go'; });",
    )
    assert SelectorValidator().validate(code, element_database) == []


def test_unknown_selector_warns_once_per_context(element_database):
    code = GeneratedCode(
        variations=[
            Variation(number=1, name="A", css=".missing { color: red; }\n.missing:hover { color: blue; }"),
            Variation(number=2, name="B", css=".missing { color: green; }", js="waitForElement('.missing', cb);"),
        ]
    )
    warnings = SelectorValidator().validate(code, element_database)
    assert [(item.selector, item.context, item.variation_number) for item in warnings] == [
        (".missing", "css", 1),
        (".missing", "js", 2),
    ]
    assert all(item.kind == "unknown" for item in warnings)
    assert "not in the element database" in warnings[0].message


def test_document_and_dynamic_selectors_are_classified(element_database):
    code = make_code(
        css="body { margin: 0; }\n.promo-bar { color: red; }",
        js="const bar = document.createElement('div'); bar.className = 'promo-bar'; document.body.appendChild(bar);",
    )
    kinds = {item.selector: item.kind for item in SelectorValidator().validate(code, element_database)}
    assert kinds == {"body": "document", ".promo-bar": "dynamic"}


def test_global_code_warnings_have_no_variation_number(element_database):
    code = GeneratedCode(global_css=".banner { color: red; }")
    warnings = SelectorValidator().validate(code, element_database)
    assert warnings[0].variation_number is None
    assert "global code" in warnings[0].message


def test_repair_rewrites_generic_selector_to_unique_match(element_database):
    validator = SelectorValidator()
    code = make_code(
        css="button.btn { color: red; }\nbutton.btn:hover { color: blue; }",
        js="waitForElement('button.btn', (el) => { el.textContent = 'Go'; });",
    )
    validator.repair(code, element_database)
    assert code.variations[0].css == "#cta { color: red; }\n#cta:hover { color: blue; }"
    assert code.variations[0].js == "waitForElement('#cta', (el) => { el.textContent = 'Go'; });"
    assert validator.validate(code, element_database) == []

    snapshot = code.to_dict()
    validator.repair(code, element_database)
    assert code.to_dict() == snapshot


def test_repair_uses_positional_database_selector(element_database):
    code = make_code(css="a.nav-link { font-weight: 700; }")
    SelectorValidator().repair(code, element_database)
    assert code.variations[0].css == "nav > a:nth-child(2) { font-weight: 700; }"


def test_repair_leaves_ambiguous_and_unknown_selectors(element_database):
    validator = SelectorValidator()
    css = "div.card { border: 1px solid; }\nspan.badge { color: red; }"
    code = make_code(css=css)
    validator.repair(code, element_database)
    assert code.variations[0].css == css
    assert {item.selector for item in validator.validate(code, element_database)} == {"div.card", "span.badge"}


def test_repair_never_invents_selectors(element_database):
    code = make_code(
        css="button.btn, div.card { color: red; }\n.ghost { opacity: 0; }",
        js="waitForElement('a.nav-link', cb);",
    )
    SelectorValidator().repair(code, element_database)
    allowed = element_database.known_selectors() | {"div.card", ".ghost"}
    assert set(extract_css_selectors(code.variations[0].css)) <= allowed
    assert set(extract_js_selectors(code.variations[0].js)) <= allowed
    assert code.variations[0].css.startswith("#cta, div.card {")
