from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ElementLevel = Literal["primary", "proximity", "structure"]


class _CapturedModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class VisualInfo(_CapturedModel):
    bg: str | None = Field(default=None, validation_alias=AliasChoices("bg", "backgroundColor"))
    color: str | None = None
    width: float | None = Field(default=None, validation_alias=AliasChoices("width", "w"))
    height: float | None = Field(default=None, validation_alias=AliasChoices("height", "h"))


class ElementRecord(_CapturedModel):
    selector: str
    tag: str
    text: str = ""
    level: ElementLevel = "primary"
    visual: VisualInfo = Field(default_factory=VisualInfo)
    classes: tuple[str, ...] = ()
    id: str | None = None
    section: str | None = None
    alternative_selectors: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("alternative_selectors", "alternativeSelectors"),
    )

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("selector must not be empty")
        return stripped

    @field_validator("tag")
    @classmethod
    def normalize_tag(cls, value: str) -> str:
        return value.lower()


class DatabaseMetadata(_CapturedModel):
    url: str = ""
    title: str = ""
    total_elements: int = Field(default=0, validation_alias=AliasChoices("total_elements", "totalElements"))
    estimated_tokens: int = Field(default=0, validation_alias=AliasChoices("estimated_tokens", "estimatedTokens"))
    mode: str = "full-page"
    focus_path: str | None = Field(default=None, validation_alias=AliasChoices("focus_path", "focusPath"))


class ElementDatabase(_CapturedModel):
    """Ordered snapshot of a page's interactive elements.

    Treated as immutable once captured; a fresh capture produces a new
    database instead of editing this one.
    """

    elements: tuple[ElementRecord, ...] = ()
    metadata: DatabaseMetadata = Field(default_factory=DatabaseMetadata)

    @property
    def selectors(self) -> list[str]:
        return [element.selector for element in self.elements]

    @property
    def is_element_focused(self) -> bool:
        return self.metadata.mode == "element-focused"

    def known_selectors(self) -> set[str]:
        known: set[str] = set()
        for element in self.elements:
            known.add(element.selector)
            known.update(element.alternative_selectors)
        return known

    def get(self, selector: str) -> ElementRecord | None:
        for element in self.elements:
            if element.selector == selector:
                return element
        return None


class SelectedElement(_CapturedModel):
    selector: str
    tag: str = ""
    text: str = ""
    id: str | None = None
    classes: tuple[str, ...] = ()
    screenshot: str | None = None


class PageData(_CapturedModel):
    element_database: ElementDatabase = Field(
        validation_alias=AliasChoices("element_database", "elementDatabase"),
    )
    screenshot: str | None = None


class VariationSpec(_CapturedModel):
    name: str
    description: str = ""


class GenerationRequest(_CapturedModel):
    page_data: PageData = Field(validation_alias=AliasChoices("page_data", "pageData"))
    description: str
    variation_specs: tuple[VariationSpec, ...] = Field(
        default=(VariationSpec(name="Variation 1"),),
        validation_alias=AliasChoices("variation_specs", "variations"),
    )
    settings: dict[str, Any] = Field(default_factory=dict)
    selected_element: SelectedElement | None = Field(
        default=None,
        validation_alias=AliasChoices("selected_element", "selectedElement"),
    )


class Interaction(_CapturedModel):
    type: str
    target: str = ""
    success: bool = False


class Validation(_CapturedModel):
    test: str
    passed: bool
    expected: Any = None
    actual: Any = None


class TestExecutionResult(_CapturedModel):
    __test__ = False

    interactions: tuple[Interaction, ...] = ()
    validations: tuple[Validation, ...] = ()
    overall_status: Literal["passed", "failed", "error"] = Field(
        default="error",
        validation_alias=AliasChoices("overall_status", "overallStatus"),
    )
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.overall_status == "passed"

    def summary(self) -> str:
        lines = [f"Overall status: {self.overall_status}"]
        for validation in self.validations:
            marker = "PASS" if validation.passed else "FAIL"
            lines.append(
                f"- [{marker}] {validation.test} (expected {validation.expected!r}, actual {validation.actual!r})"
            )
        failed_interactions = [item for item in self.interactions if not item.success]
        for interaction in failed_interactions:
            lines.append(f"- interaction {interaction.type} on {interaction.target or 'page'} failed")
        if self.error:
            lines.append(f"Error: {self.error}")
        return "\n".join(lines)


@dataclass(slots=True)
class Variation:
    number: int
    name: str
    css: str = ""
    js: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"number": self.number, "name": self.name, "css": self.css, "js": self.js}


@dataclass(slots=True)
class GeneratedCode:
    variations: list[Variation] = field(default_factory=list)
    global_css: str = ""
    global_js: str = ""
    parse_strategy: str | None = None
    exhausted: bool = False

    @property
    def is_empty(self) -> bool:
        if self.global_css.strip() or self.global_js.strip():
            return False
        return not self.has_variation_code

    @property
    def has_variation_code(self) -> bool:
        """At least one variation carries CSS or JS; global code alone does not count."""
        return any(item.css.strip() or item.js.strip() for item in self.variations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "variations": [item.to_dict() for item in self.variations],
            "globalCSS": self.global_css,
            "globalJS": self.global_js,
        }

    def copy(self) -> "GeneratedCode":
        return copy.deepcopy(self)

    def combined_css(self) -> str:
        return "\n".join(part for part in [self.global_css, *(item.css for item in self.variations)] if part)

    def combined_js(self) -> str:
        return "\n".join(part for part in [self.global_js, *(item.js for item in self.variations)] if part)


@dataclass(slots=True)
class ConversationTurn:
    request: str
    code: GeneratedCode


@dataclass(slots=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
        }


@dataclass(slots=True)
class ModelResponse:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""
    stop_reason: str | None = None


@dataclass(slots=True)
class SelectorWarning:
    selector: str
    context: Literal["css", "js"]
    variation_number: int | None = None
    kind: Literal["unknown", "dynamic", "document"] = "unknown"

    @property
    def message(self) -> str:
        location = f"variation {self.variation_number}" if self.variation_number else "global code"
        if self.kind == "dynamic":
            return f"{self.selector} is created by the {self.context} in {location} and is not in the element database"
        if self.kind == "document":
            return f"{self.selector} targets the whole document in {location}"
        return f"{self.selector} used in {self.context} of {location} is not in the element database"

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "context": self.context,
            "variation_number": self.variation_number,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(slots=True)
class MergeViolation:
    kind: Literal["selector", "style", "function", "text"]
    value: str

    @property
    def message(self) -> str:
        labels = {"selector": "Selector", "style": "Style", "function": "Function", "text": "Text change"}
        return f"{labels[self.kind]} {self.value!r} from the applied code is missing"


@dataclass(slots=True)
class TestRunOutcome:
    __test__ = False

    success: bool
    result: TestExecutionResult | None = None
    attempts: int = 1
    timeout_seconds: float = 0.0
    duration_seconds: float = 0.0
    error: str | None = None
    error_type: str | None = None

    def recovery_message(self) -> str:
        messages = {
            "timeout": "The test did not finish in time. Try simplifying the test or waiting for fewer elements.",
            "selector-not-found": "An element was not found. Check the variation selectors against the page.",
            "no-results": "The test ran but reported nothing. Make sure testVariation() returns its results.",
            "javascript-error": "The test script threw an error. Review the generated test code.",
            "tab-error": "The page was not reachable. Reload it and try again.",
        }
        if self.success:
            return "Test completed."
        return messages.get(self.error_type or "", "The test failed for an unknown reason. Try running it again.")


@dataclass(slots=True)
class VisualQAVerdict:
    passed: bool
    changes_detected: bool = False
    correctness_score: int = 0
    issues: list[Any] = field(default_factory=list)
    message: str = ""
    recommendations: list[str] = field(default_factory=list)
    skipped: bool = False
    error: bool = False
    confidence_modifier: int = 0
    raw_response: str | None = None
