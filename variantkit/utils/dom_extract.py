from __future__ import annotations

from typing import Any

from variantkit.core.models import DatabaseMetadata, ElementDatabase, ElementRecord

COLLECT_ELEMENTS_SCRIPT = r"""
const limit = arguments[0] || 80;
const includeNode = (node) => {
  const tag = node.tagName.toLowerCase();
  if (["a", "button", "input", "select", "textarea", "h1", "h2", "h3", "img", "form", "nav", "header", "footer"].includes(tag)) return true;
  if (node.hasAttribute("role") || node.hasAttribute("data-testid")) return true;
  if (node.id && ["section", "div", "main", "aside"].includes(tag)) return true;
  return false;
};

const isVisible = (node) => {
  const rect = node.getBoundingClientRect();
  const style = window.getComputedStyle(node);
  return rect.width > 0 && rect.height > 0 && style.visibility !== "hidden" && style.display !== "none";
};

const bestSelector = (node) => {
  if (node.id && document.querySelectorAll(`#${CSS.escape(node.id)}`).length === 1) return `#${CSS.escape(node.id)}`;
  const tag = node.tagName.toLowerCase();
  const classes = Array.from(node.classList).slice(0, 3).map((name) => `.${CSS.escape(name)}`).join("");
  const base = `${tag}${classes}`;
  if (document.querySelectorAll(base).length === 1) return base;
  const parent = node.parentElement;
  if (!parent) return base;
  const index = Array.from(parent.children).indexOf(node) + 1;
  const parentSelector = parent.id ? `#${CSS.escape(parent.id)}` : parent.tagName.toLowerCase();
  return `${parentSelector} > ${tag}:nth-child(${index})`;
};

const sectionOf = (node) => {
  const container = node.closest("section[id], header, footer, nav, main, aside");
  if (!container) return null;
  return container.id ? `#${container.id}` : container.tagName.toLowerCase();
};

const items = [];
for (const node of document.querySelectorAll("body *")) {
  if (items.length >= limit) break;
  if (!includeNode(node) || !isVisible(node)) continue;
  const selector = bestSelector(node);
  if (document.querySelectorAll(selector).length === 0) continue;
  const rect = node.getBoundingClientRect();
  const style = window.getComputedStyle(node);
  items.push({
    selector,
    tag: node.tagName.toLowerCase(),
    text: (node.innerText || node.value || node.alt || "").trim().slice(0, 200),
    level: "primary",
    visual: {
      bg: style.backgroundColor,
      color: style.color,
      width: Math.round(rect.width),
      height: Math.round(rect.height),
    },
    classes: Array.from(node.classList),
    id: node.id || null,
    section: sectionOf(node),
  });
}
return {
  elements: items,
  metadata: {
    url: window.location.href,
    title: document.title,
    totalElements: items.length,
    mode: "full-page",
  },
};
"""


def capture_element_database(driver, limit: int = 80) -> ElementDatabase:
    raw = driver.execute_script(COLLECT_ELEMENTS_SCRIPT, limit) or {}
    return build_element_database(raw)


def build_element_database(raw: dict[str, Any]) -> ElementDatabase:
    elements = [ElementRecord.model_validate(item) for item in raw.get("elements", [])]
    metadata = DatabaseMetadata.model_validate(raw.get("metadata", {}))
    estimated = sum(len(element.model_dump_json()) for element in elements) // 4
    metadata = metadata.model_copy(update={"total_elements": len(elements), "estimated_tokens": estimated})
    return ElementDatabase(elements=tuple(elements), metadata=metadata)
