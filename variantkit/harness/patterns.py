from __future__ import annotations

TEST_PATTERNS_SCRIPT = r"""
const TestPatterns = {
  interactions: [],
  validations: [],
  states: [],

  wait(ms) {
    return new Promise((resolve) => setTimeout(resolve, ms));
  },

  async waitForElement(selector, timeout = 5000) {
    const start = Date.now();
    while (Date.now() - start < timeout) {
      const element = document.querySelector(selector);
      if (element) return element;
      await this.wait(100);
    }
    throw new Error(`Element not found after ${timeout}ms: ${selector}`);
  },

  async resolve(target, timeout = 3000) {
    return typeof target === "string" ? this.waitForElement(target, timeout) : target;
  },

  record(type, target, success) {
    this.interactions.push({
      type,
      target: typeof target === "string" ? target : (target && target.tagName ? target.tagName.toLowerCase() : ""),
      success: Boolean(success),
    });
    return Boolean(success);
  },

  async simulateClick(target) {
    try {
      const element = await this.resolve(target);
      element.click();
      await this.wait(300);
      return this.record("click", target, true);
    } catch (error) {
      return this.record("click", target, false);
    }
  },

  async simulateHover(target) {
    try {
      const element = await this.resolve(target);
      for (const type of ["mouseenter", "mouseover"]) {
        element.dispatchEvent(new MouseEvent(type, { bubbles: true, cancelable: true, view: window }));
      }
      await this.wait(300);
      return this.record("hover", target, true);
    } catch (error) {
      return this.record("hover", target, false);
    }
  },

  async simulateExitIntent() {
    try {
      for (const type of ["mouseout", "mouseleave"]) {
        document.dispatchEvent(
          new MouseEvent(type, { bubbles: true, cancelable: true, view: window, clientY: -10, relatedTarget: null })
        );
      }
      await this.wait(500);
      return this.record("exitIntent", "document", true);
    } catch (error) {
      return this.record("exitIntent", "document", false);
    }
  },

  async scrollTo(yPosition) {
    try {
      window.scrollTo({ top: yPosition, behavior: "auto" });
      await this.wait(500);
      return this.record("scroll", String(yPosition), true);
    } catch (error) {
      return this.record("scroll", String(yPosition), false);
    }
  },

  async scrollToElement(target) {
    try {
      const element = await this.resolve(target);
      element.scrollIntoView({ behavior: "auto", block: "center" });
      await this.wait(500);
      return this.record("scroll", target, true);
    } catch (error) {
      return this.record("scroll", target, false);
    }
  },

  async fillInput(target, value) {
    try {
      const element = await this.resolve(target);
      element.focus();
      element.value = value;
      element.dispatchEvent(new Event("input", { bubbles: true }));
      element.dispatchEvent(new Event("change", { bubbles: true }));
      return this.record("fill", target, true);
    } catch (error) {
      return this.record("fill", target, false);
    }
  },

  isVisible(target) {
    const element = typeof target === "string" ? document.querySelector(target) : target;
    if (!element) return false;
    const style = window.getComputedStyle(element);
    const rect = element.getBoundingClientRect();
    return style.display !== "none" && style.visibility !== "hidden" && style.opacity !== "0" && rect.width > 0 && rect.height > 0;
  },

  exists(selector) {
    return document.querySelector(selector) !== null;
  },

  getStyle(target, property) {
    const element = typeof target === "string" ? document.querySelector(target) : target;
    return element ? window.getComputedStyle(element).getPropertyValue(property) : null;
  },

  getSessionStorage(key) {
    try {
      return window.sessionStorage.getItem(key);
    } catch (error) {
      return null;
    }
  },

  getLocalStorage(key) {
    try {
      return window.localStorage.getItem(key);
    } catch (error) {
      return null;
    }
  },

  countElements(selector) {
    return document.querySelectorAll(selector).length;
  },

  getText(target) {
    const element = typeof target === "string" ? document.querySelector(target) : target;
    return element ? (element.innerText || element.textContent || "").trim() : null;
  },

  captureState(label = "unnamed") {
    const state = {
      label,
      timestamp: Date.now(),
      url: window.location.href,
      scrollPosition: { x: window.scrollX, y: window.scrollY },
      viewport: { width: window.innerWidth, height: window.innerHeight },
    };
    this.states.push(state);
    return state;
  },

  async validate(testName, condition, expectedValue = "", actualValue = "") {
    const passed = Boolean(typeof condition === "function" ? await condition() : condition);
    const result = { test: testName, passed, expected: expectedValue, actual: actualValue, timestamp: Date.now() };
    this.validations.push(result);
    return result;
  },

  results() {
    const failed = this.validations.some((item) => !item.passed) || this.interactions.some((item) => !item.success);
    return {
      interactions: this.interactions,
      validations: this.validations,
      states: this.states,
      overallStatus: failed ? "failed" : "passed",
    };
  },
};
"""

WAIT_FOR_ELEMENT_HELPER = r"""
function waitForElement(selector, callback, timeout = 10000) {
  const start = Date.now();
  const check = () => {
    const element = document.querySelector(selector);
    if (element) {
      callback(element);
    } else if (Date.now() - start < timeout) {
      setTimeout(check, 100);
    }
  };
  check();
}
"""
