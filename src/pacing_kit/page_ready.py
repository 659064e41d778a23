"""Page readiness utilities for browser tests.

Prefer waiting on explicit in-page signals (JS queue drained, jQuery AJAX and
animation queues empty) over fixed sleeps. Every helper takes a Playwright
``Page``; only ``evaluate`` and ``query_selector`` are used.
"""
from __future__ import annotations

from typing import Any, Optional

from .config import get_settings
from .waiting import ErrorKind, RetryPolicy, RetryWaiter, wait_for_no_such_element

WAIT_FOR_JS_SCRIPT = """() => {
  window.pacing_wait_for_js = false;
  setTimeout(function() { window.pacing_wait_for_js = true; });
}"""

JS_FLAG_SCRIPT = "() => window.pacing_wait_for_js === true"

DOM_READY_SCRIPT = """() => new Promise(function(resolve) {
  if (document.readyState === "complete") {
    resolve(0);
    return;
  }
  var leftPageBeforeDomReady = function() { resolve(-1); };
  window.addEventListener("beforeunload", leftPageBeforeDomReady);
  document.addEventListener("readystatechange", function() {
    if (document.readyState === "complete") {
      window.removeEventListener("beforeunload", leftPageBeforeDomReady);
      resolve(0);
    }
  });
})"""

AJAX_IDLE_SCRIPT = """(fallbackMs) => new Promise(function(resolve) {
  if (typeof window.$ === "undefined") {
    resolve(-1);
  } else if ($.active == 0) {
    resolve(0);
  } else {
    var fallback = window.setTimeout(function() { resolve(-2); }, fallbackMs);
    $(document).bind("ajaxStop.pacingAjaxWait", function() {
      $(document).unbind("ajaxStop.pacingAjaxWait");
      window.clearTimeout(fallback);
      resolve(0);
    });
  }
})"""

ANIMATIONS_IDLE_SCRIPT = """() => new Promise(function(resolve) {
  if (typeof window.$ === "undefined") {
    resolve(-1);
  } else if ($.timers.length == 0) {
    resolve(0);
  } else {
    var _stop = $.fx.stop;
    $.fx.stop = function() {
      $.fx.stop = _stop;
      _stop.apply(this, arguments);
      resolve(0);
    };
  }
})"""

# Resolve the in-page fallback a little before the driver's own script timeout.
AJAX_FALLBACK_MARGIN_MS = 500


class PageLeftError(RuntimeError):
    pass


class AjaxTimeoutError(RuntimeError):
    pass


class ElementNotFound(LookupError):
    kind = ErrorKind.NO_SUCH_ELEMENT


def wait_for_js(page, waiter: Optional[RetryWaiter] = None) -> None:
    """Let already-queued JS run by waiting for a zero-delay setTimeout to fire."""
    page.evaluate(WAIT_FOR_JS_SCRIPT)
    waiter = waiter or RetryWaiter(RetryPolicy.default())
    waiter.until(lambda: page.evaluate(JS_FLAG_SCRIPT), method="wait_for_js")


def wait_for_dom_ready(page) -> None:
    result = page.evaluate(DOM_READY_SCRIPT)
    if result != 0:
        raise PageLeftError("left page before domready")


def wait_for_ajax_requests(page, script_timeout: Optional[float] = None) -> int:
    """Wait for jQuery AJAX requests to finish.

    Returns -1 when the page has no jQuery, 0 once requests drained.
    """
    if script_timeout is None:
        script_timeout = get_settings().script_timeout
    fallback_ms = max(0, int(script_timeout * 1000) - AJAX_FALLBACK_MARGIN_MS)
    result = page.evaluate(AJAX_IDLE_SCRIPT, fallback_ms)
    if result == -2:
        raise AjaxTimeoutError(
            "Timed out waiting for ajax requests to finish. "
            "(This might mean there was a js error in an ajax callback.)"
        )
    wait_for_js(page)
    return result


def wait_for_animations(page) -> int:
    result = page.evaluate(ANIMATIONS_IDLE_SCRIPT)
    wait_for_js(page)
    return result


def wait_for_ajaximations(page, script_timeout: Optional[float] = None) -> None:
    wait_for_ajax_requests(page, script_timeout=script_timeout)
    wait_for_animations(page)


def find_element(page, selector: str) -> Any:
    element = page.query_selector(selector)
    if element is None:
        raise ElementNotFound(f"no element matches {selector!r}")
    return element


def wait_for_element_gone(page, selector: str, timeout: Optional[float] = None) -> bool:
    """Wait for ``selector`` to stop matching.

    Returns:
        True once no element matches, False if one still does at timeout.
    """
    return wait_for_no_such_element(lambda: find_element(page, selector), timeout=timeout)
