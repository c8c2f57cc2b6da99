"""
Selector helpers shared by the verification gate and the search orchestrator.

The portal's markup shifts between releases, so every lookup is an ordered
list of candidates tried until one matches.
"""

import logging
from typing import Any, Callable, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


def is_visible(element: Any) -> bool:
    try:
        return bool(element.is_visible())
    except Exception:
        return False


def is_enabled(element: Any) -> bool:
    try:
        return bool(element.is_enabled())
    except Exception:
        return False


def is_usable(element: Any) -> bool:
    """Visible and enabled"""
    return is_visible(element) and is_enabled(element)


def first_match(
    page: Any,
    selectors: Iterable[str],
    accept: Optional[Callable[[Any], bool]] = None,
) -> Tuple[Optional[Any], Optional[str]]:
    """
    Return (element, selector) for the first selector whose element passes `accept`.

    A selector that errors (unsupported pseudo-class, detached frame) is skipped.
    """
    for selector in selectors:
        try:
            element = page.query_selector(selector)
        except Exception as exc:
            logger.debug("Selector %s failed: %s", selector, exc)
            continue
        if not element:
            continue
        if accept is None or accept(element):
            return element, selector
    return None, None


def first_usable(page: Any, selectors: Iterable[str]) -> Tuple[Optional[Any], Optional[str]]:
    return first_match(page, selectors, is_usable)


def first_visible(page: Any, selectors: Iterable[str]) -> Tuple[Optional[Any], Optional[str]]:
    return first_match(page, selectors, is_visible)


def wait_for_any(page: Any, selectors: Iterable[str], timeout_ms: int) -> bool:
    """Wait until any selector is visible; False on timeout"""
    combined = ", ".join(selectors)
    try:
        page.wait_for_selector(combined, state="visible", timeout=timeout_ms)
        return True
    except Exception:
        return False


def body_text(page: Any) -> str:
    try:
        return page.text_content("body") or ""
    except Exception:
        return ""


def wait_for_network_idle(page: Any, timeout_ms: int) -> bool:
    """Best-effort wait for network quiescence; False when it did not settle"""
    try:
        page.wait_for_load_state("networkidle", timeout=timeout_ms)
        return True
    except Exception:
        return False
