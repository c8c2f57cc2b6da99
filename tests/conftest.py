"""
Shared fixtures: fake Playwright objects driven by a fake clock.

No browser or network is needed; `FakePage.wait_for_timeout` advances the
clock and fires any callbacks scheduled for that time, which is how tests
make responses arrive or challenges clear mid-wait.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

from config_loader import load_config


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeElement:
    def __init__(self, visible: bool = True, enabled: bool = True, text: str = "",
                 on_click: Optional[Callable[[], None]] = None,
                 on_fill: Optional[Callable[[str], None]] = None,
                 image: bytes = b"\x89PNG fake"):
        self.visible = visible
        self.enabled = enabled
        self.text = text
        self.on_click = on_click
        self.on_fill = on_fill
        self.image = image
        self.value = ""
        self.clicks = 0
        self.fills: List[str] = []
        self.pressed: List[str] = []

    def is_visible(self) -> bool:
        return self.visible

    def is_enabled(self) -> bool:
        return self.enabled

    def click(self) -> None:
        self.clicks += 1
        if self.on_click:
            self.on_click()

    def fill(self, value: str) -> None:
        self.value = value
        self.fills.append(value)
        if self.on_fill:
            self.on_fill(value)

    def press(self, key: str) -> None:
        self.pressed.append(key)

    def screenshot(self) -> bytes:
        return self.image


class FakeResponse:
    def __init__(self, url: str, payload: Any = None, error: Optional[Exception] = None):
        self.url = url
        self._payload = payload
        self._error = error

    def json(self) -> Any:
        if self._error is not None:
            raise self._error
        return self._payload


class FakePage:
    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.elements: Dict[str, FakeElement] = {}
        self.listeners: Dict[str, List[Callable]] = {}
        self.timers: List[tuple] = []
        self.goto_calls: List[str] = []
        self.goto_errors: List[Exception] = []
        self.on_goto: Optional[Callable[[], None]] = None
        self.network_idle = True
        self.body = ""
        self.html = "<html><body></body></html>"
        self.closed = False
        self.url = "about:blank"
        self.waits: List[int] = []
        self.default_timeout = None
        self.default_navigation_timeout = None

    # --- event plumbing ---

    def on(self, event: str, handler: Callable) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self.listeners.get(event, []).remove(handler)

    def emit_response(self, response: FakeResponse) -> None:
        for handler in list(self.listeners.get("response", [])):
            handler(response)

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self.timers.append((self.clock.now + delay, callback))

    def _fire_due(self) -> None:
        due = [t for t in self.timers if t[0] <= self.clock.now]
        self.timers = [t for t in self.timers if t[0] > self.clock.now]
        for _, callback in sorted(due, key=lambda t: t[0]):
            callback()

    # --- Page API subset ---

    def set_default_timeout(self, ms: int) -> None:
        self.default_timeout = ms

    def set_default_navigation_timeout(self, ms: int) -> None:
        self.default_navigation_timeout = ms

    def goto(self, url: str, wait_until: str = "load", timeout: int = 0) -> None:
        self.goto_calls.append(url)
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        self.url = url
        if self.on_goto:
            self.on_goto()

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)
        self.clock.advance(ms / 1000)
        self._fire_due()

    def wait_for_load_state(self, state: str = "load", timeout: int = 0) -> None:
        if not self.network_idle:
            self.clock.advance(timeout / 1000)
            raise TimeoutError(f"Timeout {timeout}ms exceeded waiting for {state}")

    def wait_for_selector(self, selector: str, state: str = "visible", timeout: int = 0) -> FakeElement:
        for candidate in selector.split(", "):
            element = self.elements.get(candidate)
            if element is not None and element.visible:
                return element
        self.clock.advance(timeout / 1000)
        raise TimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    def query_selector(self, selector: str) -> Optional[FakeElement]:
        return self.elements.get(selector)

    def text_content(self, selector: str) -> str:
        return self.body

    def content(self) -> str:
        return self.html

    def screenshot(self, path: str, full_page: bool = False) -> bytes:
        Path(path).write_bytes(b"\x89PNG fake")
        return b"\x89PNG fake"

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True
        for handler in list(self.listeners.get("close", [])):
            handler(self)


class FakeContext:
    def __init__(self, browser: "FakeBrowser", **kwargs: Any):
        self.browser = browser
        self.kwargs = kwargs
        self._pages: List[FakePage] = []
        self.cookie_jar: List[dict] = []
        self.added_cookies: List[List[dict]] = []
        self.broken = False
        self.closed = False

    @property
    def pages(self) -> List[FakePage]:
        if self.broken:
            raise RuntimeError("Target page, context or browser has been closed")
        return [p for p in self._pages if not p.closed]

    def new_page(self) -> FakePage:
        if self.broken:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage()
        self._pages.append(page)
        return page

    def add_cookies(self, cookies: List[dict]) -> None:
        self.added_cookies.append(list(cookies))
        self.cookie_jar.extend(cookies)

    def cookies(self) -> List[dict]:
        return list(self.cookie_jar)

    def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, **launch_kwargs: Any):
        self.launch_kwargs = launch_kwargs
        self.connected = True
        self.contexts: List[FakeContext] = []

    def new_context(self, **kwargs: Any) -> FakeContext:
        context = FakeContext(self, **kwargs)
        self.contexts.append(context)
        return context

    def is_connected(self) -> bool:
        return self.connected

    def close(self) -> None:
        self.connected = False


class FakeChromium:
    def __init__(self):
        self.browsers: List[FakeBrowser] = []

    def launch(self, **kwargs: Any) -> FakeBrowser:
        browser = FakeBrowser(**kwargs)
        self.browsers.append(browser)
        return browser


class FakePlaywright:
    def __init__(self):
        self.chromium = FakeChromium()
        self.stops = 0

    def start(self) -> "FakePlaywright":
        return self

    def stop(self) -> None:
        self.stops += 1


class FakeSession:
    """Stands in for SessionManager in orchestrator and worker tests."""

    def __init__(self, page: Optional[FakePage] = None):
        self.page = page or FakePage()
        self.ensure_calls = 0
        self.invalidations = 0
        self.persisted = 0
        self.keep_alive_calls = 0
        self.shutdowns = 0

    def ensure_ready(self) -> FakePage:
        self.ensure_calls += 1
        return self.page

    def invalidate(self) -> None:
        self.invalidations += 1

    def persist_cookies(self) -> int:
        self.persisted += 1
        return 0

    def keep_alive(self) -> None:
        self.keep_alive_calls += 1

    def shutdown(self) -> None:
        self.shutdowns += 1


def _merge(base: dict, overrides: dict) -> dict:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def base_settings(tmp_path: Path) -> dict:
    return {
        "browser": {"headless": True, "slow_mo_ms": 0, "keepalive_interval_seconds": 60},
        "search": {
            "max_attempts": 3,
            "settle_delay_seconds": 0,
            "network_idle_timeout_seconds": 1,
            "input_wait_timeout_seconds": 1,
            "fill_settle_seconds": 0,
            "post_submit_delay_seconds": 2,
            "payload_wait_seconds": 15,
            "payload_poll_interval_seconds": 1,
            "retry_backoff_seconds": 0,
            "navigation_retry_delay_seconds": 0,
            "dom_fallback": True,
        },
        "captcha": {
            "timeout_seconds": 30,
            "poll_interval_seconds": 2,
            "stabilize_delay_seconds": 2,
            "network_idle_timeout_seconds": 1,
            "status_interval_seconds": 10,
            "on_timeout": "proceed",
            "answer_provider": "none",
        },
        "session": {"cookies_file": str(tmp_path / "cookies.json")},
        "diagnostics": {"output_dir": str(tmp_path / "diagnostics")},
        "output": {
            "json_file": str(tmp_path / "out" / "lookups.json"),
            "markdown_file": str(tmp_path / "out" / "lookups.md"),
            "use_timestamp": False,
        },
        "metrics": {"enabled": True, "output_file": str(tmp_path / "out" / "metrics.json")},
        "logging": {"level": "DEBUG", "log_file": str(tmp_path / "logs" / "test.log")},
    }


@pytest.fixture
def make_config(tmp_path):
    """Write a settings.yaml under tmp_path (with overrides) and load it."""

    def _make(overrides: Optional[dict] = None):
        settings = _merge(base_settings(tmp_path), overrides or {})
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump(settings), encoding="utf-8")
        return load_config(str(path))

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def page(clock):
    return FakePage(clock)
