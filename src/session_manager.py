"""
Session Manager - owns the Playwright browser, context and single page
Handles lazy (re)initialization, cookie persistence and keep-alive
"""

import logging
import platform
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.sync_api import sync_playwright, Browser, BrowserContext, Page
from playwright_stealth.stealth import Stealth

from artifacts import CookieStore

logger = logging.getLogger(__name__)

USER_AGENTS = {
    "windows": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "linux": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "darwin": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
]


def platform_user_agent(system: Optional[str] = None) -> str:
    """Pick a user-agent for the host OS family (not the browser-reported one)"""
    family = (system if system is not None else platform.system()).lower()
    return USER_AGENTS.get(family, USER_AGENTS["windows"])


class SessionManager:
    """Single long-lived browser session reused across lookups"""

    def __init__(
        self,
        config,
        cookie_store: Optional[CookieStore] = None,
        playwright_factory: Callable[[], Any] = sync_playwright,
        headless: Optional[bool] = None,
    ):
        self.config = config
        self.cookie_store = cookie_store or CookieStore(config.get_cookies_file())
        self._playwright_factory = playwright_factory
        self._headless = headless
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _page_alive(self) -> bool:
        if self.page is None:
            return False
        try:
            return not self.page.is_closed()
        except Exception:
            return False

    def _browser_alive(self) -> bool:
        if self.browser is None:
            return False
        try:
            return bool(self.browser.is_connected())
        except Exception:
            return False

    def _on_page_close(self, page: Any) -> None:
        if page is self.page:
            logger.info("Page was closed, will reinitialize on next request")
            self._initialized = False

    def _prepare_page(self, page: Page) -> Page:
        page.on("close", self._on_page_close)
        page.set_default_timeout(self.config.get_page_timeout())
        page.set_default_navigation_timeout(self.config.get_navigation_timeout())
        if self.config.use_stealth():
            try:
                Stealth().apply_stealth_sync(page)
                logger.info("Playwright stealth enabled")
            except Exception as exc:
                logger.warning("Failed to enable stealth mode: %s", exc)
        return page

    def _open_page(self) -> Page:
        page = self._prepare_page(self.context.new_page())
        self.page = page
        self._initialized = True
        return page

    def _launch(self) -> None:
        """Start Playwright, launch Chromium and create a fresh context"""
        headless = self.config.is_headless() if self._headless is None else self._headless
        logger.info("Launching browser (headless=%s)...", headless)
        if self.playwright is None:
            self.playwright = self._playwright_factory().start()

        channel = self.config.get_browser_channel() or None
        executable_path = self.config.get_browser_executable_path() or None
        if executable_path and not Path(executable_path).exists():
            logger.warning("Browser executable not found: %s", executable_path)
            executable_path = None

        self.browser = self.playwright.chromium.launch(
            headless=headless,
            slow_mo=self.config.get_slow_mo(),
            args=list(LAUNCH_ARGS),
            channel=channel,
            executable_path=executable_path,
            timeout=self.config.get_launch_timeout(),
        )

        saved_cookies = self.cookie_store.load()
        context_kwargs = dict(
            viewport=self.config.get_viewport(),
            user_agent=platform_user_agent(),
        )
        if saved_cookies:
            context_kwargs["storage_state"] = {"cookies": saved_cookies, "origins": []}
        self.context = self.browser.new_context(**context_kwargs)
        if saved_cookies:
            self.context.add_cookies(saved_cookies)

        self._open_page()
        logger.info("Browser initialized successfully")

    def _release(self) -> None:
        """Close whatever is still open without persisting"""
        for name in ("context", "browser"):
            handle = getattr(self, name)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception:
                logger.debug("Browser %s close failed", name, exc_info=True)
        self.context = None
        self.browser = None
        self.page = None
        self._initialized = False

    def ensure_ready(self) -> Page:
        """Return a page ready for navigation, (re)creating the session when stale"""
        if self._initialized and self._page_alive() and self._browser_alive():
            return self.page

        if self.context is not None and self._browser_alive():
            try:
                logger.info("Page closed, opening a new page in the existing context...")
                return self._open_page()
            except Exception as exc:
                logger.warning("Could not reuse browser context: %s", exc)

        logger.info("Browser not initialized or closed. Reinitializing...")
        self._release()
        self._launch()
        return self.page

    def invalidate(self) -> None:
        """Force a full re-creation on the next ensure_ready()"""
        self._initialized = False
        self._release()

    def persist_cookies(self) -> int:
        """Save the context's cookies; returns how many were written"""
        if self.context is None:
            return 0
        try:
            cookies = self.context.cookies()
            self.cookie_store.save(cookies)
            logger.info("Saved %s cookies for future sessions", len(cookies))
            return len(cookies)
        except Exception as exc:
            logger.error("Error saving cookies: %s", exc)
            return 0

    def keep_alive(self) -> None:
        """Periodic sweep: keep one open page, rebuild the session if the context broke"""
        if not self._initialized or self.context is None:
            return
        try:
            pages = list(self.context.pages)
            if not pages:
                logger.info("No open pages, opening one")
                self._open_page()
            elif not self._page_alive():
                self.page = pages[0]
        except Exception as exc:
            logger.warning("Reinitializing browser context: %s", exc)
            self._initialized = False
            try:
                self.ensure_ready()
            except Exception as init_exc:
                logger.error("Keep-alive could not reinitialize the browser: %s", init_exc)

    def shutdown(self) -> None:
        """Persist cookies and release the browser; safe to call repeatedly"""
        if self.browser is None and self.context is None and self.playwright is None:
            return
        self.persist_cookies()
        self._release()
        if self.playwright is not None:
            try:
                self.playwright.stop()
            except Exception:
                logger.debug("Playwright stop failed", exc_info=True)
            self.playwright = None
        logger.info("Browser closed")
