"""
Taxpayer Search - drives the portal's search form for one GSTIN
Handles navigation, form fill, challenge gate, response interception and retries
"""

import logging
import time
from typing import Any, Callable, Collection, Optional

from artifacts import DiagnosticsWriter
from errors import (
    ExtractionInsufficient,
    FieldNotFound,
    NavigationFailure,
    PayloadTimeout,
    PortalLookupError,
    SessionLost,
)
from extraction_chain import ExtractionChain
from models import SearchRequest, TaxpayerRecord
from page_helpers import first_match, first_usable, wait_for_any, wait_for_network_idle
from portal_payload import ResponseInterceptor, map_payload
from run_metrics import RunMetrics
from verification_gate import VerificationGate

logger = logging.getLogger(__name__)

INPUT_SELECTORS = [
    'input[name="for_gstin"]',
    'input[id="for_gstin"]',
    '#for_gstin',
    'input[name="gstin"]',
    'input[id="gstin"]',
    'input[placeholder*="GSTIN"]',
    'input[type="text"]',
    '#gstin',
    'input.form-control',
    'input[class*="gstin"]',
]

SUBMIT_SELECTORS = [
    'button[id="lotsearch"]',
    '#lotsearch',
    'button[type="submit"]',
    'button:has-text("Search")',
    'button:has-text("SEARCH")',
    'input[type="submit"]',
    'button.btn-primary',
    'button[class*="search"]',
    '#search',
    '.search-btn',
]

RESULTS_NOT_FOUND = "Search results not found. Please refresh the page and retry the request."
EXTRACTION_FAILED = (
    "Could not extract GST data from the portal response. "
    "Please refresh the page in the browser and retry the request."
)

CLOSED_MARKERS = ("has been closed", "Target closed", "Browser closed")


def _looks_closed(exc: BaseException) -> bool:
    text = str(exc)
    return any(marker in text for marker in CLOSED_MARKERS)


class TaxpayerSearch:
    """Looks up one GSTIN at a time on the shared browser session"""

    def __init__(
        self,
        config,
        session,
        gate: Optional[VerificationGate] = None,
        *,
        diagnostics: Optional[DiagnosticsWriter] = None,
        extraction_chain: Optional[ExtractionChain] = None,
        metrics: Optional[RunMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.session = session
        self.diagnostics = diagnostics or DiagnosticsWriter(config.get_diagnostics_dir())
        self.gate = gate or VerificationGate(
            config, session.persist_cookies, diagnostics=self.diagnostics, clock=clock
        )
        self.extraction_chain = extraction_chain or ExtractionChain(diagnostics=self.diagnostics)
        self.metrics = metrics
        self._clock = clock
        self.last_attempts = 0

    def _count(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    def _pause(self, page: Any, seconds: float) -> None:
        """Sleep while letting Playwright dispatch events"""
        if seconds <= 0:
            return
        try:
            if page is not None and not page.is_closed():
                page.wait_for_timeout(int(seconds * 1000))
                return
        except Exception:
            logger.debug("Page wait failed, falling back to sleep", exc_info=True)
        time.sleep(seconds)

    # --- attempt steps ---

    def _navigate(self, page: Any, request: SearchRequest) -> None:
        url = self.config.get_search_url()
        logger.info("Navigating to GST portal: %s", url)
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=self.config.get_navigation_timeout())
        except Exception as exc:
            if _looks_closed(exc):
                raise SessionLost("The browser page closed during navigation.", identifier=request.identifier) from exc
            raise NavigationFailure(
                f"Could not load the GST search page: {exc}", identifier=request.identifier
            ) from exc

        settle = self.config.get_settle_delay()
        logger.info("Waiting %.0f seconds for page to fully load...", settle)
        self._pause(page, settle)
        if not wait_for_network_idle(page, int(self.config.get_network_idle_timeout() * 1000)):
            logger.info("Page may still be loading, continuing...")

    def _locate_input(self, page: Any, request: SearchRequest) -> Any:
        wait_for_any(page, INPUT_SELECTORS, int(self.config.get_input_wait_timeout() * 1000))
        element, selector = first_usable(page, INPUT_SELECTORS)
        if element is not None:
            logger.info("Found input field with selector: %s", selector)
            return element

        if page.is_closed():
            logger.warning("Page closed during input search, reinitializing...")
            try:
                self.session.invalidate()
                self.session.ensure_ready()
            except Exception as exc:
                raise FieldNotFound(
                    "Could not find the GSTIN input field and the browser session could not be restored.",
                    identifier=request.identifier,
                    recoverable=False,
                ) from exc
            raise FieldNotFound("Could not find the GSTIN input field (page was closed).",
                                identifier=request.identifier)

        shot = self.diagnostics.screenshot(page, "input-not-found")
        raise FieldNotFound(
            f"Could not find GSTIN input field. Screenshot saved as {shot}",
            identifier=request.identifier,
            screenshot=str(shot) if shot else None,
        )

    def _fill(self, page: Any, element: Any, identifier: str) -> None:
        logger.info("Filling GSTIN field...")
        element.click()
        page.wait_for_timeout(300)
        element.fill("")
        page.wait_for_timeout(200)
        element.fill(identifier)
        self._pause(page, self.config.get_fill_settle_delay())

    def _pass_gate(self, page: Any, identifier: str) -> None:
        detection = self.gate.detect_challenge(page)
        if not detection:
            logger.info("No CAPTCHA detected, proceeding with search...")
            return
        logger.warning("CAPTCHA detected (%s); waiting for it to be solved", detection["reason"])
        self._count("challenges_detected")
        result = self.gate.wait(page, identifier=identifier)
        if not result.confirmed:
            self._count("challenge_timeouts")

    def _submit(self, page: Any, input_element: Any) -> None:
        button, selector = first_match(page, SUBMIT_SELECTORS)
        if button is not None:
            logger.info("Found button with selector: %s", selector)
            button.click()
            return
        logger.info("Button not found, trying Enter key...")
        input_element.press("Enter")

    def _await_payload(
        self,
        page: Any,
        interceptor: ResponseInterceptor,
        identifier: str,
        standing: Collection[str] = (),
    ) -> bool:
        self._pause(page, self.config.get_post_submit_delay())
        logger.info("Waiting for taxpayerDetails and goodservice API calls...")

        ceiling = self.config.get_payload_wait()
        poll_ms = int(self.config.get_payload_poll_interval() * 1000)
        started = self._clock()
        rechecked = False
        while not interceptor.taxpayer.received and self._clock() - started < ceiling:
            if not rechecked and self.gate.new_widget_visible(page, standing):
                rechecked = True
                logger.warning("Challenge appeared after submission")
                self._count("challenges_detected")
                self.gate.wait(page, identifier=identifier)
                started = self._clock()
                continue
            page.wait_for_timeout(poll_ms)

        # give the goods/services call a moment to land
        self._pause(page, self.config.get_post_submit_delay())
        return interceptor.taxpayer.received

    def _fallback_record(self, page: Any, identifier: str) -> Optional[TaxpayerRecord]:
        if not self.config.is_dom_fallback_enabled():
            return None
        logger.info("No API response captured; extracting from page markup")
        try:
            html = page.content()
        except Exception as exc:
            logger.warning("Could not read page markup: %s", exc)
            return None
        return self.extraction_chain.extract_confirmed(html, identifier)

    def _attempt(self, request: SearchRequest) -> TaxpayerRecord:
        page = self.session.ensure_ready()
        interceptor = ResponseInterceptor(
            page,
            self.config.get_taxpayer_details_path(),
            self.config.get_goods_services_path(),
        ).install()
        try:
            self._navigate(page, request)
            input_element = self._locate_input(page, request)
            self._fill(page, input_element, request.identifier)
            self._pass_gate(page, request.identifier)
            standing = self.gate.visible_widgets(page)
            self._submit(page, input_element)
            logger.info("Search submitted. Waiting for API responses...")

            if not self._await_payload(page, interceptor, request.identifier, standing):
                self._count("payload_timeouts")
                record = self._fallback_record(page, request.identifier)
                if record is not None:
                    logger.info("Recovered record from page markup")
                    return record
                logger.warning("API response not received within %.0f seconds", self.config.get_payload_wait())
                raise PayloadTimeout(RESULTS_NOT_FOUND, identifier=request.identifier)
        finally:
            interceptor.remove()

        logger.info("Extracting data from API response...")
        record = map_payload(interceptor.taxpayer.value, interceptor.goods_services.value, request.identifier)
        if not record.has_identity():
            raise ExtractionInsufficient(EXTRACTION_FAILED, identifier=request.identifier)
        return record

    # --- public API ---

    def search(self, identifier: str, max_attempts: Optional[int] = None) -> TaxpayerRecord:
        """Look up a GSTIN, retrying transient failures up to max_attempts"""
        request = SearchRequest(
            identifier=identifier,
            max_attempts=self.config.get_max_attempts() if max_attempts is None else max_attempts,
        )

        while not request.is_last_attempt:
            request.attempt += 1
            self.last_attempts = request.attempt
            self._count("attempts")
            logger.info("Verifying GSTIN: %s", request)
            try:
                record = self._attempt(request)
            except Exception as exc:
                self._handle_failure(request, exc)
                continue

            self.session.persist_cookies()
            logger.info("✅ Lookup succeeded: %s", record)
            return record

        raise PortalLookupError("All retry attempts failed", identifier=request.identifier)

    def _handle_failure(self, request: SearchRequest, exc: Exception) -> None:
        """Decide between retry and surfacing; re-raises on the final attempt"""
        logger.error("Error during GST verification (%s): %s", request, exc)

        page = self.session.page
        session_lost = isinstance(exc, SessionLost) or _looks_closed(exc) or (
            page is not None and page.is_closed()
        )
        if session_lost:
            self._count("sessions_lost")
            self.session.invalidate()

        terminal = isinstance(exc, PortalLookupError) and not exc.retryable
        if request.is_last_attempt or terminal:
            if not session_lost:
                paths = self.diagnostics.capture_page(page, "error")
                logger.info("Debug files saved for inspection: %s", paths)
            if isinstance(exc, PortalLookupError):
                raise exc
            if session_lost:
                raise SessionLost(
                    "The browser session was lost during the lookup. Please retry the request.",
                    identifier=request.identifier,
                ) from exc
            raise PortalLookupError(
                f"Verification failed: {exc}. Please refresh the page in the browser and retry the request.",
                identifier=request.identifier,
            ) from exc

        delay = (
            self.config.get_navigation_retry_delay()
            if isinstance(exc, NavigationFailure)
            else self.config.get_retry_backoff()
        )
        logger.info("Retrying in %.0f seconds...", delay)
        self._pause(None if session_lost else page, delay)
