"""
Verification Gate - waits out the portal's human-verification challenge

Polls the page until the identifier input is usable (the real readiness
signal) or the timeout passes. Challenge detection only drives the notice,
the answer provider and the extra settle time after it clears.
"""

import logging
import time
from typing import Any, Callable, Collection, Dict, List, Optional, Set

from errors import ChallengeTimeout
from models import GateResult, GateState, VerificationState
from page_helpers import body_text, first_match, first_usable, first_visible, wait_for_network_idle

logger = logging.getLogger(__name__)

# Generic widget markers (reCAPTCHA and friends)
CHALLENGE_WIDGET_SELECTORS = [
    'iframe[src*="recaptcha"]',
    'iframe[src*="captcha"]',
    '.g-recaptcha',
    '#captcha',
    '[class*="captcha"]',
    '[id*="captcha"]',
    'div[data-sitekey]',
    '.recaptcha-checkbox',
    '[class*="recaptcha"]',
]

CHALLENGE_TEXT_MARKERS = [
    "captcha",
    "verify you are human",
    "i'm not a robot",
]

# The portal's own image challenge on the search form
PORTAL_CHALLENGE_SELECTORS = [
    'label[for="fo-captcha"]',
    'label:has-text("Type the characters")',
    '#fo-captcha',
    'input[name="cap"]',
    '#imgCaptcha',
    'img.captcha',
]

CHALLENGE_IMAGE_SELECTORS = ['#imgCaptcha', 'img.captcha']
CHALLENGE_ANSWER_SELECTORS = ['#fo-captcha', 'input[name="cap"]']

IDENTIFIER_READY_SELECTORS = [
    'input[name="for_gstin"]',
    'input[id="for_gstin"]',
    '#for_gstin',
    'input[name="gstin"]',
    'input[id="gstin"]',
    '#gstin',
    'input[type="text"]',
]


def _print_notice(message: str) -> None:
    print(message)


class VerificationGate:
    """Challenge wait loop: scanning -> challenge-detected -> resolved | timed-out"""

    def __init__(
        self,
        config,
        persist_cookies: Callable[[], Any],
        *,
        answer_provider: Optional[Any] = None,
        diagnostics: Optional[Any] = None,
        notifier: Callable[[str], None] = _print_notice,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._persist_cookies = persist_cookies
        self.answer_provider = answer_provider
        self.diagnostics = diagnostics
        self._notify = notifier
        self._clock = clock

    def detect_challenge(self, page: Any) -> Optional[Dict[str, str]]:
        """Immediate check for the portal's challenge markers on the search form"""
        element, selector = first_match(page, PORTAL_CHALLENGE_SELECTORS)
        if element is None:
            return None
        return {"reason": f"selector:{selector}", "url": getattr(page, "url", "") or ""}

    def widget_visible(self, page: Any) -> bool:
        element, _ = first_visible(page, CHALLENGE_WIDGET_SELECTORS)
        return element is not None

    def visible_widgets(self, page: Any) -> Set[str]:
        """Widget selectors that currently match a visible element"""
        return {
            selector for selector in CHALLENGE_WIDGET_SELECTORS
            if first_visible(page, [selector])[0] is not None
        }

    def new_widget_visible(self, page: Any, standing: Collection[str]) -> bool:
        """True when a widget shows that was not in `standing` (the form's own captcha field stays up)"""
        return bool(self.visible_widgets(page) - set(standing))

    def challenge_visible(self, page: Any) -> bool:
        if self.widget_visible(page):
            return True
        text = body_text(page).lower()
        return any(marker in text for marker in CHALLENGE_TEXT_MARKERS)

    def input_usable(self, page: Any) -> bool:
        element, _ = first_usable(page, IDENTIFIER_READY_SELECTORS)
        return element is not None

    def observe(self, page: Any, started: float) -> VerificationState:
        return VerificationState(
            challenge_visible=self.challenge_visible(page),
            input_usable=self.input_usable(page),
            elapsed=self._clock() - started,
        )

    def _supply_answer(self, page: Any) -> bool:
        """Capture the challenge image and type the provider's answer; best-effort"""
        if self.answer_provider is None:
            return False
        image_el, _ = first_visible(page, CHALLENGE_IMAGE_SELECTORS)
        if image_el is None:
            logger.info("No challenge image found for the answer provider")
            return False
        try:
            image = image_el.screenshot()
            image_path = self.diagnostics.save_image(image, "challenge") if self.diagnostics else None
            answer = self.answer_provider.solve(image, image_path=image_path)
        except Exception as exc:
            logger.warning("Challenge answer provider failed: %s", exc)
            return False
        if not answer:
            return False
        field_el, _ = first_usable(page, CHALLENGE_ANSWER_SELECTORS)
        if field_el is None:
            logger.warning("Challenge answer received but no answer field is usable")
            return False
        try:
            field_el.fill(answer)
        except Exception as exc:
            logger.warning("Could not type challenge answer: %s", exc)
            return False
        logger.info("Challenge answer typed into the form")
        return True

    def _stabilize(self, page: Any) -> None:
        delay_ms = int(self.config.get_captcha_stabilize_delay() * 1000)
        logger.info("CAPTCHA solved! Waiting for page to stabilize...")
        page.wait_for_timeout(delay_ms)
        if not wait_for_network_idle(page, int(self.config.get_captcha_network_idle_timeout() * 1000)):
            logger.info("Waiting for page to finish loading...")
        page.wait_for_timeout(delay_ms)
        logger.info("Page stabilized. Proceeding with form fill...")

    def wait(
        self,
        page: Any,
        timeout_seconds: Optional[float] = None,
        identifier: Optional[str] = None,
    ) -> GateResult:
        """Block until the input is usable or the timeout passes"""
        timeout = float(timeout_seconds if timeout_seconds is not None else self.config.get_captcha_timeout())
        poll_ms = int(self.config.get_captcha_poll_interval() * 1000)
        status_interval = self.config.get_captcha_status_interval()

        started = self._clock()
        last_status = started
        detected = False
        history: List[GateState] = [GateState.SCANNING]
        logger.info("Checking for CAPTCHA...")

        while self._clock() - started < timeout:
            try:
                observed = self.observe(page, started)
            except Exception as exc:
                logger.debug("Challenge probe failed: %s", exc)
                observed = None

            if observed is not None:
                if observed.challenge_visible and not detected:
                    detected = True
                    history.append(GateState.CHALLENGE_DETECTED)
                    logger.warning("CAPTCHA detected on %s", getattr(page, "url", ""))
                    self._notify("⚠️  CAPTCHA detected! Please solve it in the browser window.")
                    self._supply_answer(page)

                if observed.input_usable:
                    if detected:
                        self._stabilize(page)
                    else:
                        logger.info("No CAPTCHA detected. Proceeding...")
                    self._persist_cookies()
                    history.append(GateState.RESOLVED)
                    return GateResult(GateState.RESOLVED, detected, self._clock() - started, history)

                if detected and self._clock() - last_status > status_interval:
                    logger.info("Still waiting for CAPTCHA... (%ss elapsed)", int(observed.elapsed))
                    last_status = self._clock()

            page.wait_for_timeout(poll_ms)

        elapsed = self._clock() - started
        logger.warning("Timeout waiting for CAPTCHA after %.0fs", elapsed)
        self._persist_cookies()
        history.append(GateState.TIMED_OUT)
        if self.config.get_captcha_on_timeout() == "abort":
            raise ChallengeTimeout(
                "Human verification was not completed in time. Solve the challenge in the browser and retry.",
                identifier=identifier,
            )
        logger.warning("Proceeding without challenge confirmation")
        return GateResult(GateState.TIMED_OUT, detected, elapsed, history)
