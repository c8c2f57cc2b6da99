"""
Tests for the search orchestrator against a scripted fake portal page.
"""

import pytest
from pydantic import ValidationError

from artifacts import DiagnosticsWriter
from conftest import FakeElement, FakeResponse, FakeSession
from errors import (
    ChallengeTimeout,
    ExtractionInsufficient,
    FieldNotFound,
    NavigationFailure,
    PayloadTimeout,
    PortalLookupError,
    SessionLost,
)
from run_metrics import RunMetrics
from taxpayer_search import RESULTS_NOT_FOUND, TaxpayerSearch
from verification_gate import VerificationGate

GSTIN = "27AAPFU0939F1ZV"
DETAILS_URL = "https://services.gst.gov.in/services/api/search/taxpayerDetails"
GOODS_URL = "https://services.gst.gov.in/services/api/search/goodservice?gstin=" + GSTIN

PAYLOAD = {
    "gstin": GSTIN,
    "lgnm": "ACME TRADERS PRIVATE LIMITED",
    "tradeNam": "ACME STORES",
    "pradr": {"adr": "12, MG ROAD, PUNE, MAHARASHTRA, 411001"},
    "sts": "Active",
    "rgdt": "01/07/2017",
}

RESULT_MARKUP = """
<html><body><div class="content-pane"><table>
  <tr><td>Legal Name of Business</td><td>ACME TRADERS PRIVATE LIMITED</td></tr>
  <tr><td>Trade Name</td><td>ACME STORES</td></tr>
</table></div></body></html>
"""

FORM_MARKUP = """
<html><body>
<form><label for="for_gstin">GSTIN/UIN of the Taxpayer</label><input id="for_gstin"></form>
<footer><p>Contact Address</p><p>GSTN, East Wing, World Mark 1, New Delhi</p></footer>
</body></html>
"""


class Portal:
    """Wires a FakePage up like the search form."""

    def __init__(self, page, payload=PAYLOAD, goods=None, respond_after=0.5):
        self.page = page
        self.payload = payload
        self.goods = goods if goods is not None else {"bzgddtls": [{"hsncd": "8471"}]}
        self.respond_after = respond_after
        self.submitted_at = []
        self.input = FakeElement()
        self.button = FakeElement(on_click=self.on_submit)
        page.elements["#for_gstin"] = self.input
        page.elements["#lotsearch"] = self.button

    def on_submit(self):
        self.submitted_at.append(self.page.clock.now)
        if self.payload is None:
            return
        self.page.schedule(self.respond_after, self.respond)

    def respond(self):
        self.page.emit_response(FakeResponse(DETAILS_URL, self.payload))
        self.page.emit_response(FakeResponse(GOODS_URL, self.goods))


@pytest.fixture
def session(page):
    return FakeSession(page)


def _searcher(config, session, clock, tmp_path, answer_provider=None, **kwargs):
    diagnostics = DiagnosticsWriter(tmp_path / "diag")
    gate = VerificationGate(config, session.persist_cookies, answer_provider=answer_provider,
                            diagnostics=diagnostics, notifier=lambda message: None, clock=clock)
    return TaxpayerSearch(config, session, gate, diagnostics=diagnostics, clock=clock, **kwargs)


class TestHappyPath:
    def test_returns_mapped_record(self, config, session, page, clock, tmp_path):
        portal = Portal(page)
        record = _searcher(config, session, clock, tmp_path).search(GSTIN.lower())

        assert record.gstin == GSTIN
        assert record.legal_name == "ACME TRADERS PRIVATE LIMITED"
        assert record.address == "12, MG ROAD, PUNE, MAHARASHTRA, 411001"
        assert record.goods_services == [{"hsncd": "8471"}]
        assert record.source == "portal-api"
        assert portal.input.value == GSTIN
        assert portal.input.fills == ["", GSTIN]
        assert page.goto_calls == [config.get_search_url()]
        assert session.persisted >= 1

    def test_listener_removed_after_attempt(self, config, session, page, clock, tmp_path):
        Portal(page)
        _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert page.listeners["response"] == []

    def test_enter_key_fallback_without_button(self, config, session, page, clock, tmp_path):
        portal = Portal(page)
        del page.elements["#lotsearch"]
        original_press = portal.input.press

        def press(key):
            original_press(key)
            portal.on_submit()

        portal.input.press = press
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert portal.input.pressed == ["Enter"]
        assert record.legal_name

    def test_slow_payload_within_ceiling(self, config, session, page, clock, tmp_path):
        Portal(page, respond_after=12)
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert record.trade_name == "ACME STORES"
        assert len(page.goto_calls) == 1


class TestRetries:
    def test_payload_timeout_after_exact_attempts(self, config, session, page, clock, tmp_path):
        Portal(page, payload=None)
        metrics = RunMetrics()
        searcher = _searcher(config, session, clock, tmp_path, metrics=metrics)

        with pytest.raises(PayloadTimeout) as excinfo:
            searcher.search(GSTIN)

        assert str(excinfo.value) == RESULTS_NOT_FOUND
        assert excinfo.value.identifier == GSTIN
        assert len(page.goto_calls) == config.get_max_attempts()
        assert metrics.counters["attempts"] == 3
        assert metrics.counters["payload_timeouts"] == 3
        # diagnostics captured on the final attempt
        assert list((tmp_path / "diag").glob("error-*.png"))
        assert list((tmp_path / "diag").glob("error-*.html"))

    def test_max_attempts_argument(self, config, session, page, clock, tmp_path):
        Portal(page, payload=None)
        with pytest.raises(PayloadTimeout):
            _searcher(config, session, clock, tmp_path).search(GSTIN, max_attempts=1)
        assert len(page.goto_calls) == 1

    def test_zero_max_attempts_rejected(self, config, session, page, clock, tmp_path):
        Portal(page)
        with pytest.raises(ValidationError):
            _searcher(config, session, clock, tmp_path).search(GSTIN, max_attempts=0)
        assert page.goto_calls == []

    def test_navigation_failure_retried(self, config, session, page, clock, tmp_path):
        Portal(page)
        page.goto_errors = [TimeoutError("net::ERR_TIMED_OUT")]
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert record.legal_name
        assert len(page.goto_calls) == 2

    def test_navigation_failure_surfaces_on_last_attempt(self, config, session, page, clock, tmp_path):
        Portal(page)
        page.goto_errors = [TimeoutError("net::ERR_TIMED_OUT")] * 3
        with pytest.raises(NavigationFailure) as excinfo:
            _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert excinfo.value.is_timeout

    def test_field_not_found(self, config, session, page, clock, tmp_path):
        with pytest.raises(FieldNotFound) as excinfo:
            _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert excinfo.value.retryable
        assert excinfo.value.screenshot
        assert len(page.goto_calls) == 3

    def test_insufficient_payload_never_succeeds(self, config, session, page, clock, tmp_path):
        Portal(page, payload={"gstin": GSTIN, "sts": "Active"})
        with pytest.raises(ExtractionInsufficient):
            _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert len(page.goto_calls) == 3

    def test_unexpected_error_wrapped(self, config, session, page, clock, tmp_path):
        portal = Portal(page)

        def boom(value):
            raise ValueError("element detached")

        portal.input.on_fill = boom
        with pytest.raises(PortalLookupError) as excinfo:
            _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert "element detached" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_closed_page_invalidates_session(self, config, session, page, clock, tmp_path):
        Portal(page)
        page.goto_errors = [RuntimeError("Target page, context or browser has been closed")] * 3
        with pytest.raises(SessionLost):
            _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert session.invalidations == 3

    def test_recovers_after_transient_timeout(self, config, session, page, clock, tmp_path):
        portal = Portal(page, payload=None)

        def on_goto():
            if len(page.goto_calls) == 2:
                portal.payload = PAYLOAD

        page.on_goto = on_goto
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert record.legal_name == "ACME TRADERS PRIVATE LIMITED"
        assert len(page.goto_calls) == 2


class TestChallenge:
    def test_submits_only_after_challenge_resolved(self, config, session, page, clock, tmp_path):
        portal = Portal(page)
        widget = FakeElement()
        page.elements["#imgCaptcha"] = widget

        def on_fill(value):
            # the form stays locked until the challenge is answered
            if value:
                portal.input.enabled = False
                page.schedule(20, clear)

        def clear():
            widget.visible = False
            del page.elements["#imgCaptcha"]
            portal.input.enabled = True

        portal.input.on_fill = on_fill
        page.body = "Type the characters you see in the image below (captcha)"
        metrics = RunMetrics()

        record = _searcher(config, session, clock, tmp_path, metrics=metrics).search(GSTIN)

        assert record.legal_name
        assert portal.submitted_at and portal.submitted_at[0] >= 20
        assert metrics.counters["challenges_detected"] == 1

    def test_unresolved_challenge_still_proceeds(self, config, session, page, clock, tmp_path):
        portal = Portal(page)
        page.elements["#imgCaptcha"] = FakeElement()
        page.body = "captcha"

        def on_fill(value):
            if value:
                portal.input.enabled = False

        portal.input.on_fill = on_fill
        metrics = RunMetrics()

        record = _searcher(config, session, clock, tmp_path, metrics=metrics).search(GSTIN)

        assert record.legal_name
        assert portal.submitted_at[0] >= config.get_captcha_timeout()
        assert metrics.counters["challenge_timeouts"] == 1

    def test_challenge_after_submit_is_waited_out(self, config, session, page, clock, tmp_path):
        portal = Portal(page, respond_after=20)
        widget = FakeElement(visible=False)
        page.elements[".g-recaptcha"] = widget

        original = portal.on_submit

        def clear():
            widget.visible = False
            portal.input.enabled = True

        def on_submit():
            original()
            widget.visible = True
            portal.input.enabled = False
            page.schedule(8, clear)

        portal.button.on_click = on_submit
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)

        # the payload lands after the plain 15s ceiling; the ceiling restarts
        # once the post-submit challenge clears
        assert record.source == "portal-api"
        assert len(page.goto_calls) == 1

    def test_standing_form_captcha_not_treated_as_new_challenge(self, config, session, page, clock, tmp_path):
        portal = Portal(page, respond_after=4)
        answer_field = FakeElement()
        # the form's own captcha field matches the generic id/class markers and never goes away
        page.elements["#fo-captcha"] = answer_field
        page.elements['[id*="captcha"]'] = answer_field
        page.elements["#imgCaptcha"] = FakeElement(image=b"captcha-bytes")
        page.body = "Type the characters you see in the image below"

        class CountingProvider:
            def __init__(self):
                self.calls = 0

            def solve(self, image, image_path=None):
                self.calls += 1
                return "K7P2Q"

        provider = CountingProvider()
        metrics = RunMetrics()
        record = _searcher(config, session, clock, tmp_path, answer_provider=provider,
                           metrics=metrics).search(GSTIN)

        assert record.source == "portal-api"
        assert provider.calls == 1
        assert answer_field.fills == ["K7P2Q"]
        assert metrics.counters["challenges_detected"] == 1
        assert len(portal.submitted_at) == 1

    def test_abort_policy_carries_identifier(self, make_config, session, page, clock, tmp_path):
        config = make_config({"captcha": {"on_timeout": "abort"}})
        portal = Portal(page)
        page.elements["#imgCaptcha"] = FakeElement()

        def on_fill(value):
            if value:
                portal.input.enabled = False

        portal.input.on_fill = on_fill

        with pytest.raises(ChallengeTimeout) as excinfo:
            _searcher(config, session, clock, tmp_path).search(GSTIN)

        assert excinfo.value.identifier == GSTIN
        assert not portal.submitted_at
        assert len(page.goto_calls) == 1


class TestDomFallback:
    def test_record_from_markup_when_payload_missing(self, config, session, page, clock, tmp_path):
        Portal(page, payload=None)
        page.html = RESULT_MARKUP
        record = _searcher(config, session, clock, tmp_path).search(GSTIN)
        assert record.source == "page-markup"
        assert record.legal_name == "ACME TRADERS PRIVATE LIMITED"
        assert len(page.goto_calls) == 1

    def test_disabled_fallback(self, make_config, session, page, clock, tmp_path):
        config = make_config({"search": {"dom_fallback": False, "max_attempts": 1}})
        Portal(page, payload=None)
        page.html = RESULT_MARKUP
        with pytest.raises(PayloadTimeout):
            _searcher(config, session, clock, tmp_path).search(GSTIN)

    def test_form_page_text_is_not_a_record(self, config, session, page, clock, tmp_path):
        Portal(page, payload=None)
        page.html = FORM_MARKUP
        with pytest.raises(PayloadTimeout) as excinfo:
            _searcher(config, session, clock, tmp_path).search(GSTIN, max_attempts=1)
        assert str(excinfo.value) == RESULTS_NOT_FOUND
