"""
Lookup Worker - serializes lookups onto the one thread that owns Playwright

The sync Playwright API is bound to the thread that started it, so every
lookup and every keep-alive sweep runs here, one at a time.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Optional

from artifacts import DiagnosticsWriter
from challenge_solver import build_answer_provider
from run_metrics import RunMetrics
from session_manager import SessionManager
from taxpayer_search import TaxpayerSearch
from verification_gate import VerificationGate

logger = logging.getLogger(__name__)

_STOP = object()


def build_searcher(config, session: SessionManager, metrics: Optional[RunMetrics] = None) -> TaxpayerSearch:
    """Wire the gate, answer provider and diagnostics around one session"""
    diagnostics = DiagnosticsWriter(config.get_diagnostics_dir())
    gate = VerificationGate(
        config,
        session.persist_cookies,
        answer_provider=build_answer_provider(config),
        diagnostics=diagnostics,
    )
    return TaxpayerSearch(config, session, gate, diagnostics=diagnostics, metrics=metrics)


class LookupWorker:
    """Queue of pending lookups drained by run()"""

    def __init__(self, config, session: Optional[SessionManager] = None,
                 searcher: Optional[TaxpayerSearch] = None, metrics: Optional[RunMetrics] = None):
        self.config = config
        self.metrics = metrics
        self.session = session or SessionManager(config)
        self.searcher = searcher or build_searcher(config, self.session, metrics)
        self._queue: "queue.Queue" = queue.Queue()

    def submit(self, identifier: str) -> Future:
        future: Future = Future()
        self._queue.put((identifier, future))
        return future

    def stop(self) -> None:
        self._queue.put(_STOP)

    def _lookup(self, identifier: str, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        started = time.monotonic()
        try:
            record = self.searcher.search(identifier)
        except Exception as exc:
            if self.metrics is not None:
                self.metrics.record_lookup(identifier, ok=False, attempts=self.searcher.last_attempts,
                                           seconds=time.monotonic() - started, error=str(exc))
            future.set_exception(exc)
            return
        if self.metrics is not None:
            self.metrics.record_lookup(identifier, ok=True, attempts=self.searcher.last_attempts,
                                       seconds=time.monotonic() - started)
        future.set_result(record)

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Process lookups until stop() or stop_event; keep-alive in between"""
        interval = self.config.get_keepalive_interval()
        next_keepalive = time.monotonic() + interval
        logger.info("Lookup worker started (keep-alive every %.0fs)", interval)
        try:
            while stop_event is None or not stop_event.is_set():
                timeout = max(next_keepalive - time.monotonic(), 0.0)
                try:
                    item = self._queue.get(timeout=min(timeout, 1.0))
                except queue.Empty:
                    item = None

                if item is _STOP:
                    break
                if item is not None:
                    identifier, future = item
                    self._lookup(identifier, future)

                if time.monotonic() >= next_keepalive:
                    self.session.keep_alive()
                    next_keepalive = time.monotonic() + interval
        finally:
            self._drain()
            self.session.shutdown()
            logger.info("Lookup worker stopped")

    def _drain(self) -> None:
        """Cancel lookups still queued when the loop exits"""
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not _STOP:
                item[1].cancel()
