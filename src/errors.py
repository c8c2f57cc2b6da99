"""
Lookup errors raised by the search engine.

Every error carries a message an operator can act on; `retryable` tells the
orchestrator whether another attempt may help.
"""

from typing import Optional


class PortalLookupError(RuntimeError):
    """Base class for all lookup failures."""

    retryable = False
    is_timeout = False

    def __init__(self, message: str, *, identifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.identifier = identifier


class NavigationFailure(PortalLookupError):
    """The search page could not be loaded."""

    retryable = True
    is_timeout = True


class FieldNotFound(PortalLookupError):
    """The identifier input could not be located on the search page."""

    def __init__(self, message: str, *, identifier: Optional[str] = None,
                 recoverable: bool = True, screenshot: Optional[str] = None):
        super().__init__(message, identifier=identifier)
        self.retryable = recoverable
        self.screenshot = screenshot


class ChallengeTimeout(PortalLookupError):
    """The human-verification challenge was not cleared in time (abort policy only)."""

    is_timeout = True


class PayloadTimeout(PortalLookupError):
    """The portal never returned the taxpayer-detail response."""

    retryable = True
    is_timeout = True


class ExtractionInsufficient(PortalLookupError):
    """A response arrived but held no legal name, trade name or address."""

    retryable = True


class SessionLost(PortalLookupError):
    """The browser page or context went away mid-attempt."""

    retryable = True
