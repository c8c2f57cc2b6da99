"""
Data models for GST Lookup
Defines taxpayer records, search requests and verification-gate state
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

GSTIN_PATTERN = re.compile(r"^[0-9A-Z]{15}$")

IDENTITY_FIELDS = ("legal_name", "trade_name", "address")


def normalize_identifier(value: str) -> str:
    """Strip and uppercase a raw GSTIN"""
    return (value or "").strip().upper()


def is_valid_identifier(value: str) -> bool:
    """Check the 15-character alphanumeric GSTIN shape"""
    return bool(GSTIN_PATTERN.match(normalize_identifier(value)))


class TaxpayerRecord(BaseModel):
    """Normalized taxpayer registration record"""

    gstin: str
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    address: Optional[str] = None
    status: Optional[str] = None
    effective_date: Optional[str] = None
    registration_date: Optional[str] = None
    constitution: Optional[str] = None
    taxpayer_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    center_jurisdiction: Optional[str] = None
    cancellation_date: Optional[str] = None
    nature_of_business: Optional[Any] = None
    composition_rate: Optional[Any] = None
    aadhaar_verified: Optional[Any] = None
    aadhaar_verification_date: Optional[str] = None
    ekyc_verified: Optional[Any] = None
    e_invoice_status: Optional[Any] = None
    field_visit_conducted: Optional[Any] = None
    nature_of_contact: Optional[Any] = None
    goods_services: Optional[Any] = None

    # Metadata
    source: str = "portal-api"  # portal-api | page-markup
    retrieved_at: datetime = Field(default_factory=datetime.now)

    def has_identity(self) -> bool:
        """True when at least one of legal name, trade name or address is set"""
        return any(getattr(self, name) for name in IDENTITY_FIELDS)

    def __str__(self) -> str:
        name = self.legal_name or self.trade_name or "unknown taxpayer"
        return f"{self.gstin} ({name})"


class SearchRequest(BaseModel):
    """One lookup and its attempt budget"""

    identifier: str
    attempt: int = 0
    max_attempts: int = 3

    @field_validator("identifier")
    @classmethod
    def _normalize(cls, value: str) -> str:
        value = normalize_identifier(value)
        if not value:
            raise ValueError("identifier is required")
        return value

    @field_validator("max_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def __str__(self) -> str:
        return f"{self.identifier} (attempt {self.attempt}/{self.max_attempts})"


class GateState(str, Enum):
    SCANNING = "scanning"
    CHALLENGE_DETECTED = "challenge-detected"
    RESOLVED = "resolved"
    TIMED_OUT = "timed-out"


@dataclass
class VerificationState:
    """What a single gate poll observed"""

    challenge_visible: bool
    input_usable: bool
    elapsed: float


@dataclass
class GateResult:
    """Outcome of one verification-gate wait"""

    state: GateState
    challenge_seen: bool
    elapsed: float
    history: List[GateState] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.state == GateState.RESOLVED
