"""
Portal API interception and field mapping

The search page calls two JSON endpoints after submission. A response
listener captures them into write-once cells that the orchestrator polls.
"""

import logging
from typing import Any, Dict, Optional

from models import TaxpayerRecord

logger = logging.getLogger(__name__)

# primary payload key -> record field
TAXPAYER_FIELD_MAP = {
    "legal_name": "lgnm",
    "trade_name": "tradeNam",
    "status": "sts",
    "effective_date": "rgdt",
    "registration_date": "rgdt",
    "constitution": "ctb",
    "taxpayer_type": "dty",
    "jurisdiction": "stj",
    "center_jurisdiction": "ctj",
    "cancellation_date": "cxdt",
    "nature_of_business": "nba",
    "composition_rate": "cmpRt",
    "aadhaar_verified": "adhrVFlag",
    "aadhaar_verification_date": "adhrVdt",
    "ekyc_verified": "ekycVFlag",
    "e_invoice_status": "einvoiceStatus",
    "field_visit_conducted": "isFieldVisitConducted",
    "nature_of_contact": "ntcrbs",
}

TEXT_FIELDS = {
    "legal_name", "trade_name", "address", "status", "effective_date",
    "registration_date", "constitution", "taxpayer_type", "jurisdiction",
    "center_jurisdiction", "cancellation_date", "aadhaar_verification_date",
}


class PayloadCell:
    """Holds one intercepted response; the first write wins"""

    def __init__(self, name: str):
        self.name = name
        self.value: Any = None
        self.received = False

    def set(self, value: Any) -> bool:
        if self.received:
            return False
        self.value = value
        self.received = True
        return True


class ResponseInterceptor:
    """Scoped 'response' listener feeding the taxpayer and goods/services cells"""

    def __init__(self, page: Any, taxpayer_path: str, goods_services_path: str):
        self.page = page
        self.taxpayer_path = taxpayer_path
        self.goods_services_path = goods_services_path
        self.taxpayer = PayloadCell("taxpayerDetails")
        self.goods_services = PayloadCell("goodservice")
        self._installed = False

    def _capture(self, response: Any, cell: PayloadCell) -> None:
        try:
            payload = response.json()
        except Exception as exc:
            logger.warning("Could not parse %s API response: %s", cell.name, exc)
            return
        if cell.set(payload):
            logger.info("✅ Intercepted %s API response", cell.name)

    def handle(self, response: Any) -> None:
        try:
            url = response.url or ""
        except Exception:
            return
        if self.taxpayer_path in url:
            self._capture(response, self.taxpayer)
        elif self.goods_services_path in url:
            self._capture(response, self.goods_services)

    def install(self) -> "ResponseInterceptor":
        if not self._installed:
            self.page.on("response", self.handle)
            self._installed = True
        return self

    def remove(self) -> None:
        if not self._installed:
            return
        try:
            self.page.remove_listener("response", self.handle)
        except Exception:
            logger.debug("Response listener removal failed", exc_info=True)
        self._installed = False


def _present(value: Any) -> Any:
    if value is None or value == "" or value == [] or value == {}:
        return None
    return value


def _text(value: Any) -> Optional[str]:
    value = _present(value)
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _principal_address(primary: Dict[str, Any]) -> Any:
    pradr = primary.get("pradr")
    if isinstance(pradr, dict):
        return pradr.get("adr")
    return None


def map_payload(
    primary: Optional[Dict[str, Any]],
    secondary: Optional[Dict[str, Any]],
    identifier: str,
) -> TaxpayerRecord:
    """Map intercepted responses onto a TaxpayerRecord; missing keys become None"""
    primary = primary if isinstance(primary, dict) else {}
    secondary = secondary if isinstance(secondary, dict) else {}

    values: Dict[str, Any] = {}
    for field_name, key in TAXPAYER_FIELD_MAP.items():
        values[field_name] = primary.get(key)
    values["address"] = _principal_address(primary)

    record_fields: Dict[str, Any] = {}
    for field_name, value in values.items():
        record_fields[field_name] = _text(value) if field_name in TEXT_FIELDS else _present(value)

    return TaxpayerRecord(
        gstin=_text(primary.get("gstin")) or identifier,
        goods_services=_present(secondary.get("bzgddtls")),
        source="portal-api",
        **record_fields,
    )
