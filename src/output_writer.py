"""
Output Writer - Exports lookup results to JSON and Markdown
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from models import TaxpayerRecord

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

RESPONSE_FIELDS = [
    "legal_name",
    "trade_name",
    "address",
    "status",
    "effective_date",
    "constitution",
    "taxpayer_type",
    "jurisdiction",
    "center_jurisdiction",
    "cancellation_date",
    "nature_of_business",
    "composition_rate",
    "aadhaar_verified",
    "aadhaar_verification_date",
    "ekyc_verified",
    "e_invoice_status",
    "field_visit_conducted",
    "nature_of_contact",
    "goods_services",
]


def format_response(record: TaxpayerRecord) -> Dict[str, Any]:
    """Render a record as a lookup response body: missing values become N/A"""
    body: Dict[str, Any] = {"gstin": record.gstin}
    for name in RESPONSE_FIELDS:
        body[name] = getattr(record, name) or NOT_AVAILABLE
    if not record.effective_date and record.registration_date:
        body["effective_date"] = record.registration_date
    body["source"] = record.source
    body["verified_at"] = datetime.now(timezone.utc).isoformat()
    return body


class OutputWriter:
    """Handles exporting lookup results to various formats"""

    def __init__(self, config):
        self.config = config

    def _escape_md_cell(self, value: Any) -> str:
        return str(value or "").replace("|", "\\|").replace("\n", " ").strip()

    def _ensure_output_dir(self, path: Path) -> None:
        """Create output directory if it doesn't exist"""
        path.parent.mkdir(parents=True, exist_ok=True)

    def write_json(self, records: List[TaxpayerRecord], failures: Dict[str, str]) -> Path:
        """Export lookups to JSON file"""
        output_path = self.config.get_output_path('json')
        self._ensure_output_dir(output_path)

        payload = {
            "generated_at": datetime.now().isoformat(),
            "total_lookups": len(records) + len(failures),
            "results": [format_response(r) for r in records],
            "failures": [{"gstin": k, "error": v} for k, v in failures.items()],
        }

        with open(output_path, 'w') as f:
            json.dump(payload, f, indent=2, default=str)

        logger.info("JSON written: %s", output_path)
        print(f"💾 JSON saved: {output_path}")
        return output_path

    def write_markdown(self, records: List[TaxpayerRecord], failures: Dict[str, str]) -> Path:
        """Export lookups to Markdown file"""
        output_path = self.config.get_output_path('markdown')
        self._ensure_output_dir(output_path)

        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M')
        lines = [
            f"# GST Lookups - {timestamp}\n",
            f"**Succeeded:** {len(records)}  ",
            f"**Failed:** {len(failures)}  ",
            f"**Generated:** {timestamp}\n",
            "## Results\n",
        ]

        if not records:
            lines.append("*No records retrieved.*\n")
        for i, record in enumerate(records, 1):
            body = format_response(record)
            lines.append(f"### {i}. {record.gstin}\n")
            lines.append(f"**Legal Name:** {body['legal_name']}  ")
            lines.append(f"**Trade Name:** {body['trade_name']}  ")
            lines.append(f"**Status:** {body['status']}  ")
            lines.append(f"**Effective Date:** {body['effective_date']}  ")
            lines.append(f"**Constitution:** {body['constitution']}  ")
            lines.append(f"**Taxpayer Type:** {body['taxpayer_type']}  ")
            lines.append(f"**Source:** {record.source}  ")
            lines.append(f"**Address:** {body['address']}\n")

        if failures:
            lines.append("---\n")
            lines.append("## Failures\n")
            lines.append("| GSTIN | Error |")
            lines.append("| --- | --- |")
            for gstin, error in failures.items():
                lines.append(f"| {self._escape_md_cell(gstin)} | {self._escape_md_cell(error)} |")
            lines.append("")

        lines.append("\n---\n")
        lines.append("*Generated by GST Lookup*")

        with open(output_path, 'w') as f:
            f.write('\n'.join(lines))

        logger.info("Markdown written: %s", output_path)
        print(f"📝 Markdown saved: {output_path}")
        return output_path

    def write_all(self, records: List[TaxpayerRecord], failures: Dict[str, str]) -> dict:
        """Write all output formats"""
        return {
            'json': self.write_json(records, failures),
            'markdown': self.write_markdown(records, failures),
        }
