"""
Extraction Chain - rebuilds a taxpayer record from rendered page markup

Used when the portal's API response was not captured. Tiers run in
descending confidence and each only fills fields the earlier tiers left
empty:

1. table rows inside the result pane (label cell -> value cell)
2. label elements and their adjacent value elements
3. consecutive lines of visible body text (no validity filtering)

Only the first two tiers can vouch for a record on their own; the line
tier just fills gaps once a result pane is on the page.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from models import IDENTITY_FIELDS, TaxpayerRecord

logger = logging.getLogger(__name__)

BOILERPLATE_WORDS = (
    "menu", "navigation", "header", "footer", "sidebar", "nav", "button",
    "link", "click", "ok", "cancel", "submit", "search", "gst law", "amendment",
)
_BOILERPLATE_RE = re.compile(r"\b(?:" + "|".join(re.escape(w) for w in BOILERPLATE_WORDS) + r")\b")

TABLE_TOPICS = ("legal", "trade", "address", "status", "effective date")
TABLE_EXCLUDE = ("menu", "navigation", "header")
PARENT_EXCLUDE = ("menu", "navigation")

RESULT_PANE_SELECTOR = ".content-pane, .mypage, .tabpane"
MAIN_CONTENT_SELECTOR = "main, .content, .main-content, #content, .result, .search-result"
LABEL_ELEMENTS = "div, span, p, td, label, strong, li"
MAX_LABEL_LENGTH = 80

INVISIBLE_TAGS = ["script", "style", "noscript", "template", "head"]


@dataclass(frozen=True)
class FieldRule:
    """How one record field is recognised by each tier"""

    name: str
    table_labels: Tuple[str, ...]
    table_keyword_sets: Tuple[Tuple[str, ...], ...] = ()
    adjacency_keyword_sets: Tuple[Tuple[str, ...], ...] = ()
    line_keyword: Optional[str] = None
    min_length: int = 1
    is_date: bool = False

    def matches_table_label(self, label: str) -> bool:
        if any(text in label for text in self.table_labels):
            return True
        return any(all(k in label for k in keywords) for keywords in self.table_keyword_sets)

    def matches_adjacent_label(self, label: str) -> bool:
        return any(all(k in label for k in keywords) for keywords in self.adjacency_keyword_sets)


FIELD_RULES: Tuple[FieldRule, ...] = (
    FieldRule(
        name="legal_name",
        table_labels=("legal name of business",),
        table_keyword_sets=(("legal", "name", "business"),),
        adjacency_keyword_sets=(("legal", "name"),),
        line_keyword="legal name",
        min_length=4,
    ),
    FieldRule(
        name="trade_name",
        table_labels=("trade name",),
        table_keyword_sets=(("trade", "name"),),
        adjacency_keyword_sets=(("trade", "name"),),
        line_keyword="trade name",
        min_length=2,
    ),
    FieldRule(
        name="address",
        table_labels=("address", "principal place", "place of business"),
        adjacency_keyword_sets=(("address",), ("principal place",)),
        line_keyword="address",
        min_length=11,
    ),
    FieldRule(
        name="status",
        table_labels=("status",),
        adjacency_keyword_sets=(("status",),),
        line_keyword="status",
        min_length=3,
    ),
    FieldRule(
        name="effective_date",
        table_labels=("effective date of registration", "effective date", "date of registration"),
        min_length=6,
        is_date=True,
    ),
)

RULES_BY_NAME = {rule.name: rule for rule in FIELD_RULES}


def clean_text(value: str) -> str:
    return " ".join((value or "").split())


def is_valid_value(value: str, rule: FieldRule) -> bool:
    """Reject boilerplate, placeholders and too-short strings"""
    if not value or len(value) < rule.min_length:
        return False
    lower = value.lower()
    if lower in ("n/a", "na", "-"):
        return False
    if rule.is_date:
        return any(ch.isdigit() for ch in value)
    if len(lower) < 5:
        return False
    if _BOILERPLATE_RE.search(lower):
        return False
    return any(ch.isalpha() for ch in lower)


def visible_lines(soup: BeautifulSoup) -> List[str]:
    """Body text split into trimmed non-empty lines"""
    root = soup.body or soup
    text = root.get_text("\n")
    return [line.strip() for line in text.split("\n") if line.strip()]


class TableScanTier:
    """Two-cell rows of result tables"""

    name = "table-scan"
    validated = True
    fields = ("legal_name", "trade_name", "address", "status", "effective_date")

    def _candidate_tables(self, soup: BeautifulSoup) -> Iterable[Tag]:
        pane = soup.select_one(RESULT_PANE_SELECTOR) or soup.body or soup
        for table in pane.find_all("table"):
            table_text = table.get_text(" ").lower()
            if not any(topic in table_text for topic in TABLE_TOPICS):
                continue
            if any(marker in table_text for marker in TABLE_EXCLUDE):
                continue
            parent = table.find_parent("div")
            parent_text = parent.get_text(" ").lower() if parent else ""
            if any(marker in parent_text for marker in PARENT_EXCLUDE):
                continue
            yield table

    def extract(self, soup: BeautifulSoup, wanted: Sequence[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        rules = [RULES_BY_NAME[name] for name in self.fields if name in wanted]
        for table in self._candidate_tables(soup):
            for row in table.find_all("tr"):
                cells = row.find_all(["td", "th"])
                if len(cells) < 2:
                    continue
                label = clean_text(cells[0].get_text(" ")).lower()
                value = clean_text(cells[1].get_text(" "))
                for rule in rules:
                    if rule.name in found or not rule.matches_table_label(label):
                        continue
                    if is_valid_value(value, rule):
                        found[rule.name] = value
        return found


class LabelAdjacencyTier:
    """Label-sized elements followed by their value element"""

    name = "label-adjacency"
    validated = True
    fields = ("legal_name", "trade_name", "address", "status")

    def _value_for(self, element: Tag) -> str:
        sibling = element.find_next_sibling()
        if sibling is not None:
            return clean_text(sibling.get_text(" "))
        parent = element.parent
        if parent is None:
            return ""
        own = clean_text(element.get_text(" "))
        return clean_text(clean_text(parent.get_text(" ")).replace(own, "", 1))

    def extract(self, soup: BeautifulSoup, wanted: Sequence[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        rules = [RULES_BY_NAME[name] for name in self.fields if name in wanted]
        if not rules:
            return found
        root = soup.select_one(MAIN_CONTENT_SELECTOR) or soup.body or soup
        for element in root.select(LABEL_ELEMENTS):
            label = clean_text(element.get_text(" ")).lower()
            if not label or len(label) > MAX_LABEL_LENGTH:
                continue
            for rule in rules:
                if rule.name in found or not rule.matches_adjacent_label(label):
                    continue
                value = self._value_for(element)
                if is_valid_value(value, rule):
                    found[rule.name] = value
            if len(found) == len(rules):
                break
        return found


class LinePairTier:
    """Last resort: the line after a keyword line, taken verbatim; later matches overwrite earlier ones"""

    name = "line-pair"
    validated = False
    fields = ("legal_name", "trade_name", "address", "status")

    def extract(self, soup: BeautifulSoup, wanted: Sequence[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        rules = [RULES_BY_NAME[name] for name in self.fields if name in wanted]
        lines = visible_lines(soup)
        for i, line in enumerate(lines[:-1]):
            lower = line.lower()
            for rule in rules:
                if rule.line_keyword and rule.line_keyword in lower:
                    found[rule.name] = lines[i + 1]
        return found


DEFAULT_TIERS = (TableScanTier(), LabelAdjacencyTier(), LinePairTier())


def has_result_region(soup: BeautifulSoup) -> bool:
    """True when a result pane holding a table is on the page"""
    return any(pane.find("table") is not None for pane in soup.select(RESULT_PANE_SELECTOR))


class ExtractionChain:
    """Runs the tiers in order over one page's markup"""

    def __init__(self, tiers: Optional[Sequence[Any]] = None, diagnostics: Optional[Any] = None):
        self.tiers = tuple(tiers) if tiers is not None else DEFAULT_TIERS
        self.diagnostics = diagnostics

    def _parse(self, html: str) -> BeautifulSoup:
        soup = BeautifulSoup(html or "", "html.parser")
        for tag in soup.find_all(INVISIBLE_TAGS):
            tag.decompose()
        return soup

    def _run_tiers(self, soup: BeautifulSoup) -> Tuple[Dict[str, str], Dict[str, Any]]:
        """Field values plus the tier that supplied each one"""
        data: Dict[str, str] = {}
        sources: Dict[str, Any] = {}
        for tier in self.tiers:
            wanted = [name for name in tier.fields if name not in data]
            if not wanted:
                continue
            try:
                found = tier.extract(soup, wanted)
            except Exception as exc:
                logger.warning("%s extraction failed, trying alternative methods: %s", tier.name, exc)
                continue
            for name, value in found.items():
                if name in wanted and value:
                    data[name] = value
                    sources[name] = tier
            if found:
                logger.info("%s filled %s", tier.name, ", ".join(sorted(found)))
        return data, sources

    def extract_fields(self, html: str) -> Dict[str, str]:
        data, _ = self._run_tiers(self._parse(html))
        return data

    def _dump_if_empty(self, html: str, data: Dict[str, str]) -> None:
        if not data and self.diagnostics is not None:
            path = self.diagnostics.write_markup(html, "extraction-empty")
            logger.warning("Could not extract data. HTML saved to %s for inspection.", path)

    def extract(self, html: str, identifier: str) -> TaxpayerRecord:
        data = self.extract_fields(html)
        self._dump_if_empty(html, data)
        return TaxpayerRecord(gstin=identifier, source="page-markup", **data)

    def extract_confirmed(self, html: str, identifier: str) -> Optional[TaxpayerRecord]:
        """
        Record from a rendered result page, or None when the markup is not one.

        The page must carry a result pane, and a validating tier must have
        supplied at least one identity field. A search form or error view
        with stray "address" text yields None.
        """
        soup = self._parse(html)
        if not has_result_region(soup):
            logger.info("No result pane in page markup")
            self._dump_if_empty(html, {})
            return None
        data, sources = self._run_tiers(soup)
        self._dump_if_empty(html, data)
        if not any(getattr(sources.get(name), "validated", False) for name in IDENTITY_FIELDS):
            logger.info("Page markup held no validated identity field")
            return None
        return TaxpayerRecord(gstin=identifier, source="page-markup", **data)
