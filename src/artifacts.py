"""
Artifacts - cookie persistence and diagnostic captures
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class CookieStore:
    """Persists the browser context's cookies between runs."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []

        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not load saved cookies, starting fresh session: %s", exc)
            return []

        if not isinstance(payload, list):
            logger.warning("Ignoring cookie file with unexpected shape: %s", self.path)
            return []

        cookies = [c for c in payload if isinstance(c, dict)]
        logger.info("Loaded %s saved cookies", len(cookies))
        return cookies

    def save(self, cookies: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(list(cookies), indent=2), encoding="utf-8")


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S_%f")


class DiagnosticsWriter:
    """
    Best-effort debug captures (screenshots, page markup, challenge images).

    Nothing here raises: a failed capture is logged and reported as None.
    """

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def _path(self, label: str, suffix: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / f"{label}-{_stamp()}{suffix}"

    def screenshot(self, page: Any, label: str, *, full_page: bool = False) -> Optional[Path]:
        try:
            path = self._path(label, ".png")
            page.screenshot(path=str(path), full_page=full_page)
            logger.info("Screenshot saved: %s", path)
            return path
        except Exception as exc:
            logger.warning("Could not take screenshot: %s", exc)
            return None

    def write_markup(self, html: str, label: str) -> Optional[Path]:
        try:
            path = self._path(label, ".html")
            path.write_text(html or "", encoding="utf-8")
            logger.info("Page markup saved: %s", path)
            return path
        except Exception as exc:
            logger.warning("Could not save page markup: %s", exc)
            return None

    def save_image(self, data: bytes, label: str) -> Optional[Path]:
        try:
            path = self._path(label, ".png")
            path.write_bytes(data)
            return path
        except Exception as exc:
            logger.warning("Could not save image: %s", exc)
            return None

    def capture_page(self, page: Any, label: str) -> Dict[str, Optional[Path]]:
        """Full-page screenshot plus markup dump, used after a final failure."""
        captured: Dict[str, Optional[Path]] = {"screenshot": None, "markup": None}
        if page is None:
            return captured
        captured["screenshot"] = self.screenshot(page, label, full_page=True)
        try:
            html = page.content()
        except Exception as exc:
            logger.warning("Could not read page markup: %s", exc)
            return captured
        captured["markup"] = self.write_markup(html, label)
        return captured
