"""
Challenge answer providers for the portal's image captcha.

The gate hands a provider the captured challenge image and types whatever
text comes back into the challenge field. Providers never click submit.
"""

from __future__ import annotations

import base64
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import requests

logger = logging.getLogger(__name__)


class ChallengeSolveError(RuntimeError):
    pass


class PromptAnswerProvider:
    """Ask the operator at the terminal to read the saved challenge image."""

    provider = "prompt"

    def __init__(self, input_func: Callable[[str], str] = input):
        self._input = input_func

    def solve(self, image: bytes, image_path: Optional[Path] = None) -> Optional[str]:
        where = f" (image saved to {image_path})" if image_path else ""
        print(f"\n🧩 Challenge shown in the browser{where}.")
        answer = (self._input("Type the characters you see, or press Enter to solve in the browser: ") or "").strip()
        return answer or None


class TwoCaptchaImageProvider:
    """
    Minimal 2captcha wrapper for normal (image-to-text) captchas.

    Notes:
      - Never logs API keys or answers.
    """

    provider = "2captcha"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://2captcha.com",
        timeout_seconds: int = 120,
        poll_interval_seconds: float = 5,
        session: Optional[requests.Session] = None,
    ):
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValueError("2captcha api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = max(int(timeout_seconds), 1)
        self._poll_interval = max(float(poll_interval_seconds), 1.0)
        self._http = session or requests.Session()

    def solve(self, image: bytes, image_path: Optional[Path] = None) -> Optional[str]:
        if not image:
            raise ChallengeSolveError("no challenge image captured")
        request_id = self._submit(image)
        logger.info("2captcha: challenge submitted, polling for answer")
        return self._poll_until_solved(request_id)

    def _submit(self, image: bytes) -> str:
        payload = {
            "key": self._api_key,
            "method": "base64",
            "body": base64.b64encode(image).decode("ascii"),
            "json": 1,
        }
        resp = self._request("post", "/in.php", data=payload)
        if resp.get("status") != 1:
            raise ChallengeSolveError(f"2captcha submit error: {resp.get('request')}")
        request_id = str(resp.get("request") or "").strip()
        if not request_id:
            raise ChallengeSolveError("2captcha submit returned empty request id")
        return request_id

    def _poll_until_solved(self, request_id: str) -> str:
        deadline = time.monotonic() + self._timeout
        params = {"key": self._api_key, "action": "get", "id": request_id, "json": 1}

        while time.monotonic() < deadline:
            time.sleep(self._poll_interval)
            resp = self._request("get", "/res.php", params=params)
            value = str(resp.get("request") or "").strip()
            if resp.get("status") == 1:
                if not value:
                    raise ChallengeSolveError("2captcha returned empty answer")
                return value
            if value == "CAPCHA_NOT_READY":
                continue
            raise ChallengeSolveError(f"2captcha poll error: {value}")

        raise ChallengeSolveError("2captcha timed out waiting for solution")

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        url = f"{self._base_url}{path}"
        try:
            resp = self._http.request(method, url, timeout=30, **kwargs)
        except requests.RequestException as exc:
            raise ChallengeSolveError(f"2captcha request error: {exc}") from exc

        if not resp.ok:
            raise ChallengeSolveError(f"2captcha HTTP {resp.status_code}: {(resp.text or '')[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ChallengeSolveError("2captcha returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ChallengeSolveError("2captcha returned unexpected response shape")
        return data


def build_answer_provider(config) -> Optional[Any]:
    """Provider named by captcha.answer_provider, or None for in-browser solving"""
    name = config.get_captcha_answer_provider()
    if name == "prompt":
        return PromptAnswerProvider()
    if name == "2captcha":
        api_key = config.get_captcha_api_key()
        if not api_key:
            logger.warning(
                "captcha.answer_provider is 2captcha but %s is not set; solving in the browser instead",
                config.get_captcha_api_key_env(),
            )
            return None
        return TwoCaptchaImageProvider(
            api_key,
            timeout_seconds=config.get_captcha_solver_timeout(),
            poll_interval_seconds=config.get_captcha_solver_poll_interval(),
        )
    return None
