#!/usr/bin/env python3

"""
Session Setup - clear the portal's challenge once by hand and keep the cookies
"""

import logging
from typing import Callable

from config_loader import load_config
from page_helpers import wait_for_network_idle
from session_manager import SessionManager
from verification_gate import VerificationGate

logger = logging.getLogger(__name__)


def setup_session(config, session: SessionManager = None, input_func: Callable[[str], str] = input) -> bool:
    """Open a headed browser on the search page and save cookies once the operator is done"""
    print("\n" + "="*60)
    print("🔐 SESSION SETUP")
    print("="*60)
    print(f"\nCookies will be saved to: {config.get_cookies_file()}")
    print("\nThis will open a browser window.")
    print("1. Solve the CAPTCHA if one is shown")
    print("2. Wait for the search form to load")
    print("3. Press Enter here when done")
    print("\n" + "="*60 + "\n")

    session = session or SessionManager(config, headless=False)
    gate = VerificationGate(config, session.persist_cookies)
    try:
        page = session.ensure_ready()
        print("🌐 Opening GST search page...")
        page.goto(config.get_search_url(), wait_until="domcontentloaded",
                  timeout=config.get_navigation_timeout())
        wait_for_network_idle(page, int(config.get_network_idle_timeout() * 1000))

        input_func("\n✋ Solve the CAPTCHA (if shown), wait for the form, then press Enter...")

        if gate.challenge_visible(page) and not gate.input_usable(page):
            print("\n⚠️  Still showing a CAPTCHA. Cookies saved anyway; run setup again if lookups stall.")
            logger.warning("Session setup finished with the challenge still visible")
            session.persist_cookies()
            return False

        saved = session.persist_cookies()
        print(f"\n✅ Session saved ({saved} cookies) to {config.get_cookies_file()}")
        print("\n   You can now run lookups!")
        return True
    finally:
        session.shutdown()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    setup_session(load_config())
