"""Auto-skip logic for tests that drive a real Chromium through Playwright."""

from __future__ import annotations

import pytest


def _chromium_available() -> bool:
    """Check that playwright is installed and Chromium launches."""
    try:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            p.chromium.launch().close()
        return True
    except Exception:
        return False


_chromium_ok = _chromium_available()


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Auto-add the 'browser' marker to every test in this directory."""
    for item in items:
        if "/browser/" in str(item.fspath):
            item.add_marker(pytest.mark.browser)
            if not _chromium_ok:
                item.add_marker(
                    pytest.mark.skip(reason="Chromium unavailable (run: playwright install chromium)")
                )
