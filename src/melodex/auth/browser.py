# Browser launcher - opens the authorization URL in the default browser.
# Created: 2026-10-06

from __future__ import annotations

import logging
import webbrowser

from melodex.auth.errors import BrowserLaunchError

logger = logging.getLogger(__name__)


def open_in_browser(url: str) -> None:
    """Open ``url`` in the OS default browser.

    Raises:
        BrowserLaunchError: no browser could be started.
    """
    try:
        opened = webbrowser.open(url, new=2)
    except webbrowser.Error as e:
        raise BrowserLaunchError(f"Could not open a browser: {e}") from e
    if not opened:
        raise BrowserLaunchError(
            "Could not open a browser. Open this URL manually to continue:\n" + url
        )
    logger.info("Opened the authorization page in your browser")
