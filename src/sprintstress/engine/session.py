"""SprintStress Browser Session — one isolated Playwright browser per persona.

Playwright's sync objects are bound to the thread that created them, so each
persona worker thread starts its own Playwright instance, browser, context
and page. Nothing here is shared across sessions.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sprintstress.config import StressConfig
from sprintstress.credentials import CredentialStore
from sprintstress.engine.game_actions import GameActions
from sprintstress.engine.probe import ROUTE_ROOT, AppStateProbe
from sprintstress.engine.protocols import CancelToken

logger = logging.getLogger("sprintstress.engine.session")


class BrowserSession:
    """Owns the browser lifecycle for a single persona.

    Usage::

        with BrowserSession(config) as session:
            actions = session.actions("User A", evidence_dir)
    """

    def __init__(self, config: StressConfig) -> None:
        self._config = config

        # Managed browser lifecycle -- set by start()/stop()
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None
        self._probe: AppStateProbe | None = None

    # -- Browser Lifecycle ---------------------------------------------------

    def start(self) -> None:
        """Launch the browser and open a fresh context at the game root."""
        from playwright.sync_api import sync_playwright

        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=self._config.headless)
        width, height = self._config.viewport
        self._context = self._browser.new_context(
            viewport={"width": width, "height": height},
            is_mobile=True,
            has_touch=True,
        )
        self._context.set_default_timeout(self._config.action_timeout_ms)
        self._context.set_default_navigation_timeout(self._config.navigation_timeout_ms)
        self._page = self._context.new_page()
        self._probe = AppStateProbe(self._page, self._config.base_url)
        self._probe.goto(ROUTE_ROOT)
        logger.debug("Browser session started (%dx%d, headless=%s)", width, height, self._config.headless)

    def stop(self) -> None:
        """Close context, browser and Playwright. Safe to call twice."""
        for name in ("_context", "_browser"):
            handle = getattr(self, name)
            try:
                if handle is not None:
                    handle.close()
            except Exception as exc:
                logger.debug("Closing %s failed: %s", name.lstrip("_"), exc)
        try:
            if self._playwright is not None:
                self._playwright.stop()
        except Exception as exc:
            logger.debug("Stopping Playwright failed: %s", exc)
        self._context = None
        self._browser = None
        self._playwright = None
        self._page = None
        self._probe = None

    def __enter__(self) -> BrowserSession:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def probe(self) -> AppStateProbe:
        if self._probe is None:
            raise RuntimeError("BrowserSession.start() has not been called")
        return self._probe

    def actions(
        self,
        persona: str,
        evidence_dir: Path | None = None,
        credential_store: CredentialStore | None = None,
        cancel: CancelToken | None = None,
    ) -> GameActions:
        """Build an action library bound to this session's page."""
        return GameActions(
            self.probe,
            persona,
            evidence_dir=evidence_dir,
            credential_store=credential_store,
            cancel=cancel,
            action_timeout_ms=self._config.action_timeout_ms,
            navigation_timeout_ms=self._config.navigation_timeout_ms,
        )
