"""
Browser session management.

One Session = one Playwright driver, one Chromium process, one isolated
context (auth cookies + fixed user agent) and the pages opened in it. A session
belongs to exactly one harvest invocation and is torn down on every exit path.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence, Union

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from .config import BROWSER_ARGS, HarvestConfig
from .errors import BrowserSetupError, CookieError
from .events import ProgressEmitter
from .models import AuthCookie, Phase

logger = logging.getLogger(__name__)

CookieInput = Union[AuthCookie, dict]


@dataclass
class Session:
    """Browser resources owned by one invocation."""
    playwright: Optional[Playwright] = None
    browser: Optional[Browser] = None
    context: Optional[BrowserContext] = None
    pages: List[Page] = field(default_factory=list)
    released: bool = False

    @property
    def page(self) -> Page:
        """The listing page (first page opened in the context)."""
        if not self.pages:
            raise BrowserSetupError("Session has no open page")
        return self.pages[0]

    async def new_page(self) -> Page:
        if self.context is None:
            raise BrowserSetupError("Session has no browser context")
        page = await self.context.new_page()
        self.pages.append(page)
        return page

    @asynccontextmanager
    async def detail_page(self) -> AsyncIterator[Page]:
        """Open a secondary page that is always closed on exit."""
        page = await self.new_page()
        try:
            yield page
        finally:
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"Failed to close detail page: {e}")
            if page in self.pages:
                self.pages.remove(page)


def validate_cookies(auth_cookies: Optional[Sequence[CookieInput]]) -> List[AuthCookie]:
    """
    Validate the whole cookie set up front.

    Raises:
        CookieError: If any cookie is malformed. Nothing is injected in that case.
    """
    if not auth_cookies:
        return []
    if isinstance(auth_cookies, (str, bytes, dict)):
        raise CookieError("Auth cookies must be a sequence of cookie objects")

    cookies = []
    for index, cookie in enumerate(auth_cookies):
        if isinstance(cookie, AuthCookie):
            cookies.append(cookie)
            continue
        try:
            cookies.append(AuthCookie.model_validate(cookie))
        except ValidationError as e:
            raise CookieError(f"Invalid cookie at position {index}: {e.errors()[0]['msg']}") from e
    return cookies


class BrowserSessionManager:
    """Acquires and releases browser sessions, reporting each step."""

    def __init__(
        self,
        config: HarvestConfig,
        emitter: ProgressEmitter,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            config: Harvest configuration (headless flag, user agent)
            emitter: Progress channel for lifecycle events
            playwright_factory: Returns an object with an async ``start()``.
                Defaults to ``async_playwright``.
        """
        self.config = config
        self.emitter = emitter
        self._playwright_factory = playwright_factory or async_playwright

    async def acquire(self, auth_cookies: Optional[Sequence[CookieInput]] = None) -> Session:
        """
        Launch a browser, create the context, inject cookies and open the listing page.

        Raises:
            CookieError: Cookie set malformed or rejected (nothing injected)
            BrowserSetupError: Any other launch failure
        """
        cookies = validate_cookies(auth_cookies)
        session = Session()

        try:
            self.emitter.emit(Phase.BROWSER_SETUP, "Launching browser")
            session.playwright = await self._playwright_factory().start()
            session.browser = await session.playwright.chromium.launch(
                headless=self.config.headless,
                args=BROWSER_ARGS,
            )
            self.emitter.emit(Phase.BROWSER_SETUP, "Browser launched")

            self.emitter.emit(Phase.BROWSER_SETUP, "Creating browser context")
            session.context = await session.browser.new_context(user_agent=self.config.user_agent)
            self.emitter.emit(Phase.BROWSER_SETUP, "Browser context created")

            self.emitter.emit(Phase.BROWSER_SETUP, "Adding cookies")
            if cookies:
                try:
                    await session.context.add_cookies([c.to_playwright() for c in cookies])
                except PlaywrightError as e:
                    raise CookieError(f"Browser rejected auth cookies: {e}") from e
            self.emitter.emit(Phase.BROWSER_SETUP, "Cookies added")

            self.emitter.emit(Phase.BROWSER_SETUP, "Opening new page")
            await session.new_page()
            self.emitter.emit(Phase.BROWSER_SETUP, "New page opened")
        except CookieError:
            await self._teardown(session)
            raise
        except PlaywrightError as e:
            await self._teardown(session)
            raise BrowserSetupError(f"Browser setup failed: {e}") from e
        except Exception:
            await self._teardown(session)
            raise

        return session

    async def release(self, session: Optional[Session]) -> None:
        """Close everything the session holds. Never raises."""
        if session is None or session.released:
            return
        self.emitter.emit(Phase.FINISHING, "Closing browser")
        await self._teardown(session)
        self.emitter.emit(Phase.FINISHING, "Browser closed")

    @asynccontextmanager
    async def session(self, auth_cookies: Optional[Sequence[CookieInput]] = None) -> AsyncIterator[Session]:
        """Scoped session: released however the body exits."""
        session = await self.acquire(auth_cookies)
        try:
            yield session
        finally:
            await self.release(session)

    async def _teardown(self, session: Session) -> None:
        session.released = True
        steps = [(f"page {i}", page.close) for i, page in enumerate(session.pages)]
        if session.context is not None:
            steps.append(("context", session.context.close))
        if session.browser is not None:
            steps.append(("browser", session.browser.close))
        if session.playwright is not None:
            steps.append(("playwright", session.playwright.stop))

        for name, close in steps:
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {name} during teardown: {e}")
        session.pages.clear()
