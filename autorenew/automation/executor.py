from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from playwright.async_api import async_playwright
from playwright_stealth import Stealth

from autorenew.automation import strategies
from autorenew.automation.errors import (
    AutomationError,
    BrowserNotStartedError,
    InteractiveChallengeError,
    LoginError,
    SelectorExhaustedError,
)
from autorenew.config import Settings, get_settings

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 Chrome/120.0.0.0 Safari/537.36"
)

# 登入後才會出現的路由
LOGGED_IN_ROUTES = ("#/dashboard", "#/users-iptv", "#/home")


@dataclass
class RenewalResult:
    success: bool
    message: str
    screenshot_path: Optional[str] = None


class PortalExecutor:
    """Long-lived browser session on the reseller portal.

    The Chromium profile lives in ``browser_user_data_dir`` so the login
    survives restarts of the browser and of the process.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._playwright: Any = None
        self.context: Any = None
        self.page: Any = None
        self.is_running = False
        self.login_blocked = False
        self.last_error: Optional[str] = None
        # True while renew() drives the page
        self.busy = False

    @property
    def current_url(self) -> Optional[str]:
        if self.page is None:
            return None
        return self.page.url

    def _require_page(self) -> Any:
        if not self.is_running or self.page is None:
            raise BrowserNotStartedError()
        return self.page

    async def start(self) -> None:
        if self.is_running:
            return

        Path(self.settings.browser_user_data_dir).mkdir(parents=True, exist_ok=True)
        Path(self.settings.screenshot_dir).mkdir(parents=True, exist_ok=True)

        logger.info("Starting portal browser session")
        self._playwright = await async_playwright().start()
        self.context = await self._playwright.chromium.launch_persistent_context(
            self.settings.browser_user_data_dir,
            headless=self.settings.browser_headless,
            user_agent=USER_AGENT,
            viewport={"width": 1366, "height": 768},
        )
        self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()
        await Stealth().apply_stealth_async(self.page)
        self.page.set_default_timeout(self.settings.browser_timeout_ms)
        self.is_running = True
        self.last_error = None
        logger.info("Portal browser session started")

    async def stop(self) -> None:
        self.is_running = False
        try:
            if self.context is not None:
                await self.context.close()
            if self._playwright is not None:
                await self._playwright.stop()
        except Exception as e:
            logger.warning(f"Error while closing browser: {e}")
        finally:
            self.context = None
            self.page = None
            self._playwright = None
        logger.info("Portal browser session stopped")

    async def restart(
        self,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if delay_seconds is None:
            delay_seconds = self.settings.restart_delay_seconds
        logger.warning("Restarting portal browser session")
        await self.stop()
        await sleep(delay_seconds)
        await self.start()

    async def is_healthy(self) -> bool:
        """Browser still open and the page still answers JavaScript."""
        if not self.is_running or self.page is None or self.page.is_closed():
            return False
        try:
            await self.page.evaluate("document.title")
            return True
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Browser health check failed: {e}")
            return False

    async def is_logged_in(self) -> bool:
        page = self._require_page()
        try:
            if any(route in page.url for route in LOGGED_IN_ROUTES):
                return True
            if await strategies.logged_in_marker().find(page):
                return True
            return False
        except Exception as e:
            logger.warning(f"Could not check login state: {e}")
            return False

    async def login(self) -> bool:
        """Log into the portal unless the session already is.

        Raises:
            InteractiveChallengeError: a CAPTCHA is on screen; ``login_blocked``
                stays set until an operator clears it.
            LoginError: credentials missing or login not confirmed.
        """
        page = self._require_page()
        if self.login_blocked:
            raise InteractiveChallengeError("Login is blocked until the challenge is cleared")

        await page.goto(self.settings.portal_base_url, wait_until="domcontentloaded")
        await page.wait_for_timeout(3000)
        if await self.is_logged_in():
            logger.debug("Portal session already logged in")
            return True

        await self._check_challenge()

        if not self.settings.portal_username or not self.settings.portal_password:
            raise LoginError("Portal credentials are not configured")

        logger.info("Logging into the portal")
        try:
            await strategies.username_field().run(page, self.settings.portal_username)
            await strategies.password_field().run(page, self.settings.portal_password)
        except SelectorExhaustedError as e:
            screenshot = await self.take_screenshot("login-error")
            raise LoginError(str(e), screenshot) from e

        try:
            await strategies.login_button().run(page)
        except SelectorExhaustedError:
            await page.keyboard.press("Enter")

        try:
            await page.wait_for_load_state("networkidle")
        except Exception as e:
            logger.debug(f"Waiting for login navigation: {e}")
        await page.wait_for_timeout(3000)

        await self._check_challenge()
        if not await self.is_logged_in():
            screenshot = await self.take_screenshot("login-error")
            self.last_error = "Login not confirmed"
            raise LoginError("Login not confirmed after submitting credentials", screenshot)

        self.last_error = None
        logger.info("Portal login succeeded")
        return True

    async def _check_challenge(self) -> None:
        if await strategies.captcha_marker().find(self.page):
            screenshot = await self.take_screenshot("captcha")
            self.login_blocked = True
            self.last_error = "CAPTCHA challenge on login page"
            logger.error("CAPTCHA detected on portal login, automatic login blocked")
            raise InteractiveChallengeError(self.last_error, screenshot)

    def clear_login_block(self) -> None:
        self.login_blocked = False
        logger.info("Login block cleared")

    async def renew(self, username: str) -> RenewalResult:
        """Click through the renewal for one portal user.

        Never raises for UI problems: failures come back as an unsuccessful
        result with a screenshot.
        """
        page = self._require_page()
        self.busy = True
        try:
            await page.goto(self.settings.portal_users_url, wait_until="domcontentloaded")
            await page.wait_for_timeout(2000)

            try:
                await strategies.search_field().run(page, username)
                await page.wait_for_timeout(1000)
            except SelectorExhaustedError:
                logger.debug("No search field on user listing")

            await strategies.user_row(username).run(page)
            await strategies.renew_button(username).run(page)
            await page.wait_for_timeout(2000)

            await strategies.confirm_button().find(page)
            await page.wait_for_timeout(3000)

            if not await strategies.success_marker().find(page):
                raise AutomationError("No success indicator after renewal")

            logger.info(f"Portal renewal succeeded for {username}")
            return RenewalResult(True, f"Renewed {username}")
        except Exception as e:
            self.last_error = str(e)
            screenshot = await self.take_screenshot(f"renewal-error-{username}")
            logger.error(f"Portal renewal failed for {username}: {e}")
            return RenewalResult(False, str(e), screenshot)
        finally:
            self.busy = False

    async def take_screenshot(self, prefix: str) -> Optional[str]:
        if self.page is None:
            return None
        path = Path(self.settings.screenshot_dir) / f"{prefix}-{int(time.time() * 1000)}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(path), full_page=True)
            return str(path)
        except Exception as e:
            logger.warning(f"Screenshot failed: {e}")
            return None
