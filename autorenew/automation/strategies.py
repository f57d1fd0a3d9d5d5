"""Ordered selector fallbacks for the portal UI.

The portal markup changes without notice, so every interaction is tried
against a list of candidate selectors. Each candidate declares what it is
used for (click, fill or detect) and reports its own outcome.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional

from loguru import logger

from autorenew.automation.errors import SelectorExhaustedError


class Capability(str, enum.Enum):
    click = "click"
    fill = "fill"
    detect = "detect"


@dataclass
class StrategyOutcome:
    strategy: str
    success: bool
    error: Optional[str] = None


@dataclass
class SelectorStrategy:
    name: str
    selector: str
    capability: Capability

    async def attempt(self, page: Any, value: Optional[str] = None) -> StrategyOutcome:
        try:
            element = await page.query_selector(self.selector)
            if element is None:
                return StrategyOutcome(self.name, False, f"{self.selector} not found")

            if self.capability == Capability.click:
                await element.click()
            elif self.capability == Capability.fill:
                if value is None:
                    return StrategyOutcome(self.name, False, "no value to fill")
                await element.fill(value)
            return StrategyOutcome(self.name, True)
        except Exception as e:
            return StrategyOutcome(self.name, False, str(e))


@dataclass
class StrategyChain:
    label: str
    strategies: List[SelectorStrategy]
    outcomes: List[StrategyOutcome] = field(default_factory=list)

    async def run(self, page: Any, value: Optional[str] = None) -> StrategyOutcome:
        """Try each strategy in order and return the first success.

        Raises:
            SelectorExhaustedError: every strategy failed.
        """
        self.outcomes = []
        for strategy in self.strategies:
            outcome = await strategy.attempt(page, value)
            self.outcomes.append(outcome)
            if outcome.success:
                logger.debug(f"{self.label}: {strategy.name} succeeded")
                return outcome
            logger.debug(f"{self.label}: {strategy.name} failed ({outcome.error})")

        raise SelectorExhaustedError(
            self.label, [f"{o.strategy}: {o.error}" for o in self.outcomes]
        )

    async def find(self, page: Any) -> bool:
        """Non-raising variant for optional elements."""
        try:
            await self.run(page)
            return True
        except SelectorExhaustedError:
            return False


def _chain(label: str, capability: Capability, selectors: List[str]) -> StrategyChain:
    return StrategyChain(
        label,
        [SelectorStrategy(f"{label}[{i}]", selector, capability) for i, selector in enumerate(selectors)],
    )


def username_field() -> StrategyChain:
    return _chain(
        "username field",
        Capability.fill,
        ['input[name="username"]', "input#username", 'input[type="text"]'],
    )


def password_field() -> StrategyChain:
    return _chain(
        "password field",
        Capability.fill,
        ['input[name="password"]', "input#password", 'input[type="password"]'],
    )


def login_button() -> StrategyChain:
    return _chain(
        "login button",
        Capability.click,
        [
            'button[type="submit"]',
            'button:has-text("Login")',
            'button:has-text("Entrar")',
            'input[type="submit"]',
        ],
    )


def captcha_marker() -> StrategyChain:
    return _chain(
        "captcha",
        Capability.detect,
        [".captcha", "#captcha", "[data-captcha]", 'iframe[src*="recaptcha"]'],
    )


def logged_in_marker() -> StrategyChain:
    return _chain(
        "logged-in marker",
        Capability.detect,
        [".user-menu", ".logout-button", '[data-logged-in="true"]', "#user-profile", ".dashboard"],
    )


def search_field() -> StrategyChain:
    return _chain(
        "search field",
        Capability.fill,
        ['input[type="search"]', 'input[placeholder*="search" i]', 'input[placeholder*="buscar" i]'],
    )


def _row_selectors(username: str) -> List[str]:
    return [f'tr:has-text("{username}")', f'div[class*="row"]:has-text("{username}")']


def user_row(username: str) -> StrategyChain:
    return _chain("user row", Capability.detect, _row_selectors(username))


def renew_button(username: str) -> StrategyChain:
    selectors = []
    for row in _row_selectors(username):
        selectors.extend(
            [
                f'{row} button:has-text("Renovar")',
                f'{row} button:has-text("Renew")',
                f"{row} .btn-renew",
            ]
        )
    return _chain("renew button", Capability.click, selectors)


def confirm_button() -> StrategyChain:
    return _chain(
        "confirm button",
        Capability.click,
        [
            'button:has-text("Confirmar")',
            'button:has-text("Confirm")',
            "button.btn-confirm",
            '.modal button[type="submit"]',
        ],
    )


def success_marker() -> StrategyChain:
    return _chain(
        "success indicator",
        Capability.detect,
        [
            ".alert-success",
            ".success-message",
            "text=/sucesso/i",
            "text=/success/i",
            "text=/renovado/i",
            "text=/renewed/i",
        ],
    )
