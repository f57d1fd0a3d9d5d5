from typing import List, Optional


class AutomationError(Exception):
    """Base class for portal automation failures."""


class BrowserNotStartedError(AutomationError):
    def __init__(self):
        super().__init__("Browser session is not running")


class LoginError(AutomationError):
    """Credentials were rejected or the login could not be verified."""

    def __init__(self, message: str, screenshot_path: Optional[str] = None):
        super().__init__(message)
        self.screenshot_path = screenshot_path


class InteractiveChallengeError(LoginError):
    """The portal asked for a CAPTCHA. Not retried until an operator clears the block."""


class SelectorExhaustedError(AutomationError):
    def __init__(self, label: str, errors: List[str]):
        detail = "; ".join(errors) if errors else "no strategies"
        super().__init__(f"All strategies failed for {label}: {detail}")
        self.label = label
        self.errors = errors
