class SitewalkerError(Exception):
    """Base class for errors raised by sitewalker services."""


class BrowserLaunchError(SitewalkerError):
    """The browser could not be started; the run cannot proceed."""


class NavigationError(SitewalkerError):
    """A page could not be loaded (no response, or an HTTP error status)."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class SessionNotActiveError(SitewalkerError):
    """An operation needs a live browser session but none is running."""
