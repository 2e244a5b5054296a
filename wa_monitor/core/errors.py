"""Exceptions raised across the scan pipeline."""


class MonitorError(Exception):
    """Base class for monitor errors."""


class TransientUIError(MonitorError):
    """A UI interaction timed out or the page was not ready. Safe to retry."""


class SessionLostError(MonitorError):
    """The browser session is gone; the whole session must be restarted."""
