"""Exception hierarchy shared across the ModSentry pipeline."""


class ModSentryError(Exception):
    """Base class for all errors raised by ModSentry."""


class StoreError(ModSentryError):
    """The message store failed to complete a query or write."""


class ActionError(ModSentryError):
    """An automod action could not perform its primary side effect."""
