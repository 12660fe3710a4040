"""Exceptions raised by the store's user-action API."""


class UnknownSessionError(KeyError):
    """No session is registered under the given id."""


class UnknownMessageError(KeyError):
    """No committed or streaming message carries the given id."""


class UnknownToolError(KeyError):
    """No question tool with the given id is pending in any session."""
