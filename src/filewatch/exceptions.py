"""Custom exceptions for the filewatch package."""


class WatcherError(Exception):
    """Base exception for all filewatch errors."""
    pass


class InvalidRootError(WatcherError):
    """Watch root does not exist, is not a directory, or is unreadable."""
    pass


class AlreadyWatchingError(WatcherError):
    """Start was called while a watch session is already active."""
    pass


class RegistrationFailedError(WatcherError):
    """A directory could not be registered during the initial walk."""

    def __init__(self, message: str, directory: str = None):
        super().__init__(message)
        self.directory = directory


class StoreError(WatcherError):
    """Error related to the event store."""
    pass


class StoreUnavailableError(StoreError):
    """Storage connection could not be established or re-established."""
    pass


class QueryFailedError(StoreError):
    """Query was malformed, unsatisfiable, or returned undecodable rows."""
    pass


class SourceClosedError(WatcherError):
    """Notification source was used after it was closed."""
    pass
