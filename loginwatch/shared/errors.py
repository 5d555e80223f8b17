"""Exception types raised inside adapters.

None of these escape the recorder; they are converted into ``Failure`` results
at the step boundary.
"""


class LoginWatchError(Exception):
    """Base class for loginwatch errors."""


class GeoLookupError(LoginWatchError):
    """The geolocation upstream could not answer."""


class PersistenceError(LoginWatchError):
    """A session or alert write failed."""


class AlertSubmissionError(LoginWatchError):
    """The alert sink rejected or failed to store an alert."""
