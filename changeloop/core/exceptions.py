"""Exception hierarchy for changeloop.

Nothing in the pipeline treats these as process-fatal: owners catch them at
their loop boundary, log, and keep accepting changes.
"""


class ChangeLoopError(Exception):
    """Base class for all changeloop errors."""


class UnknownEventTypeError(ChangeLoopError):
    """Raised by the event queue when no handler is registered for a type."""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class DetectionChannelError(ChangeLoopError):
    """Push-based change detection could not be opened or broke at runtime."""

    def __init__(self, collection: str, reason: str):
        super().__init__(f"Change stream unavailable for {collection}: {reason}")
        self.collection = collection
        self.reason = reason


class AnalysisError(ChangeLoopError):
    """The external analysis engine could not be reached."""


class ConfigurationError(ChangeLoopError):
    """Settings are missing or invalid for the requested operation."""
