from __future__ import annotations


class SchedulingError(Exception):
    """Base class for errors that abort a whole scheduling invocation."""


class SchedulingInputError(SchedulingError):
    """Rejected before any processing: bad range, unknown id, malformed request."""


class UnknownEntityError(SchedulingInputError):
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"Unknown {kind} '{entity_id}'")
        self.kind = kind
        self.entity_id = entity_id


class StorageError(SchedulingError):
    """The trip store could not persist a batch. Nothing from the invocation was written."""


class DistanceSourceError(Exception):
    """The distance source timed out, was unreachable or returned an unusable response."""
