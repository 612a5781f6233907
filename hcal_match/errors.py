from __future__ import annotations


class HcalMatchError(Exception):
    """Base class for all errors raised by :mod:`hcal_match`."""


class MissingCollectionError(HcalMatchError, KeyError):
    r"""
    A required input collection is absent from the current event.

    Recoverable per event: the :class:`~hcal_match.stage.StageDriver` skips the
    event for the stage that raised it and counts the skip.

    Parameters
    ----------
    name : str
        Name of the collection that was requested.
    event_number : int or None, optional
        Event in which the lookup failed (for log messages).
    """

    def __init__(self, name: str, event_number: int | None = None) -> None:
        self.name = name
        self.event_number = event_number
        where = "" if event_number is None else f" in event {event_number}"
        super().__init__(f"collection '{name}' not found{where}")

    def __str__(self) -> str:
        # KeyError.__str__ would wrap the message in quotes
        return str(self.args[0])


class InvalidRecordError(HcalMatchError, ValueError):
    """A single crossing or hit has non-finite or out-of-range geometry."""


class ConfigurationError(HcalMatchError, ValueError):
    """A required option is missing or an option has an unusable value."""


class InvalidStateError(HcalMatchError, RuntimeError):
    """A lifecycle operation was called in the wrong run state."""


__all__ = [
    "HcalMatchError",
    "MissingCollectionError",
    "InvalidRecordError",
    "ConfigurationError",
    "InvalidStateError",
]
