"""Exception hierarchy for the Loxone controller.

None of these are fatal: the supervisor turns transport and structure errors
into a scheduled reconnect, everything else is logged at the boundary that
catches it.
"""

from __future__ import annotations


class LoxoneError(Exception):
    """Base class for all controller errors."""


class TransportError(LoxoneError):
    """A transport operation (open, send, close) failed.

    Attributes:
        operation: The failing operation ("open", "send" or "close")
        reason: Specific failure reason

    """

    def __init__(self, operation: str, reason: str) -> None:
        self.operation: str = operation
        self.reason: str = reason
        super().__init__(f"Transport {operation} failed: {reason}")


class StructureLoadError(LoxoneError):
    """The structure file could not be fetched, parsed or applied.

    Attributes:
        stage: "fetch", "parse" or "apply"

    """

    def __init__(self, stage: str, reason: str) -> None:
        self.stage: str = stage
        self.reason: str = reason
        super().__init__(f"Structure file {stage} failed: {reason}")
