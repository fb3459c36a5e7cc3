"""Error taxonomy for SignDesk.

Geometry never raises (it clamps). Eligibility and transition errors are
meant to be shown to the user as-is; persistence and render errors are
retried by the caller and surfaced only once retries run out.
"""

from typing import Optional


class SignDeskError(Exception):
    """Base class for every SignDesk error."""


class GeometryError(SignDeskError):
    """A geometry invariant could not be restored by clamping.

    The clamping paths in :mod:`signdesk.geometry` never raise this; it
    exists so callers validating foreign input have a typed error.
    """


class EligibilityViolation(SignDeskError):
    """A recipient tried to sign out of order, after a decline, or twice.

    Attributes:
        result: The :class:`~signdesk.eligibility.EligibilityResult` that
            refused the signature. ``result.reason`` names the blocker.
    """

    def __init__(self, result) -> None:
        super().__init__(result.reason)
        self.result = result

    @property
    def blocking_recipient_id(self) -> Optional[str]:
        return self.result.blocking_recipient_id


class InvalidTransition(SignDeskError):
    """A status change that is not an edge of the lifecycle graph."""

    def __init__(self, current: str, requested: str, reason: str = "") -> None:
        message = f"Cannot transition from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.requested = requested
        self.reason = reason


class PersistenceFailure(SignDeskError):
    """The storage or rendering collaborator is unavailable."""


class RenderDivergence(SignDeskError):
    """Baked geometry does not match the editor's last-known geometry."""

    def __init__(self, field_id: str, expected: dict, actual: dict) -> None:
        super().__init__(
            f"Baked geometry for field {field_id} diverges from editor: "
            f"expected {expected}, got {actual}"
        )
        self.field_id = field_id
        self.expected = expected
        self.actual = actual


class StaleDocumentError(SignDeskError):
    """The stored document changed since it was loaded (version mismatch)."""


class DocumentLockedError(SignDeskError):
    """The document is not editable in its current status."""


class FieldNotFoundError(SignDeskError, KeyError):
    """No field with the given id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Field not found"


class RecipientNotFoundError(SignDeskError, KeyError):
    """No recipient with the given id on the document."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Recipient not found"
