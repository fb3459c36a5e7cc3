"""Signing-order evaluation.

A recipient may sign once every recipient with a strictly lower
``signing_order`` has signed, or has no signing obligation (viewers and
approvers). A decline anywhere earlier in the order stops everyone after
it. Recipients that share an order sign in parallel.

The editor calls this for "waiting on X" messaging. The server re-runs it
under the document lock before accepting a signature.
"""

from typing import Iterable, Optional

from pydantic import BaseModel

from .errors import EligibilityViolation
from .models import Recipient, SignatureStatus


class EligibilityResult(BaseModel):
    """Whether a recipient may sign right now, and why.

    Attributes:
        can_sign: True if the recipient may sign.
        reason: Human-readable explanation. Names the blocking recipient
            when ``can_sign`` is False because of the order.
        blocking_recipient_id: Id of the recipient holding things up.
    """

    can_sign: bool
    reason: str
    blocking_recipient_id: Optional[str] = None


def ordered_recipients(recipients: Iterable[Recipient]) -> list[Recipient]:
    """Recipients sorted by signing order; ties keep their list order."""
    return sorted(recipients, key=lambda r: r.signing_order)


def _label(recipient: Recipient) -> str:
    if recipient.email:
        return f"{recipient.name} <{recipient.email}>"
    return recipient.name


def check_eligibility(
    recipients: Iterable[Recipient], recipient_id: str
) -> EligibilityResult:
    """Decide whether ``recipient_id`` may sign now.

    Args:
        recipients: Every recipient on the document.
        recipient_id: The candidate signer.

    Returns:
        :class:`EligibilityResult`. Never raises.
    """
    ordered = ordered_recipients(recipients)
    candidate = next((r for r in ordered if r.id == recipient_id), None)
    if candidate is None:
        return EligibilityResult(
            can_sign=False,
            reason=f"Recipient {recipient_id} is not on this document",
        )
    if candidate.signature_status == SignatureStatus.SIGNED:
        return EligibilityResult(
            can_sign=False, reason=f"{_label(candidate)} has already signed"
        )
    if candidate.signature_status == SignatureStatus.DECLINED:
        return EligibilityResult(
            can_sign=False, reason=f"{_label(candidate)} has declined to sign"
        )
    if not candidate.has_signing_obligation:
        return EligibilityResult(
            can_sign=False,
            reason=f"{_label(candidate)} is a {candidate.role.value} and does not sign",
        )

    earlier = [r for r in ordered if r.signing_order < candidate.signing_order]

    declined = next(
        (r for r in earlier if r.signature_status == SignatureStatus.DECLINED), None
    )
    if declined is not None:
        return EligibilityResult(
            can_sign=False,
            reason=f"Signing stopped: {_label(declined)} declined to sign",
            blocking_recipient_id=declined.id,
        )

    waiting_on = next(
        (
            r
            for r in earlier
            if r.has_signing_obligation and r.signature_status != SignatureStatus.SIGNED
        ),
        None,
    )
    if waiting_on is not None:
        return EligibilityResult(
            can_sign=False,
            reason=f"Waiting on {_label(waiting_on)} to sign first",
            blocking_recipient_id=waiting_on.id,
        )

    return EligibilityResult(can_sign=True, reason=f"{_label(candidate)} may sign now")


def require_eligibility(
    recipients: Iterable[Recipient], recipient_id: str
) -> EligibilityResult:
    """Like :func:`check_eligibility`, but raise when signing is refused.

    Raises:
        EligibilityViolation: If the recipient may not sign now.
    """
    result = check_eligibility(recipients, recipient_id)
    if not result.can_sign:
        raise EligibilityViolation(result)
    return result


def next_recipients(recipients: Iterable[Recipient]) -> list[Recipient]:
    """Every recipient who is allowed to sign right now."""
    recipients = list(recipients)
    return [
        r
        for r in ordered_recipients(recipients)
        if check_eligibility(recipients, r.id).can_sign
    ]
