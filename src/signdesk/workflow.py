"""Document lifecycle state machine and audit trail emission.

Edges::

    draft      -> active       (sent; needs a signer, no orphan fields)
    active     -> processing   (every signer has signed)
    active     -> failed       (a recipient declined)
    processing -> final        (bake succeeded)
    processing -> failed       (bake failed)
    failed     -> processing   (retry; nobody declined)
    active | final | failed -> archived

Every successful transition appends exactly one audit entry. A request
that is not an edge of the graph, or whose guard fails, raises
:class:`~signdesk.errors.InvalidTransition` and leaves the document
untouched.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import InvalidTransition
from .models import (
    Actor,
    AuditAction,
    AuditEntry,
    Document,
    DocumentStatus,
    SignatureStatus,
)

logger = logging.getLogger("signdesk.workflow")

S = DocumentStatus

TRANSITION_ACTIONS: dict[tuple[DocumentStatus, DocumentStatus], AuditAction] = {
    (S.DRAFT, S.ACTIVE): AuditAction.SENT,
    (S.ACTIVE, S.PROCESSING): AuditAction.PROCESSING,
    (S.ACTIVE, S.FAILED): AuditAction.FAILED,
    (S.ACTIVE, S.ARCHIVED): AuditAction.ARCHIVED,
    (S.PROCESSING, S.FINAL): AuditAction.COMPLETED,
    (S.PROCESSING, S.FAILED): AuditAction.FAILED,
    (S.FAILED, S.PROCESSING): AuditAction.RETRIED,
    (S.FAILED, S.ARCHIVED): AuditAction.ARCHIVED,
    (S.FINAL, S.ARCHIVED): AuditAction.ARCHIVED,
}

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    status: frozenset(dst for (src, dst) in TRANSITION_ACTIONS if src == status)
    for status in DocumentStatus
}


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def _guard_send(document: Document) -> Optional[str]:
    if not document.recipients:
        return "document has no recipients"
    if not document.obligated_recipients:
        return "document has no signers"
    known = {r.id for r in document.recipients}
    orphans = [f.id for f in document.fields if f.recipient_id not in known]
    if orphans:
        return f"{len(orphans)} field(s) assigned to unknown recipients"
    return None


def _guard_processing(document: Document) -> Optional[str]:
    if not document.all_required_signed:
        pending = [
            r.name
            for r in document.obligated_recipients
            if r.signature_status != SignatureStatus.SIGNED
        ]
        return f"waiting on {', '.join(pending) or 'signers'}"
    return None


def _guard_fail_active(document: Document) -> Optional[str]:
    if not document.has_declined:
        return "an active document fails only when a recipient declines"
    return None


def _guard_retry(document: Document) -> Optional[str]:
    if document.has_declined:
        return "a recipient declined; the document cannot be retried"
    return None


_GUARDS: dict[tuple[DocumentStatus, DocumentStatus], Callable[[Document], Optional[str]]] = {
    (S.DRAFT, S.ACTIVE): _guard_send,
    (S.ACTIVE, S.PROCESSING): _guard_processing,
    (S.ACTIVE, S.FAILED): _guard_fail_active,
    (S.FAILED, S.PROCESSING): _guard_retry,
}


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def can_transition(current: DocumentStatus, requested: DocumentStatus) -> bool:
    """True if ``current -> requested`` is an edge of the lifecycle graph.

    Guards are not evaluated here; see :func:`transition_status`.
    """
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def record_audit(
    document: Document,
    action: AuditAction,
    actor: Optional[Actor] = None,
    details: str = "",
) -> AuditEntry:
    """Append one audit entry to ``document`` and return it."""
    actor = actor or Actor()
    entry = AuditEntry(
        document_id=document.document_id,
        action=action,
        actor_id=actor.actor_id,
        actor_name=actor.name,
        timestamp=datetime.now(timezone.utc),
        details=details,
        ip_address=actor.ip_address,
        location=actor.location,
    )
    document.audit_trail.append(entry)
    document.updated_at = entry.timestamp
    return entry


def transition_status(
    document: Document,
    new_status: DocumentStatus,
    actor: Optional[Actor] = None,
    details: str = "",
) -> AuditEntry:
    """Move ``document`` to ``new_status`` and audit the change.

    Args:
        document: Document to mutate in place.
        new_status: Requested status.
        actor: Who requested the change, and from where.
        details: Free-text note for the audit entry.

    Returns:
        The audit entry recorded for the transition.

    Raises:
        InvalidTransition: If the edge does not exist or its guard fails.
    """
    current = document.status
    new_status = DocumentStatus(new_status)

    if not can_transition(current, new_status):
        logger.warning(
            "Rejected transition %s -> %s on document %s",
            current.value,
            new_status.value,
            document.document_id[:8],
        )
        raise InvalidTransition(current.value, new_status.value, "not an allowed transition")

    guard = _GUARDS.get((current, new_status))
    reason = guard(document) if guard else None
    if reason:
        logger.warning(
            "Transition %s -> %s blocked on document %s: %s",
            current.value,
            new_status.value,
            document.document_id[:8],
            reason,
        )
        raise InvalidTransition(current.value, new_status.value, reason)

    document.status = new_status
    entry = record_audit(
        document,
        TRANSITION_ACTIONS[(current, new_status)],
        actor,
        details or f"Status changed from {current.value} to {new_status.value}",
    )
    logger.info(
        "Document %s: %s -> %s", document.document_id[:8], current.value, new_status.value
    )
    return entry
