"""SignDesk signing engine: the authoritative server-side signing path.

Stateless: all state lives in the :class:`~signdesk.models.Document`. The
engine takes a document in, checks that the requested action is allowed
right now, mutates the document and appends audit entries. Callers are
responsible for holding the per-document lock and persisting the result.

Eligibility is re-evaluated here even when the editor already showed the
recipient a "you may sign" state; the editor's answer is advisory.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from .eligibility import EligibilityResult, require_eligibility
from .errors import (
    DocumentLockedError,
    EligibilityViolation,
    FieldNotFoundError,
    InvalidTransition,
    PersistenceFailure,
    RecipientNotFoundError,
    RenderDivergence,
)
from .models import (
    Actor,
    AuditAction,
    Document,
    DocumentStatus,
    Recipient,
    SignatureStatus,
)
from .persistence import DEFAULT_ATTEMPTS, DEFAULT_BACKOFF_SECONDS, DocumentBaker, retry_call
from .renderer import verify_geometry
from .workflow import record_audit, transition_status

logger = logging.getLogger("signdesk.engine")


class SigningEngine:
    """Applies signatures, declines and the final bake to documents.

    Args:
        baker: Rendering collaborator used by :meth:`bake`.
        attempts: Bounded retry count for the bake.
        backoff_seconds: Base delay between bake retries.
        sleep: Delay function (injectable for tests).
    """

    def __init__(
        self,
        baker: DocumentBaker,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.baker = baker
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        document: Document,
        recipient_id: str,
        field_values: Optional[dict[str, str]] = None,
        actor: Optional[Actor] = None,
    ) -> Document:
        """Record a recipient's signature.

        Fills the recipient's fields from ``field_values``, marks the
        recipient signed and audits it. When this was the last outstanding
        signature the document moves to ``processing``.

        Args:
            document: The document to sign (mutated in place).
            recipient_id: Recipient signing.
            field_values: Field id -> value for fields owned by the recipient.
            actor: Request origin for the audit trail. A missing id or
                name is taken from the recipient.

        Returns:
            The updated document.

        Raises:
            DocumentLockedError: If the document is not active.
            EligibilityViolation: If the recipient may not sign now.
            FieldNotFoundError: If a value targets an unknown field.
            ValueError: If a value targets another recipient's field, or a
                required field is left empty.
        """
        self._require_active(document, "signed")
        require_eligibility(document.recipients, recipient_id)
        recipient = document.get_recipient(recipient_id)

        values = dict(field_values or {})
        for field_id in values:
            field = document.get_field(field_id)
            if field is None:
                raise FieldNotFoundError(f"Field {field_id} not found")
            if field.recipient_id != recipient_id:
                raise ValueError(f"Field {field_id} belongs to another recipient")

        filled = [
            f.model_copy(update={"value": values[f.id]}) if f.id in values else f
            for f in document.fields
        ]
        missing = [
            f.id
            for f in filled
            if f.recipient_id == recipient_id and f.required and not f.value
        ]
        if missing:
            raise ValueError(
                f"Required field(s) not filled: {', '.join(m[:8] for m in missing)}"
            )

        document.fields = filled
        recipient.signature_status = SignatureStatus.SIGNED
        recipient.signed_at = datetime.now(timezone.utc)

        record_audit(
            document,
            AuditAction.SIGNED,
            self._recipient_actor(recipient, actor),
            f"Signed by {recipient.name} ({len(values)} field value(s))",
        )
        logger.info("Recipient %s signed document %s", recipient.name, document.document_id[:8])

        if document.all_required_signed:
            transition_status(
                document,
                DocumentStatus.PROCESSING,
                self._recipient_actor(recipient, actor),
                "All signers have signed.",
            )
        return document

    def decline(
        self,
        document: Document,
        recipient_id: str,
        reason: str = "",
        actor: Optional[Actor] = None,
    ) -> Document:
        """Record that a recipient refuses to sign.

        A decline halts the workflow: the document moves to ``failed`` and
        nobody after the recipient can sign.

        Raises:
            DocumentLockedError: If the document is not active.
            RecipientNotFoundError: If the recipient is not on the document.
            EligibilityViolation: If the recipient already signed or declined,
                or has no signing obligation.
        """
        self._require_active(document, "declined")
        recipient = document.get_recipient(recipient_id)
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient {recipient_id} not found")
        if recipient.signature_status != SignatureStatus.PENDING:
            raise EligibilityViolation(
                EligibilityResult(
                    can_sign=False,
                    reason=f"{recipient.name} has already {recipient.signature_status.value}",
                )
            )
        if not recipient.has_signing_obligation:
            raise EligibilityViolation(
                EligibilityResult(
                    can_sign=False,
                    reason=f"{recipient.name} is a {recipient.role.value} and cannot decline",
                )
            )

        recipient.signature_status = SignatureStatus.DECLINED
        recipient.declined_at = datetime.now(timezone.utc)
        recipient.decline_reason = reason or None

        who = self._recipient_actor(recipient, actor)
        record_audit(
            document,
            AuditAction.DECLINED,
            who,
            f"Declined by {recipient.name}" + (f": {reason}" if reason else ""),
        )
        transition_status(
            document, DocumentStatus.FAILED, who, f"Signing halted: {recipient.name} declined"
        )
        logger.info("Recipient %s declined document %s", recipient.name, document.document_id[:8])
        return document

    # ------------------------------------------------------------------
    # Bake
    # ------------------------------------------------------------------

    def bake(self, document: Document, actor: Optional[Actor] = None) -> Document:
        """Render the final artifact and finish the workflow.

        The baker is retried a bounded number of times. Its placements are
        checked against the document's geometry before the result is
        accepted. Success moves the document to ``final``; exhausted
        retries or a divergent bake move it to ``failed`` and re-raise.

        Raises:
            InvalidTransition: If the document is not ``processing``.
            PersistenceFailure: If the baker kept failing.
            RenderDivergence: If the baked geometry does not match.
        """
        if document.status != DocumentStatus.PROCESSING:
            raise InvalidTransition(
                document.status.value,
                DocumentStatus.FINAL.value,
                "only processing documents can be baked",
            )

        try:
            result = retry_call(
                lambda: self.baker.bake_document(document),
                attempts=self.attempts,
                backoff_seconds=self.backoff_seconds,
                description=f"Bake of {document.document_id[:8]}",
                sleep=self._sleep,
            )
            verify_geometry(document, result.placements)
        except (PersistenceFailure, RenderDivergence) as exc:
            transition_status(document, DocumentStatus.FAILED, actor, f"Bake failed: {exc}")
            raise

        document.signed_artifact_url = result.signed_artifact_url
        transition_status(
            document,
            DocumentStatus.FINAL,
            actor,
            f"Signed artifact baked ({len(result.placements)} field(s))",
        )
        return document

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_active(document: Document, verb: str) -> None:
        if document.status != DocumentStatus.ACTIVE:
            raise DocumentLockedError(
                f"Document is {document.status.value}; only active documents can be {verb}"
            )

    @staticmethod
    def _recipient_actor(recipient: Recipient, actor: Optional[Actor]) -> Actor:
        actor = actor or Actor()
        return actor.model_copy(
            update={
                "actor_id": actor.actor_id or recipient.id,
                "name": actor.name or recipient.name,
            }
        )
