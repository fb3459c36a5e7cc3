"""Tests for the document status state machine."""

import pytest
from pydantic import ValidationError

from signdesk.errors import InvalidTransition
from signdesk.models import (
    AuditAction,
    Document,
    DocumentStatus,
    Recipient,
    RecipientRole,
    SignatureField,
    SignatureStatus,
)
from signdesk.workflow import (
    ALLOWED_TRANSITIONS,
    can_transition,
    record_audit,
    transition_status,
)

S = DocumentStatus


def draft(**kwargs):
    return Document(
        title="Offer Letter",
        recipients=[Recipient(id="alice", name="Alice")],
        fields=[SignatureField(recipient_id="alice")],
        **kwargs,
    )


class TestGraph:
    @pytest.mark.parametrize(
        "current,requested",
        [
            (S.DRAFT, S.ACTIVE),
            (S.ACTIVE, S.PROCESSING),
            (S.ACTIVE, S.FAILED),
            (S.PROCESSING, S.FINAL),
            (S.PROCESSING, S.FAILED),
            (S.FAILED, S.PROCESSING),
            (S.ACTIVE, S.ARCHIVED),
            (S.FINAL, S.ARCHIVED),
            (S.FAILED, S.ARCHIVED),
        ],
    )
    def test_allowed_edges(self, current, requested):
        assert can_transition(current, requested)

    @pytest.mark.parametrize(
        "current,requested",
        [
            (S.DRAFT, S.FINAL),
            (S.DRAFT, S.ARCHIVED),
            (S.ACTIVE, S.DRAFT),
            (S.FINAL, S.ACTIVE),
            (S.ARCHIVED, S.ACTIVE),
            (S.PROCESSING, S.ACTIVE),
            (S.ACTIVE, S.ACTIVE),
        ],
    )
    def test_forbidden_edges(self, current, requested):
        assert not can_transition(current, requested)

    def test_archived_is_terminal(self):
        assert ALLOWED_TRANSITIONS[S.ARCHIVED] == frozenset()


class TestTransitionStatus:
    def test_send_appends_one_entry(self, actor):
        doc = draft()
        entry = transition_status(doc, S.ACTIVE, actor)
        assert doc.status == S.ACTIVE
        assert doc.audit_trail == [entry]
        assert entry.action == AuditAction.SENT
        assert entry.actor_id == "owner-1"
        assert entry.ip_address == "203.0.113.7"
        assert entry.location == "Berlin, DE"

    def test_invalid_edge_raises_and_leaves_document(self):
        doc = draft()
        with pytest.raises(InvalidTransition) as excinfo:
            transition_status(doc, S.FINAL)
        assert excinfo.value.current == "draft"
        assert excinfo.value.requested == "final"
        assert doc.status == S.DRAFT
        assert doc.audit_trail == []

    def test_accepts_string_status(self):
        doc = draft()
        transition_status(doc, "active")
        assert doc.status == S.ACTIVE

    def test_send_requires_recipients(self):
        doc = Document(title="Empty")
        with pytest.raises(InvalidTransition, match="no recipients"):
            transition_status(doc, S.ACTIVE)

    def test_send_requires_a_signer(self):
        doc = Document(title="FYI", recipients=[Recipient(name="Vic", role=RecipientRole.VIEWER)])
        with pytest.raises(InvalidTransition, match="no signers"):
            transition_status(doc, S.ACTIVE)

    def test_send_rejects_orphan_fields(self):
        doc = draft()
        doc.fields.append(SignatureField(recipient_id="ghost"))
        with pytest.raises(InvalidTransition, match="unknown recipients"):
            transition_status(doc, S.ACTIVE)

    def test_processing_requires_all_signed(self):
        doc = draft(status=S.ACTIVE)
        with pytest.raises(InvalidTransition, match="Alice"):
            transition_status(doc, S.PROCESSING)
        doc.recipients[0].signature_status = SignatureStatus.SIGNED
        entry = transition_status(doc, S.PROCESSING)
        assert entry.action == AuditAction.PROCESSING

    def test_active_fails_only_on_decline(self):
        doc = draft(status=S.ACTIVE)
        with pytest.raises(InvalidTransition, match="declines"):
            transition_status(doc, S.FAILED)
        assert doc.status == S.ACTIVE
        assert doc.audit_trail == []

        doc.recipients[0].signature_status = SignatureStatus.DECLINED
        assert transition_status(doc, S.FAILED).action == AuditAction.FAILED

    def test_retry_blocked_after_decline(self):
        doc = draft(status=S.FAILED)
        doc.recipients[0].signature_status = SignatureStatus.DECLINED
        with pytest.raises(InvalidTransition, match="declined"):
            transition_status(doc, S.PROCESSING)

    def test_retry_after_bake_failure(self):
        doc = draft(status=S.FAILED)
        doc.recipients[0].signature_status = SignatureStatus.SIGNED
        assert transition_status(doc, S.PROCESSING).action == AuditAction.RETRIED

    def test_full_lifecycle_audit(self):
        doc = draft()
        transition_status(doc, S.ACTIVE)
        doc.recipients[0].signature_status = SignatureStatus.SIGNED
        transition_status(doc, S.PROCESSING)
        transition_status(doc, S.FINAL)
        transition_status(doc, S.ARCHIVED)
        assert [e.action for e in doc.audit_trail] == [
            AuditAction.SENT,
            AuditAction.PROCESSING,
            AuditAction.COMPLETED,
            AuditAction.ARCHIVED,
        ]
        assert doc.is_read_only


class TestRecordAudit:
    def test_entries_are_frozen(self):
        doc = draft()
        entry = record_audit(doc, AuditAction.UPDATED, details="renamed")
        with pytest.raises(ValidationError):
            entry.details = "tampered"

    def test_without_actor(self):
        doc = draft()
        entry = record_audit(doc, AuditAction.CREATED)
        assert entry.actor_id is None
        assert entry.document_id == doc.document_id
        assert doc.updated_at == entry.timestamp
