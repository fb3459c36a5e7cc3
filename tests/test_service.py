"""Tests for the locking, persisting document service."""

import gc
import threading

import pytest

from signdesk.errors import (
    DocumentLockedError,
    EligibilityViolation,
    InvalidTransition,
    PersistenceFailure,
    RecipientNotFoundError,
    StaleDocumentError,
)
from signdesk.models import AuditAction, DocumentStatus, SignatureStatus
from signdesk.service import DocumentService


def alice_field(service, document_id):
    doc = service.get_document(document_id)
    return next(f for f in doc.fields if f.page_number == 1)


def sign_through(service, document_id):
    field = alice_field(service, document_id)
    alice, bob = service.get_document(document_id).recipients
    service.sign(document_id, alice.id, {field.id: "Alice"})
    return service.sign(document_id, bob.id)


class BrokenBaker:
    def __init__(self):
        self.calls = 0

    def bake_document(self, document):
        self.calls += 1
        raise PersistenceFailure("renderer unavailable")


class TestDrafts:
    """Document creation and draft editing."""

    def test_create_document(self, service, actor):
        doc = service.create_document("Lease", actor=actor, page_count=3)
        assert doc.status == DocumentStatus.DRAFT
        assert doc.page_count == 3
        assert doc.created_by == "owner-1"
        assert doc.pages[0].width == 612
        trail = service.get_audit_trail(doc.document_id)
        assert [e.action for e in trail] == [AuditAction.CREATED]

    def test_recipients_default_to_next_order(self, service):
        doc = service.create_document("Lease")
        a = service.add_recipient(doc.document_id, "Alice")
        b = service.add_recipient(doc.document_id, "Bob")
        c = service.add_recipient(doc.document_id, "Cleo", signing_order=2, role="approver")
        assert (a.signing_order, b.signing_order, c.signing_order) == (1, 2, 2)
        assert c.role == "approver"

    def test_remove_recipient_drops_their_fields(self, service):
        doc = service.create_document("Lease")
        alice = service.add_recipient(doc.document_id, "Alice")
        bob = service.add_recipient(doc.document_id, "Bob")
        service.add_field(doc.document_id, 1, {"recipient_id": alice.id})
        service.add_field(doc.document_id, 1, {"recipient_id": bob.id})

        service.remove_recipient(doc.document_id, alice.id)

        loaded = service.get_document(doc.document_id)
        assert [r.id for r in loaded.recipients] == [bob.id]
        assert [f.recipient_id for f in loaded.fields] == [bob.id]

    def test_each_edit_audits_once(self, service):
        doc = service.create_document("Lease")
        alice = service.add_recipient(doc.document_id, "Alice")
        field = service.add_field(doc.document_id, 1, {"recipient_id": alice.id})
        service.update_field(doc.document_id, field.id, {"x_pct": 30})
        copy = service.duplicate_field(doc.document_id, field.id)
        service.align_fields(doc.document_id, field.id, "left")
        service.remove_field(doc.document_id, copy.id)

        assert [e.action for e in service.get_audit_trail(doc.document_id)] == [
            AuditAction.CREATED,
            AuditAction.RECIPIENT_ADDED,
            AuditAction.FIELD_ADDED,
            AuditAction.FIELD_UPDATED,
            AuditAction.FIELD_ADDED,
            AuditAction.FIELD_UPDATED,
            AuditAction.FIELD_REMOVED,
        ]
        loaded = service.get_document(doc.document_id)
        assert [e.entry_id for e in loaded.audit_trail] == [
            e.entry_id for e in service.get_audit_trail(doc.document_id)
        ]
        assert loaded.get_field(field.id).rect.x_pct == 30

    def test_field_needs_known_recipient_and_page(self, service):
        doc = service.create_document("Lease")
        with pytest.raises(RecipientNotFoundError):
            service.add_field(doc.document_id, 1, {"recipient_id": "ghost"})
        alice = service.add_recipient(doc.document_id, "Alice")
        with pytest.raises(ValueError, match="Page 2"):
            service.add_field(doc.document_id, 2, {"recipient_id": alice.id})
        assert len(service.get_audit_trail(doc.document_id)) == 2

    def test_save_page_fields(self, service):
        doc = service.create_document("Lease", page_count=2)
        alice = service.add_recipient(doc.document_id, "Alice")
        service.add_field(doc.document_id, 2, {"recipient_id": alice.id, "id": "p2"})
        placed = service.save_page_fields(
            doc.document_id,
            1,
            [
                {"id": "a", "recipient_id": alice.id, "rect": {"x_pct": 95, "y_pct": 10, "w_pct": 20, "h_pct": 6}},
                {"id": "b", "recipient_id": alice.id, "type": "date", "rect": {"w_pct": 1, "h_pct": 1}},
            ],
        )
        assert placed[0].rect.x_pct == 80
        assert (placed[1].rect.w_pct, placed[1].rect.h_pct) == (6, 2)
        loaded = service.get_document(doc.document_id)
        assert sorted(f.id for f in loaded.fields) == ["a", "b", "p2"]

    def test_save_page_rejects_duplicate_ids(self, service):
        doc = service.create_document("Lease")
        alice = service.add_recipient(doc.document_id, "Alice")
        with pytest.raises(ValueError, match="Duplicate"):
            service.save_page_fields(
                doc.document_id,
                1,
                [{"id": "x", "recipient_id": alice.id}, {"id": "x", "recipient_id": alice.id}],
            )

    def test_edits_locked_after_send(self, service, sent_document_id):
        doc = service.get_document(sent_document_id)
        field = doc.fields[0]
        with pytest.raises(DocumentLockedError):
            service.add_recipient(sent_document_id, "Mallory")
        with pytest.raises(DocumentLockedError):
            service.update_field(sent_document_id, field.id, {"x_pct": 50})
        with pytest.raises(DocumentLockedError):
            service.remove_field(sent_document_id, field.id)
        with pytest.raises(DocumentLockedError):
            service.save_page_fields(sent_document_id, 1, [])
        assert service.get_document(sent_document_id).version == doc.version

    def test_missing_document(self, service):
        with pytest.raises(FileNotFoundError):
            service.get_audit_trail("nonexistent")
        with pytest.raises(FileNotFoundError):
            service.sign("nonexistent", "alice")


class TestWorkflow:
    """Signing through the service."""

    def test_send_requires_recipients(self, service):
        doc = service.create_document("Empty")
        with pytest.raises(InvalidTransition, match="no recipients"):
            service.transition_status(doc.document_id, "active")
        assert service.get_document(doc.document_id).status == DocumentStatus.DRAFT

    def test_sign_in_order(self, service, sent_document_id):
        alice, bob = service.get_document(sent_document_id).recipients
        assert [r.id for r in service.next_recipients(sent_document_id)] == [alice.id]
        result = service.check_eligibility(sent_document_id, bob.id)
        assert not result.can_sign
        assert result.blocking_recipient_id == alice.id

        with pytest.raises(EligibilityViolation):
            service.sign(sent_document_id, bob.id)

        doc = sign_through(service, sent_document_id)
        assert doc.status == DocumentStatus.PROCESSING
        assert service.get_document(sent_document_id).status == DocumentStatus.PROCESSING
        assert service.next_recipients(sent_document_id) == []

    def test_bake_to_final(self, service, sent_document_id):
        sign_through(service, sent_document_id)
        doc = service.transition_status(sent_document_id, DocumentStatus.FINAL)
        assert doc.status == DocumentStatus.FINAL
        assert doc.signed_artifact_url.endswith("bake_manifest.json")
        assert len(service.store.load_bake_manifest(sent_document_id)) == 2
        actions = [e.action for e in service.get_audit_trail(sent_document_id)]
        assert actions[-1] == AuditAction.COMPLETED
        assert actions.count(AuditAction.COMPLETED) == 1

    def test_bake_failure_is_persisted(self, tmp_store, settings, sent_document_id):
        baker = BrokenBaker()
        failing = DocumentService(tmp_store, baker=baker, settings=settings)
        sign_through(failing, sent_document_id)

        with pytest.raises(PersistenceFailure):
            failing.bake(sent_document_id)

        assert baker.calls == settings.retry_attempts
        assert failing.get_document(sent_document_id).status == DocumentStatus.FAILED
        assert failing.get_audit_trail(sent_document_id)[-1].action == AuditAction.FAILED

    def test_decline_is_persisted(self, service, sent_document_id):
        alice = service.get_document(sent_document_id).recipients[0]
        service.decline(sent_document_id, alice.id, reason="Wrong address")
        doc = service.get_document(sent_document_id)
        assert doc.status == DocumentStatus.FAILED
        assert doc.recipients[0].decline_reason == "Wrong address"
        with pytest.raises(InvalidTransition):
            service.transition_status(sent_document_id, "processing")

    def test_cannot_fail_without_decline(self, service, sent_document_id):
        with pytest.raises(InvalidTransition, match="declines"):
            service.transition_status(sent_document_id, "failed")
        doc = service.get_document(sent_document_id)
        assert doc.status == DocumentStatus.ACTIVE
        assert not doc.has_declined

    def test_nobody_eligible_unless_active(self, service, sent_document_id):
        draft = service.create_document("Draft")
        alice = service.add_recipient(draft.document_id, "Alice")
        result = service.check_eligibility(draft.document_id, alice.id)
        assert not result.can_sign
        assert "draft" in result.reason

        first = service.get_document(sent_document_id).recipients[0]
        service.decline(sent_document_id, first.id)
        result = service.check_eligibility(sent_document_id, first.id)
        assert not result.can_sign
        assert "failed" in result.reason

    def test_archive_hides_from_listing(self, service, sent_document_id):
        service.transition_status(sent_document_id, "archived")
        assert service.list_documents() == []
        assert len(service.list_documents(include_archived=True)) == 1
        with pytest.raises(InvalidTransition):
            service.transition_status(sent_document_id, "active")

    def test_rejected_request_writes_nothing(self, service, sent_document_id):
        before = service.get_document(sent_document_id)
        bob = before.recipients[1]
        with pytest.raises(EligibilityViolation):
            service.sign(sent_document_id, bob.id)
        after = service.get_document(sent_document_id)
        assert after.version == before.version
        assert len(service.get_audit_trail(sent_document_id)) == len(before.audit_trail)


class TestConcurrency:
    """Two requests racing for the same signature slot."""

    def test_only_one_signature_lands(self, service, sent_document_id):
        alice = service.get_document(sent_document_id).recipients[0]
        field = alice_field(service, sent_document_id)
        barrier = threading.Barrier(4)
        outcomes = []

        def attempt():
            barrier.wait()
            try:
                service.sign(sent_document_id, alice.id, {field.id: "Alice"})
                outcomes.append("signed")
            except EligibilityViolation:
                outcomes.append("refused")

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert sorted(outcomes) == ["refused", "refused", "refused", "signed"]
        trail = service.get_audit_trail(sent_document_id)
        assert [e.action for e in trail].count(AuditAction.SIGNED) == 1
        doc = service.get_document(sent_document_id)
        assert doc.recipients[0].signature_status == SignatureStatus.SIGNED

    def test_stale_writer_outside_the_lock(self, service, sent_document_id):
        stale = service.store.load_document(sent_document_id)
        alice = stale.recipients[0]
        field = alice_field(service, sent_document_id)
        service.sign(sent_document_id, alice.id, {field.id: "Alice"})

        stale.title = "Overwritten"
        with pytest.raises(StaleDocumentError):
            service.store.save_document(stale, expected_version=stale.version)

    def test_locks_are_released_after_use(self, service, sent_document_id):
        alice = service.get_document(sent_document_id).recipients[0]
        field = alice_field(service, sent_document_id)
        service.sign(sent_document_id, alice.id, {field.id: "Alice"})
        gc.collect()
        assert sent_document_id not in service._locks
