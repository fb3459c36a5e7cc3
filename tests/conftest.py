"""Shared fixtures for SignDesk tests."""

import pytest

from signdesk.config import SignDeskSettings
from signdesk.models import (
    Actor,
    Document,
    DocumentStatus,
    PercentageRect,
    Recipient,
    RecipientRole,
    SignatureField,
)


@pytest.fixture
def tmp_store(tmp_path):
    """Create a temporary DocumentStore."""
    from signdesk.store import DocumentStore

    return DocumentStore(base_dir=tmp_path)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at the temp dir, with no retry backoff."""
    return SignDeskSettings(data_dir=tmp_path, retry_backoff_seconds=0)


@pytest.fixture
def service(tmp_store, settings):
    """A DocumentService over the temporary store."""
    from signdesk.service import DocumentService

    return DocumentService(tmp_store, settings=settings)


@pytest.fixture
def actor():
    return Actor(actor_id="owner-1", name="Owner", ip_address="203.0.113.7", location="Berlin, DE")


def make_recipients() -> list[Recipient]:
    """Alice (1) -> Bob (2) -> Carol (3), plus a viewer at order 1."""
    return [
        Recipient(id="alice", name="Alice", email="alice@example.com", signing_order=1),
        Recipient(id="bob", name="Bob", email="bob@example.com", signing_order=2),
        Recipient(id="carol", name="Carol", email="carol@example.com", signing_order=3),
        Recipient(id="vic", name="Vic", signing_order=1, role=RecipientRole.VIEWER),
    ]


@pytest.fixture
def recipients():
    return make_recipients()


@pytest.fixture
def active_document():
    """An in-memory active document with one required signature per signer."""
    recipients = make_recipients()
    fields = [
        SignatureField(
            id=f"sig-{r.id}",
            recipient_id=r.id,
            page_number=1,
            rect=PercentageRect(x_pct=10, y_pct=10 + 10 * i, w_pct=20, h_pct=6),
            required=True,
        )
        for i, r in enumerate(recipients)
        if r.has_signing_obligation
    ]
    return Document(
        title="Mutual NDA",
        status=DocumentStatus.ACTIVE,
        recipients=recipients,
        fields=fields,
    )


@pytest.fixture
def sent_document_id(service, actor):
    """A persisted, active document: Alice (1) then Bob (2), one field each."""
    doc = service.create_document("Lease", actor=actor, page_count=2)
    alice = service.add_recipient(doc.document_id, "Alice", email="alice@example.com", actor=actor)
    bob = service.add_recipient(doc.document_id, "Bob", email="bob@example.com", actor=actor)
    service.add_field(
        doc.document_id,
        1,
        {"recipient_id": alice.id, "type": "signature", "x_pct": 10, "y_pct": 80, "required": True},
        actor=actor,
    )
    service.add_field(
        doc.document_id,
        2,
        {"recipient_id": bob.id, "type": "date", "x_pct": 60, "y_pct": 80},
        actor=actor,
    )
    service.transition_status(doc.document_id, DocumentStatus.ACTIVE, actor=actor)
    return doc.document_id
