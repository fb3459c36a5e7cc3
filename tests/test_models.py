"""Tests for SignDesk data models."""

import pytest
from pydantic import ValidationError

from signdesk.models import (
    Document,
    DocumentStatus,
    FieldType,
    PercentageRect,
    Recipient,
    RecipientRole,
    SignatureField,
    SignatureStatus,
)


class TestSignatureField:
    def test_defaults(self):
        field = SignatureField(recipient_id="alice")
        assert field.field_type == FieldType.SIGNATURE
        assert field.page_number == 1
        assert field.required is False
        assert len(field.id) == 36

    def test_type_alias(self):
        field = SignatureField.model_validate({"recipient_id": "a", "type": "date"})
        assert field.field_type == FieldType.DATE
        assert field.model_dump(by_alias=True)["type"] == "date"

    def test_page_is_one_indexed(self):
        with pytest.raises(ValidationError):
            SignatureField(recipient_id="a", page_number=0)

    def test_rect_is_frozen(self):
        rect = PercentageRect(x_pct=1, y_pct=2, w_pct=3, h_pct=4)
        with pytest.raises(ValidationError):
            rect.x_pct = 10


class TestDocument:
    def test_defaults(self):
        doc = Document(title="Lease")
        assert doc.status == DocumentStatus.DRAFT
        assert doc.page_count == 1
        assert doc.pages[0].width == 612
        assert doc.version == 0

    def test_all_required_signed_ignores_viewers(self, recipients):
        doc = Document(title="Lease", recipients=recipients)
        assert not doc.all_required_signed
        for r in doc.obligated_recipients:
            r.signature_status = SignatureStatus.SIGNED
        assert doc.all_required_signed

    def test_nobody_to_sign_is_not_complete(self):
        doc = Document(title="FYI", recipients=[Recipient(name="Vic", role=RecipientRole.VIEWER)])
        assert not doc.all_required_signed

    def test_lookups(self, active_document):
        assert active_document.get_recipient("bob").name == "Bob"
        assert active_document.get_field("sig-bob").recipient_id == "bob"
        assert active_document.get_recipient("nobody") is None
        assert active_document.get_page(2) is None

    def test_has_declined(self, active_document):
        assert not active_document.has_declined
        active_document.recipients[1].signature_status = SignatureStatus.DECLINED
        assert active_document.has_declined

    def test_json_round_trip(self, active_document):
        restored = Document.model_validate_json(active_document.model_dump_json(by_alias=True))
        assert restored == active_document
