"""Tests for signing-order eligibility."""

import pytest

from signdesk.eligibility import (
    check_eligibility,
    next_recipients,
    ordered_recipients,
    require_eligibility,
)
from signdesk.errors import EligibilityViolation
from signdesk.models import Recipient, RecipientRole, SignatureStatus


def signer(rid, order, status=SignatureStatus.PENDING, role=RecipientRole.SIGNER):
    return Recipient(id=rid, name=rid.title(), signing_order=order, signature_status=status, role=role)


class TestOrdering:
    def test_sorted_by_order(self, recipients):
        assert [r.id for r in ordered_recipients(recipients)] == ["alice", "vic", "bob", "carol"]

    def test_ties_keep_list_order(self):
        rs = [signer("b", 2), signer("a", 1), signer("c", 2)]
        assert [r.id for r in ordered_recipients(rs)] == ["a", "b", "c"]


class TestCheckEligibility:
    def test_first_signer_may_sign(self, recipients):
        result = check_eligibility(recipients, "alice")
        assert result.can_sign
        assert result.blocking_recipient_id is None

    def test_second_waits_on_first(self, recipients):
        result = check_eligibility(recipients, "bob")
        assert not result.can_sign
        assert result.blocking_recipient_id == "alice"
        assert "Alice" in result.reason

    def test_after_first_signs(self, recipients):
        recipients[0].signature_status = SignatureStatus.SIGNED
        assert check_eligibility(recipients, "bob").can_sign
        result = check_eligibility(recipients, "carol")
        assert result.blocking_recipient_id == "bob"

    def test_viewer_does_not_block(self):
        rs = [signer("v", 1, role=RecipientRole.VIEWER), signer("s", 2)]
        assert check_eligibility(rs, "s").can_sign

    def test_approver_does_not_block(self):
        rs = [signer("a", 1, role=RecipientRole.APPROVER), signer("s", 2)]
        assert check_eligibility(rs, "s").can_sign

    def test_equal_order_signs_in_parallel(self):
        rs = [signer("a", 1), signer("b", 1), signer("c", 2)]
        assert check_eligibility(rs, "a").can_sign
        assert check_eligibility(rs, "b").can_sign
        assert not check_eligibility(rs, "c").can_sign

    def test_gaps_in_order(self):
        rs = [signer("a", 1, SignatureStatus.SIGNED), signer("b", 5)]
        assert check_eligibility(rs, "b").can_sign

    def test_decline_blocks_everyone_after(self):
        rs = [signer("a", 1, SignatureStatus.SIGNED), signer("b", 2, SignatureStatus.DECLINED), signer("c", 3)]
        result = check_eligibility(rs, "c")
        assert not result.can_sign
        assert result.blocking_recipient_id == "b"
        assert "declined" in result.reason

    def test_decline_does_not_block_same_order(self):
        rs = [signer("a", 1, SignatureStatus.DECLINED), signer("b", 1)]
        assert check_eligibility(rs, "b").can_sign

    def test_unknown_recipient(self, recipients):
        result = check_eligibility(recipients, "mallory")
        assert not result.can_sign
        assert "mallory" in result.reason

    def test_already_signed(self):
        result = check_eligibility([signer("a", 1, SignatureStatus.SIGNED)], "a")
        assert not result.can_sign
        assert "already signed" in result.reason

    def test_declined_candidate(self):
        result = check_eligibility([signer("a", 1, SignatureStatus.DECLINED)], "a")
        assert not result.can_sign

    def test_viewer_cannot_sign(self, recipients):
        result = check_eligibility(recipients, "vic")
        assert not result.can_sign
        assert "viewer" in result.reason

    def test_input_order_does_not_matter(self):
        rs = [signer("c", 3), signer("b", 2), signer("a", 1, SignatureStatus.SIGNED)]
        assert check_eligibility(rs, "b").can_sign
        assert check_eligibility(rs, "c").blocking_recipient_id == "b"


class TestRequireAndNext:
    def test_require_raises_with_result(self, recipients):
        with pytest.raises(EligibilityViolation) as excinfo:
            require_eligibility(recipients, "carol")
        assert excinfo.value.blocking_recipient_id == "alice"
        assert "Waiting on" in str(excinfo.value)

    def test_require_returns_result(self, recipients):
        assert require_eligibility(recipients, "alice").can_sign

    def test_next_recipients(self):
        rs = [signer("a", 1), signer("b", 1), signer("c", 2)]
        assert [r.id for r in next_recipients(rs)] == ["a", "b"]
        rs[0].signature_status = SignatureStatus.SIGNED
        rs[1].signature_status = SignatureStatus.SIGNED
        assert [r.id for r in next_recipients(rs)] == ["c"]

    def test_nobody_next_when_all_signed(self):
        assert next_recipients([signer("a", 1, SignatureStatus.SIGNED)]) == []
