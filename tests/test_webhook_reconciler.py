"""Tests for gateway webhook reconciliation."""

from decimal import Decimal

import pytest

from app.models.gateway_event import GatewayEventLog
from app.models.payment import Payment


def succeeded_event(intent_id: str, event_id: str = "evt_1", event_type: str = "payment_intent.succeeded") -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": {
            "id": intent_id,
            "object": "payment_intent",
            "status": "succeeded",
            "charges": {"data": [{"receipt_url": f"https://pay.test/receipts/{intent_id}"}]},
        }},
    }


def failed_event(intent_id: str, event_id: str = "evt_2", message: str = "Your card has insufficient funds.") -> dict:
    return {
        "id": event_id,
        "type": "payment_intent.payment_failed",
        "data": {"object": {
            "id": intent_id,
            "status": "requires_payment_method",
            "last_payment_error": {"message": message},
        }},
    }


def refunded_event(intent_id: str, amount_refunded: int, event_id: str = "evt_3") -> dict:
    return {
        "id": event_id,
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_1", "payment_intent": intent_id, "amount_refunded": amount_refunded}},
    }


@pytest.fixture
def pending_payment(payment_service, make_order):
    order = make_order()
    return payment_service.create_payment_intent(order.id, Decimal("2150.00"), "GBP")


class TestUnknownPayments:
    def test_unknown_intent_is_a_noop(self, reconciler, publisher, db):
        result = reconciler.handle(succeeded_event("pi_does_not_exist", event_type="intent.succeeded"))
        assert result.outcome == "payment_not_found"
        assert publisher.events == []
        assert db.query(Payment).count() == 0
        assert db.query(GatewayEventLog).count() == 0

    def test_missing_intent_id(self, reconciler):
        result = reconciler.handle({"id": "evt_x", "type": "payment_intent.succeeded", "data": {"object": {}}})
        assert result.outcome == "payment_not_found"

    def test_unhandled_type_is_ignored(self, reconciler):
        result = reconciler.handle({"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
        assert result.outcome == "ignored"


class TestSucceeded:
    def test_marks_paid(self, reconciler, pending_payment, publisher, db):
        result = reconciler.handle(succeeded_event(pending_payment.gateway_intent_id))
        assert result.outcome == "processed"
        assert result.payment_id == pending_payment.id
        payment = db.get(Payment, pending_payment.id)
        assert payment.status == "PAID"
        assert payment.receipt_url == f"https://pay.test/receipts/{pending_payment.gateway_intent_id}"
        assert "payment.succeeded" in publisher.topics()

    def test_short_alias(self, reconciler, pending_payment):
        result = reconciler.handle(succeeded_event(pending_payment.gateway_intent_id, event_type="intent.succeeded"))
        assert result.outcome == "processed"

    def test_exact_replay_short_circuits(self, reconciler, pending_payment, publisher):
        event = succeeded_event(pending_payment.gateway_intent_id)
        reconciler.handle(event)
        published = len(publisher.events)
        assert reconciler.handle(event).outcome == "duplicate"
        assert len(publisher.events) == published

    def test_new_event_for_paid_payment_changes_nothing(self, reconciler, pending_payment, publisher, db):
        reconciler.handle(succeeded_event(pending_payment.gateway_intent_id, event_id="evt_a"))
        paid_at = db.get(Payment, pending_payment.id).paid_at
        published = len(publisher.events)

        result = reconciler.handle(succeeded_event(pending_payment.gateway_intent_id, event_id="evt_b"))
        assert result.outcome == "duplicate"
        assert len(publisher.events) == published
        assert db.get(Payment, pending_payment.id).paid_at == paid_at

    def test_cancelled_payment_is_skipped(self, reconciler, payment_service, pending_payment, db):
        payment_service.cancel_payment(pending_payment.id, "abandoned", "ops-1")
        result = reconciler.handle(succeeded_event(pending_payment.gateway_intent_id))
        assert result.outcome == "skipped"
        assert db.get(Payment, pending_payment.id).status == "CANCELLED"


class TestFailed:
    def test_marks_failed(self, reconciler, pending_payment, db):
        result = reconciler.handle(failed_event(pending_payment.gateway_intent_id))
        assert result.outcome == "processed"
        payment = db.get(Payment, pending_payment.id)
        assert payment.status == "FAILED"
        assert payment.failure_reason == "Your card has insufficient funds."

    def test_failure_after_success_is_skipped(self, reconciler, pending_payment, db):
        reconciler.handle(succeeded_event(pending_payment.gateway_intent_id))
        result = reconciler.handle(failed_event(pending_payment.gateway_intent_id))
        assert result.outcome == "skipped"
        assert db.get(Payment, pending_payment.id).status == "PAID"

    def test_second_failure_is_duplicate(self, reconciler, pending_payment):
        reconciler.handle(failed_event(pending_payment.gateway_intent_id, event_id="evt_f1"))
        assert reconciler.handle(failed_event(pending_payment.gateway_intent_id, event_id="evt_f2")).outcome == "duplicate"


class TestRefunded:
    def test_partial_refund(self, reconciler, paid_payment, db, publisher):
        result = reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 50000))
        assert result.outcome == "processed"
        payment = db.get(Payment, paid_payment.id)
        assert payment.refunded_amount == Decimal("500.00")
        assert payment.status == "PARTIALLY_REFUNDED"
        assert publisher.last("payment.refunded")["refundedAmount"] == "500.00"

    def test_full_refund(self, reconciler, paid_payment, db):
        reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 215000))
        assert db.get(Payment, paid_payment.id).status == "REFUNDED"

    def test_refund_total_is_capped(self, reconciler, paid_payment, db):
        reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 999999))
        payment = db.get(Payment, paid_payment.id)
        assert payment.refunded_amount == Decimal("2150.00")
        assert payment.status == "REFUNDED"

    def test_stale_refund_never_decreases(self, reconciler, paid_payment, db):
        reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 100000, event_id="evt_r2"))
        result = reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 50000, event_id="evt_r1"))
        assert result.outcome == "skipped"
        assert db.get(Payment, paid_payment.id).refunded_amount == Decimal("1000.00")

    def test_matches_local_refund(self, reconciler, payment_service, paid_payment):
        payment_service.create_refund(paid_payment.id, Decimal("200.00"), "Scratch", "finance-1")
        result = reconciler.handle(refunded_event(paid_payment.gateway_intent_id, 20000))
        assert result.outcome == "duplicate"

    @pytest.mark.parametrize("amount_refunded", ["abc", {"value": 100}, "12.5"])
    def test_unreadable_amount_is_skipped(self, reconciler, paid_payment, publisher, db, amount_refunded):
        published = len(publisher.events)
        result = reconciler.handle(refunded_event(paid_payment.gateway_intent_id, amount_refunded))
        assert result.outcome == "skipped"
        assert len(publisher.events) == published
        payment = db.get(Payment, paid_payment.id)
        assert payment.status == "PAID"
        assert payment.refunded_amount == Decimal("0.00")

    def test_refund_for_unpaid_payment_is_skipped(self, reconciler, pending_payment):
        result = reconciler.handle(refunded_event(pending_payment.gateway_intent_id, 1000))
        assert result.outcome == "skipped"


class TestEventLog:
    def test_outcome_is_recorded(self, reconciler, pending_payment, db):
        reconciler.handle(succeeded_event(pending_payment.gateway_intent_id, event_id="evt_log"))
        entry = db.get(GatewayEventLog, "evt_log")
        assert entry.event_type == "payment_intent.succeeded"
        assert entry.outcome == "processed"

    def test_result_as_dict(self, reconciler):
        result = reconciler.handle({"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
        assert result.as_dict() == {
            "outcome": "ignored", "eventId": "evt_x", "eventType": "customer.created", "paymentId": None,
        }
