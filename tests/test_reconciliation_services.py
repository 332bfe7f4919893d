"""Tests for the webhook reconciliation engine."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from monjapro.models.billing import PaymentRecord, Subscription, SubscriptionStatus
from monjapro.models.profile import Profile
from monjapro.models.webhook import WebhookEvent
from monjapro.schemas.webhook import WebhookNotification
from monjapro.services import reconciliation
from monjapro.services.mercadopago import ProviderTransientError
from monjapro.services.payment_records import payment_records
from monjapro.services.profiles import profiles
from monjapro.services.reconciliation import ReconciliationOutcome
from monjapro.services.subscriptions import subscriptions
from monjapro.services.webhook_events import webhook_events
from tests.mocks import as_utc, build_payment


def _notification(payment_id, type_="payment"):
    data = {"id": payment_id} if payment_id is not None else None
    return WebhookNotification.model_validate(
        {"type": type_, "action": "payment.updated", "data": data}
    )


def _event(db_session, event_id) -> WebhookEvent:
    db_session.expire_all()
    return db_session.get(WebhookEvent, event_id)


def _subscription(db_session, subscription_id) -> Subscription:
    db_session.expire_all()
    return db_session.get(Subscription, subscription_id)


def _payment_count(db_session) -> int:
    return db_session.query(PaymentRecord).count()


class TestApprovedPayment:
    def test_activates_subscription_and_grants_premium(
        self, db_session, subscription, profile, mp_client
    ):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        before = datetime.now(timezone.utc)

        event = reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        stored = _subscription(db_session, subscription.id)
        assert stored.status == SubscriptionStatus.active
        ends_at = as_utc(stored.ends_at)
        assert before + timedelta(days=28) <= ends_at <= before + timedelta(days=32)
        assert as_utc(stored.next_billing_at) == ends_at
        assert stored.mercadopago_subscription_id == "P1"

        db_session.refresh(profile)
        assert profile.premium is True
        assert profile.plan == "monthly"

        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error is None
        assert logged.payment_id == "P1"

        record = db_session.query(PaymentRecord).one()
        assert record.subscription_id == subscription.id
        assert mp_client.fetched == ["P1"]

    def test_replay_keeps_billing_period(self, db_session, subscription, mp_client):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        reconciliation.reconcile(db_session, _notification("P1"), mp_client)
        first = _subscription(db_session, subscription.id)
        dates = (first.started_at, first.ends_at, first.next_billing_at)

        second = reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        again = _subscription(db_session, subscription.id)
        assert (again.started_at, again.ends_at, again.next_billing_at) == dates
        assert _event(db_session, second.id).processed is True
        assert _event(db_session, second.id).error is None
        assert _payment_count(db_session) == 2

    def test_concurrent_duplicate_has_one_activation_effect(
        self, db_session, subscription, mp_client, stale_snapshot, monkeypatch
    ):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        # Second delivery read the row before the first one committed.
        snapshot = stale_snapshot(subscription, SubscriptionStatus.pending)
        grants = []
        original_grant = profiles.grant_premium

        def _counting_grant(db, user_id, plan):
            grants.append(user_id)
            return original_grant(db, user_id, plan)

        monkeypatch.setattr(profiles, "grant_premium", _counting_grant)

        first = reconciliation.reconcile(db_session, _notification("P1"), mp_client)
        activated = _subscription(db_session, subscription.id)
        dates = (activated.started_at, activated.ends_at)

        monkeypatch.setattr(subscriptions, "find_by_reference", lambda db, ref: snapshot)
        second = reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        assert len(grants) == 1
        stored = _subscription(db_session, subscription.id)
        assert stored.status == SubscriptionStatus.active
        assert (stored.started_at, stored.ends_at) == dates
        assert _event(db_session, first.id).processed is True
        assert _event(db_session, second.id).processed is True
        assert _event(db_session, second.id).error is None

    def test_yearly_plan_sets_profile_plan(self, db_session, make_subscription, profile, mp_client):
        from monjapro.models.billing import SubscriptionPlan

        subscription = make_subscription(plan=SubscriptionPlan.yearly)
        mp_client.payments["P9"] = build_payment(
            payment_id="P9", external_reference=str(subscription.id)
        )

        reconciliation.reconcile(db_session, _notification("P9"), mp_client)

        db_session.refresh(profile)
        assert profile.premium is True
        assert profile.plan == "yearly"


class TestNonApprovedPayments:
    def test_rejected_cancels_then_noop(self, db_session, subscription, mp_client):
        mp_client.payments["P4"] = build_payment(
            payment_id="P4", status="rejected", external_reference=str(subscription.id)
        )
        reconciliation.reconcile(db_session, _notification("P4"), mp_client)
        cancelled = _subscription(db_session, subscription.id)
        assert cancelled.status == SubscriptionStatus.cancelled
        updated_at = cancelled.updated_at

        event = reconciliation.reconcile(db_session, _notification("P4"), mp_client)

        assert _subscription(db_session, subscription.id).updated_at == updated_at
        assert _event(db_session, event.id).processed is True

    def test_unhandled_status_is_noted(self, db_session, subscription, profile, mp_client):
        mp_client.payments["P5"] = build_payment(
            payment_id="P5", status="refunded", external_reference=str(subscription.id)
        )

        event = reconciliation.reconcile(db_session, _notification("P5"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert "refunded" in logged.error
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.pending
        db_session.refresh(profile)
        assert profile.premium is False


class TestConflictingDeliveries:
    def test_superseded_rejection_is_noted(self, db_session, subscription, profile, mp_client):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        mp_client.payments["P2"] = build_payment(
            payment_id="P2", status="rejected", external_reference=str(subscription.id)
        )
        reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        event = reconciliation.reconcile(db_session, _notification("P2"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert "Superseded by payment P1" in logged.error
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active
        db_session.refresh(profile)
        assert profile.premium is True

    def test_approval_after_concurrent_rejection_activates(
        self, db_session, subscription, profile, mp_client, stale_snapshot, monkeypatch
    ):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        mp_client.payments["P2"] = build_payment(
            payment_id="P2", status="rejected", external_reference=str(subscription.id)
        )
        # The approval's delivery read the row before the rejection committed.
        snapshot = stale_snapshot(subscription, SubscriptionStatus.pending)
        reconciliation.reconcile(db_session, _notification("P2"), mp_client)
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.cancelled

        monkeypatch.setattr(subscriptions, "find_by_reference", lambda db, ref: snapshot)
        event = reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        stored = _subscription(db_session, subscription.id)
        assert stored.status == SubscriptionStatus.active
        assert stored.mercadopago_subscription_id == "P1"
        assert stored.ends_at is not None
        db_session.refresh(profile)
        assert profile.premium is True
        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error is None

    def test_rejection_after_concurrent_approval_is_superseded(
        self, db_session, subscription, profile, mp_client, stale_snapshot, monkeypatch
    ):
        mp_client.payments["P1"] = build_payment(
            payment_id="P1", external_reference=str(subscription.id)
        )
        mp_client.payments["P2"] = build_payment(
            payment_id="P2", status="rejected", external_reference=str(subscription.id)
        )
        snapshot = stale_snapshot(subscription, SubscriptionStatus.pending)
        reconciliation.reconcile(db_session, _notification("P1"), mp_client)

        monkeypatch.setattr(subscriptions, "find_by_reference", lambda db, ref: snapshot)
        event = reconciliation.reconcile(db_session, _notification("P2"), mp_client)

        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active
        db_session.refresh(profile)
        assert profile.premium is True
        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert "Superseded by payment P1" in logged.error


class TestFailurePaths:
    def test_payment_not_found(self, db_session, subscription, mp_client):
        event = reconciliation.reconcile(db_session, _notification("P2"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error is None
        assert _payment_count(db_session) == 0
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.pending

    def test_provider_timeout(self, db_session, subscription, mp_client):
        mp_client.payments["P3"] = ProviderTransientError(
            "Timeout after 5.0s calling Mercado Pago GET /v1/payments/P3"
        )

        event = reconciliation.reconcile(db_session, _notification("P3"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is False
        assert "Timeout" in logged.error
        assert _payment_count(db_session) == 0
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.pending

    def test_orphan_payment(self, db_session, mp_client):
        reference = str(uuid.uuid4())
        mp_client.payments["P6"] = build_payment(payment_id="P6", external_reference=reference)

        event = reconciliation.reconcile(db_session, _notification("P6"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is False
        assert logged.error.startswith("Orphan payment P6")
        record = db_session.query(PaymentRecord).one()
        assert record.subscription_id is None
        assert record.external_reference == reference

    def test_unexpected_error_rolls_back_and_is_recorded(
        self, db_session, subscription, mp_client, monkeypatch
    ):
        mp_client.payments["P7"] = build_payment(
            payment_id="P7", external_reference=str(subscription.id)
        )

        def _boom(db, payment, subscription_id):
            raise RuntimeError("disk full")

        monkeypatch.setattr(payment_records, "append", _boom)

        event = reconciliation.reconcile(db_session, _notification("P7"), mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is False
        assert logged.error == "RuntimeError: disk full"
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.pending

    def test_profile_failure_keeps_activation(
        self, db_session, subscription, profile, mp_client, monkeypatch
    ):
        mp_client.payments["P8"] = build_payment(
            payment_id="P8", external_reference=str(subscription.id)
        )

        def _fail(db, user_id, plan):
            raise OperationalError("UPDATE perfis", {}, Exception("connection lost"))

        monkeypatch.setattr(profiles, "grant_premium", _fail)

        event = reconciliation.reconcile(db_session, _notification("P8"), mp_client)

        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active
        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error.startswith("Entitlement gap")

    def test_missing_profile_is_an_entitlement_gap(
        self, db_session, make_subscription, mp_client
    ):
        subscription = make_subscription(user_id=uuid.uuid4())
        mp_client.payments["P10"] = build_payment(
            payment_id="P10", external_reference=str(subscription.id)
        )

        event = reconciliation.reconcile(db_session, _notification("P10"), mp_client)

        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active
        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert "not found" in logged.error
        assert db_session.get(Profile, subscription.user_id) is None

    def test_audit_log_failure_does_not_block_reconciliation(
        self, db_session, subscription, mp_client, monkeypatch
    ):
        mp_client.payments["P11"] = build_payment(
            payment_id="P11", external_reference=str(subscription.id)
        )

        def _fail(db, notification, payload):
            raise OperationalError("INSERT", {}, Exception("read-only"))

        monkeypatch.setattr(webhook_events, "append", _fail)

        event = reconciliation.reconcile(db_session, _notification("P11"), mp_client)

        assert event is None
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active

    def test_invalid_signature_is_logged_not_reconciled(
        self, db_session, subscription, mp_client
    ):
        event = reconciliation.reconcile(
            db_session, _notification("P1"), mp_client, signature_valid=False
        )

        logged = _event(db_session, event.id)
        assert logged.processed is False
        assert logged.error == "invalid signature"
        assert mp_client.fetched == []


class TestNotificationsWithoutPayment:
    @pytest.mark.parametrize(
        "notification",
        [
            _notification(None),
            _notification("123", type_="merchant_order"),
            WebhookNotification.model_validate({"action": "test.created"}),
            WebhookNotification.model_validate({"type": "payment", "data": "oops"}),
        ],
    )
    def test_logged_processed_and_ignored(self, db_session, subscription, mp_client, notification):
        event = reconciliation.reconcile(db_session, notification, mp_client)

        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error is None
        assert mp_client.fetched == []
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.pending


class TestAuditLogCompleteness:
    def test_one_event_per_notification(self, db_session, subscription, mp_client):
        mp_client.payments["OK"] = build_payment(
            payment_id="OK", external_reference=str(subscription.id)
        )
        mp_client.payments["SLOW"] = ProviderTransientError("Timeout")
        mp_client.payments["ORPHAN"] = build_payment(payment_id="ORPHAN", external_reference="x")
        notifications = [
            _notification("OK"),
            _notification("OK"),
            _notification("MISSING"),
            _notification("SLOW"),
            _notification("ORPHAN"),
            _notification(None),
            _notification("1", type_="plan"),
        ]

        for notification in notifications:
            reconciliation.reconcile(db_session, notification, mp_client)

        assert db_session.query(WebhookEvent).count() == len(notifications)


class TestProcessEvent:
    def test_replays_errored_event(self, db_session, subscription, mp_client):
        mp_client.payments["P3"] = ProviderTransientError("Timeout")
        event = reconciliation.reconcile(db_session, _notification("P3"), mp_client)
        assert _event(db_session, event.id).processed is False

        mp_client.payments["P3"] = build_payment(
            payment_id="P3", external_reference=str(subscription.id)
        )
        outcome = reconciliation.process_event(db_session, str(event.id), mp_client)

        assert outcome == ReconciliationOutcome.processed
        logged = _event(db_session, event.id)
        assert logged.processed is True
        assert logged.error is None
        assert _subscription(db_session, subscription.id).status == SubscriptionStatus.active
        assert db_session.query(WebhookEvent).count() == 1
