"""Unit tests for RenewalOrchestrator - one pass over all users."""
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from graph_renewal.clients.credential_client import (
    CredentialClient,
    OAuthCredentialClient,
    ReauthRequiredError,
    TransientCredentialError,
)
from graph_renewal.clients.subscription_client import (
    RemoteStatus,
    RemoteStatusError,
    SubscriptionClient,
)
from graph_renewal.models import (
    AccountIdentity,
    Credential,
    IdentitySettings,
    RenewalSettings,
    SubscriptionRecord,
)
from graph_renewal.repositories.user_registry import UserRegistry
from graph_renewal.services.notifier import Notifier
from graph_renewal.services.renewal_orchestrator import RenewalOrchestrator

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def minutes(n: float) -> datetime:
    return NOW + timedelta(minutes=n)


@pytest.fixture
def registry():
    registry = UserRegistry()
    yield registry
    registry.clear()


@pytest.fixture
def registry_spy(registry):
    """Registry wrapper recording every call."""
    return MagicMock(wraps=registry)


@pytest.fixture
def credential_client():
    client = MagicMock(spec=CredentialClient)
    client.refresh.return_value = Credential(access_token="fresh-token", expires_on=minutes(60))
    return client


@pytest.fixture
def subscription_client():
    client = MagicMock(spec=SubscriptionClient)
    client.renew.return_value = minutes(4230)
    return client


@pytest.fixture
def notifier():
    return MagicMock(spec=Notifier)


@pytest.fixture
def settings():
    return RenewalSettings(call_timeout_seconds=0.5)


@pytest.fixture
def orchestrator(registry_spy, credential_client, subscription_client, notifier, settings):
    orchestrator = RenewalOrchestrator(
        registry=registry_spy,
        credential_client=credential_client,
        subscription_client=subscription_client,
        notifier=notifier,
        settings=settings,
        clock=lambda: NOW,
    )
    yield orchestrator
    orchestrator.shutdown()


def add_user(registry, user_id, credential_expiry, subscription_expiries=()):
    registry.save_user_token(
        user_id,
        AccountIdentity(home_account_id=f"{user_id}.tenant"),
        Credential(access_token=f"{user_id}-token", expires_on=credential_expiry),
    )
    for index, expiry in enumerate(subscription_expiries):
        registry.add_subscription(
            user_id,
            SubscriptionRecord(id=f"{user_id}-sub-{index}", resource="/me/messages", expires_on=expiry),
        )


def renewed_ids(subscription_client):
    return [c.args[1] for c in subscription_client.renew.call_args_list]


class TestNothingDue:
    def test_no_calls_and_no_mutations(
        self, orchestrator, registry, registry_spy, credential_client, subscription_client, notifier
    ):
        add_user(registry, "u1", minutes(30), [minutes(120), minutes(3000)])
        add_user(registry, "u2", minutes(59), [minutes(61)])

        summary = orchestrator.run_pass()

        credential_client.refresh.assert_not_called()
        subscription_client.renew.assert_not_called()
        notifier.deliver.assert_not_called()
        registry_spy.update_credential.assert_not_called()
        registry_spy.update_subscription_expiry.assert_not_called()
        registry_spy.remove_subscription.assert_not_called()
        assert summary.users_scanned == 2
        assert summary.failures == 0

    def test_empty_registry(self, orchestrator):
        summary = orchestrator.run_pass()
        assert summary.users_scanned == 0
        assert summary.finished_at == NOW


class TestCredentialStage:
    def test_due_credential_renewed_and_subscription_outside_window_untouched(
        self, orchestrator, registry, credential_client, subscription_client
    ):
        add_user(registry, "u1", minutes(5), [minutes(90)])

        summary = orchestrator.run_pass()

        credential_client.refresh.assert_called_once()
        subscription_client.renew.assert_not_called()
        stored = registry.get_user("u1")
        assert stored.credential.expires_on > minutes(5)
        assert stored.credential.expires_on > NOW
        assert stored.subscriptions[0].expires_on == minutes(90)
        assert summary.credentials_renewed == 1
        assert summary.subscriptions_renewed == 0

    def test_refresh_uses_stored_account_identity(self, orchestrator, registry, credential_client):
        add_user(registry, "u1", minutes(5))

        orchestrator.run_pass()

        account = credential_client.refresh.call_args.args[0]
        assert account.home_account_id == "u1.tenant"

    def test_renewed_credential_used_for_subscriptions(
        self, orchestrator, registry, subscription_client
    ):
        add_user(registry, "u1", minutes(5), [minutes(30)])

        orchestrator.run_pass()

        credential = subscription_client.renew.call_args.args[0]
        assert credential.access_token == "fresh-token"

    def test_reauth_notifies_once_and_skips_subscriptions(
        self, orchestrator, registry, registry_spy, credential_client, subscription_client, notifier
    ):
        add_user(registry, "u1", minutes(5), [minutes(30), minutes(20)])
        credential_client.refresh.side_effect = ReauthRequiredError("invalid_grant")

        summary = orchestrator.run_pass()

        notifier.deliver.assert_called_once_with("u1")
        subscription_client.renew.assert_not_called()
        registry_spy.update_subscription_expiry.assert_not_called()
        registry_spy.update_credential.assert_not_called()
        assert [s.expires_on for s in registry.get_user("u1").subscriptions] == [minutes(30), minutes(20)]
        assert summary.reauth_notifications == 1

    def test_transient_failure_still_attempts_subscriptions(
        self, orchestrator, registry, registry_spy, credential_client, subscription_client, notifier
    ):
        add_user(registry, "u1", minutes(5), [minutes(30)])
        credential_client.refresh.side_effect = TransientCredentialError("throttled")

        summary = orchestrator.run_pass()

        registry_spy.update_credential.assert_not_called()
        notifier.deliver.assert_not_called()
        credential = subscription_client.renew.call_args.args[0]
        assert credential.access_token == "u1-token"
        assert summary.subscriptions_renewed == 1
        assert summary.failures == 1

    def test_malformed_token_response_still_attempts_subscriptions(
        self, registry, registry_spy, subscription_client, notifier, settings
    ):
        app = MagicMock()
        app.get_accounts.return_value = [{"home_account_id": "u1.tenant"}]
        app.acquire_token_silent_with_error.return_value = {"access_token": "x", "expires_in": None}
        add_user(registry, "u1", minutes(5), [minutes(30)])
        orchestrator = RenewalOrchestrator(
            registry_spy,
            OAuthCredentialClient(IdentitySettings(), app=app),
            subscription_client,
            notifier,
            settings=settings,
            clock=lambda: NOW,
        )
        try:
            summary = orchestrator.run_pass()
        finally:
            orchestrator.shutdown()

        registry_spy.update_credential.assert_not_called()
        notifier.deliver.assert_not_called()
        assert renewed_ids(subscription_client) == ["u1-sub-0"]
        assert subscription_client.renew.call_args.args[0].access_token == "u1-token"
        assert summary.subscriptions_renewed == 1
        assert summary.failures == 1

    def test_non_advancing_expiry_is_not_stored(
        self, orchestrator, registry, registry_spy, credential_client, subscription_client
    ):
        add_user(registry, "u1", minutes(5), [minutes(30)])
        credential_client.refresh.return_value = Credential(access_token="older", expires_on=minutes(5))

        summary = orchestrator.run_pass()

        registry_spy.update_credential.assert_not_called()
        assert registry.get_user("u1").credential.access_token == "u1-token"
        assert subscription_client.renew.call_args.args[0].access_token == "u1-token"
        assert summary.credentials_renewed == 0
        assert summary.failures == 1

    def test_expiry_not_later_than_call_start_is_rejected(
        self, orchestrator, registry, registry_spy, credential_client
    ):
        add_user(registry, "u1", minutes(-30))
        credential_client.refresh.return_value = Credential(access_token="t", expires_on=minutes(0))

        orchestrator.run_pass()

        registry_spy.update_credential.assert_not_called()

    def test_hung_refresh_times_out_as_transient(
        self, registry, credential_client, subscription_client, notifier
    ):
        release = threading.Event()
        credential_client.refresh.side_effect = lambda account: release.wait(5)
        add_user(registry, "u1", minutes(5), [minutes(30)])
        orchestrator = RenewalOrchestrator(
            registry, credential_client, subscription_client, notifier,
            settings=RenewalSettings(call_timeout_seconds=0.1),
            clock=lambda: NOW,
        )
        try:
            summary = orchestrator.run_pass()
        finally:
            release.set()
            orchestrator.shutdown()

        assert summary.failures == 1
        assert summary.subscriptions_renewed == 1
        notifier.deliver.assert_not_called()


class TestSubscriptionStage:
    def test_due_subscriptions_renewed_in_order(self, orchestrator, registry, subscription_client):
        add_user(registry, "u1", minutes(120), [minutes(30), minutes(300), minutes(10)])

        summary = orchestrator.run_pass()

        assert renewed_ids(subscription_client) == ["u1-sub-0", "u1-sub-2"]
        stored = registry.get_user("u1")
        assert [s.expires_on for s in stored.subscriptions] == [minutes(4230), minutes(300), minutes(4230)]
        assert summary.subscriptions_renewed == 2

    def test_unauthorized_notifies_once_and_abandons_rest(
        self, orchestrator, registry, subscription_client, notifier
    ):
        add_user(registry, "u1", minutes(120), [minutes(10), minutes(20), minutes(30)])
        subscription_client.renew.side_effect = [
            minutes(4230),
            RemoteStatusError(RemoteStatus.UNAUTHORIZED, "HTTP 401"),
            minutes(4230),
        ]

        summary = orchestrator.run_pass()

        assert renewed_ids(subscription_client) == ["u1-sub-0", "u1-sub-1"]
        notifier.deliver.assert_called_once_with("u1")
        stored = registry.get_user("u1")
        assert [s.expires_on for s in stored.subscriptions] == [minutes(4230), minutes(20), minutes(30)]
        assert summary.reauth_notifications == 1

    def test_not_found_does_not_block_other_subscriptions(
        self, orchestrator, registry, subscription_client
    ):
        add_user(registry, "u1", minutes(120), [minutes(10), minutes(20)])
        subscription_client.renew.side_effect = [
            RemoteStatusError(RemoteStatus.NOT_FOUND, "HTTP 404"),
            minutes(4230),
        ]

        summary = orchestrator.run_pass()

        assert renewed_ids(subscription_client) == ["u1-sub-0", "u1-sub-1"]
        stored = registry.get_user("u1")
        assert [s.id for s in stored.subscriptions] == ["u1-sub-1"]
        assert stored.subscriptions[0].expires_on == minutes(4230)
        assert summary.subscriptions_stale == 1
        assert summary.subscriptions_pruned == 1

    def test_not_found_left_in_place_when_pruning_disabled(
        self, registry, credential_client, subscription_client, notifier
    ):
        add_user(registry, "u1", minutes(120), [minutes(10)])
        subscription_client.renew.side_effect = RemoteStatusError(RemoteStatus.NOT_FOUND)
        orchestrator = RenewalOrchestrator(
            registry, credential_client, subscription_client, notifier,
            settings=RenewalSettings(prune_stale_subscriptions=False),
            clock=lambda: NOW,
        )

        summary = orchestrator.run_pass()
        orchestrator.shutdown()

        assert len(registry.get_user("u1").subscriptions) == 1
        assert summary.subscriptions_stale == 1
        assert summary.subscriptions_pruned == 0

    @pytest.mark.parametrize("status", [RemoteStatus.RATE_LIMITED, RemoteStatus.OTHER])
    def test_retryable_failures_leave_expiry(self, orchestrator, registry, subscription_client, notifier, status):
        add_user(registry, "u1", minutes(120), [minutes(10), minutes(20)])
        subscription_client.renew.side_effect = [RemoteStatusError(status), minutes(4230)]

        summary = orchestrator.run_pass()

        stored = registry.get_user("u1")
        assert stored.subscriptions[0].expires_on == minutes(10)
        assert stored.subscriptions[1].expires_on == minutes(4230)
        notifier.deliver.assert_not_called()
        assert summary.failures == 1

    def test_hung_renew_times_out_as_other(self, registry, credential_client, subscription_client, notifier):
        release = threading.Event()
        calls = []

        def renew(credential, subscription_id):
            calls.append(subscription_id)
            if subscription_id == "u1-sub-0":
                release.wait(5)
            return minutes(4230)

        subscription_client.renew.side_effect = renew
        add_user(registry, "u1", minutes(120), [minutes(10), minutes(20)])
        orchestrator = RenewalOrchestrator(
            registry, credential_client, subscription_client, notifier,
            settings=RenewalSettings(call_timeout_seconds=0.1),
            clock=lambda: NOW,
        )
        try:
            summary = orchestrator.run_pass()
        finally:
            release.set()
            orchestrator.shutdown()

        assert calls == ["u1-sub-0", "u1-sub-1"]
        assert summary.failures == 1
        assert summary.subscriptions_renewed == 1
        assert registry.get_user("u1").subscriptions[0].expires_on == minutes(10)


class TestIsolation:
    def test_failure_for_one_user_does_not_affect_another(
        self, orchestrator, registry, credential_client, subscription_client
    ):
        add_user(registry, "a", minutes(5), [minutes(10)])
        add_user(registry, "b", minutes(5), [minutes(10)])

        def refresh(account):
            if account.home_account_id == "a.tenant":
                raise KeyError("unexpected bug")
            return Credential(access_token="fresh-b", expires_on=minutes(60))

        credential_client.refresh.side_effect = refresh

        summary = orchestrator.run_pass()

        stored_b = registry.get_user("b")
        assert stored_b.credential.access_token == "fresh-b"
        assert stored_b.subscriptions[0].expires_on == minutes(4230)
        assert registry.get_user("a").subscriptions[0].expires_on == minutes(10)
        assert summary.failures == 1
        assert summary.credentials_renewed == 1

    @pytest.mark.parametrize(
        "error",
        [
            ReauthRequiredError("revoked"),
            TransientCredentialError("network"),
            RuntimeError("boom"),
        ],
    )
    def test_any_classification_isolated(self, orchestrator, registry, credential_client, error):
        add_user(registry, "a", minutes(5))
        add_user(registry, "b", minutes(5))

        def refresh(account):
            if account.home_account_id == "a.tenant":
                raise error
            return Credential(access_token="fresh", expires_on=minutes(60))

        credential_client.refresh.side_effect = refresh

        orchestrator.run_pass()

        assert registry.get_user("b").credential.access_token == "fresh"

    def test_notifier_failure_does_not_abort_pass(
        self, orchestrator, registry, credential_client, notifier
    ):
        add_user(registry, "a", minutes(5))
        add_user(registry, "b", minutes(120))
        credential_client.refresh.side_effect = ReauthRequiredError("revoked")
        notifier.deliver.return_value = False

        summary = orchestrator.run_pass()

        assert summary.users_scanned == 2
        assert summary.reauth_notifications == 1

    def test_user_removed_mid_pass_is_tolerated(
        self, orchestrator, registry, credential_client, subscription_client
    ):
        add_user(registry, "a", minutes(5), [minutes(10)])

        def refresh(account):
            registry.remove("a")
            return Credential(access_token="fresh", expires_on=minutes(60))

        credential_client.refresh.side_effect = refresh

        summary = orchestrator.run_pass()

        assert summary.failures == 0
        assert "a" not in registry


class TestIdempotence:
    def test_second_pass_renews_nothing(self, orchestrator, registry, credential_client, subscription_client):
        add_user(registry, "u1", minutes(5), [minutes(30), minutes(45)])

        first = orchestrator.run_pass()
        credential_client.refresh.reset_mock()
        subscription_client.renew.reset_mock()
        second = orchestrator.run_pass()

        assert first.credentials_renewed == 1
        assert first.subscriptions_renewed == 2
        credential_client.refresh.assert_not_called()
        subscription_client.renew.assert_not_called()
        assert second.credentials_renewed == 0
        assert second.subscriptions_renewed == 0


class TestParallelUsers:
    def test_all_users_processed(self, registry, credential_client, subscription_client, notifier):
        for n in range(8):
            add_user(registry, f"u{n}", minutes(5), [minutes(10), minutes(20)])
        orchestrator = RenewalOrchestrator(
            registry, credential_client, subscription_client, notifier,
            settings=RenewalSettings(max_parallel_users=4),
            clock=lambda: NOW,
        )

        summary = orchestrator.run_pass()
        orchestrator.shutdown()

        assert summary.users_scanned == 8
        assert summary.credentials_renewed == 8
        assert summary.subscriptions_renewed == 16
        for user in registry.list_all():
            assert all(s.expires_on == minutes(4230) for s in user.subscriptions)

    def test_per_user_subscription_order_preserved(
        self, registry, credential_client, subscription_client, notifier
    ):
        order = {}
        lock = threading.Lock()

        def renew(credential, subscription_id):
            user_id = subscription_id.split("-sub-")[0]
            with lock:
                order.setdefault(user_id, []).append(subscription_id)
            return minutes(4230)

        subscription_client.renew.side_effect = renew
        for n in range(4):
            add_user(registry, f"u{n}", minutes(120), [minutes(10), minutes(20), minutes(30)])
        orchestrator = RenewalOrchestrator(
            registry, credential_client, subscription_client, notifier,
            settings=RenewalSettings(max_parallel_users=4),
            clock=lambda: NOW,
        )

        orchestrator.run_pass()
        orchestrator.shutdown()

        for user_id, ids in order.items():
            assert ids == [f"{user_id}-sub-0", f"{user_id}-sub-1", f"{user_id}-sub-2"]
