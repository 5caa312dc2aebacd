"""Tests for GraphSubscriptionClient - remote calls and status classification."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from graph_renewal.clients.subscription_client import (
    GraphSubscriptionClient,
    RemoteStatus,
    RemoteStatusError,
)
from graph_renewal.models import Credential, GraphSettings
from graph_renewal.utils.timestamps import parse_remote_datetime, utc_now

CREDENTIAL = Credential(
    access_token="at-1",
    expires_on=datetime(2030, 1, 1, tzinfo=timezone.utc),
)


@pytest.fixture
def settings():
    return GraphSettings(
        notification_url="https://example.com/notifications",
        client_state="state-secret",
    )


def make_client(settings, handler) -> GraphSubscriptionClient:
    return GraphSubscriptionClient(settings, transport=httpx.MockTransport(handler))


class TestRemoteStatus:
    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (404, RemoteStatus.NOT_FOUND),
            (401, RemoteStatus.UNAUTHORIZED),
            (429, RemoteStatus.RATE_LIMITED),
            (403, RemoteStatus.OTHER),
            (500, RemoteStatus.OTHER),
        ],
    )
    def test_from_status_code(self, status_code, expected):
        assert RemoteStatus.from_status_code(status_code) is expected


class TestRenew:
    def test_patch_with_requested_lifetime(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "sub-1", "expirationDateTime": "2026-10-22T06:30:00.0000000Z"})

        before = utc_now()
        new_expiry = make_client(settings, handler).renew(CREDENTIAL, "sub-1")

        assert new_expiry == datetime(2026, 10, 22, 6, 30, tzinfo=timezone.utc)
        assert seen["method"] == "PATCH"
        assert seen["path"] == "/v1.0/subscriptions/sub-1"
        assert seen["auth"] == "Bearer at-1"
        requested = parse_remote_datetime(seen["body"]["expirationDateTime"])
        assert requested - before >= timedelta(minutes=4229)

    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (404, RemoteStatus.NOT_FOUND),
            (401, RemoteStatus.UNAUTHORIZED),
            (429, RemoteStatus.RATE_LIMITED),
            (502, RemoteStatus.OTHER),
        ],
    )
    def test_failures_are_classified(self, settings, status_code, expected):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                status_code,
                json={"error": {"code": "SomeCode", "message": "Some message"}},
            )

        with pytest.raises(RemoteStatusError) as exc_info:
            make_client(settings, handler).renew(CREDENTIAL, "sub-1")

        assert exc_info.value.status is expected
        assert exc_info.value.status_code == status_code
        assert "SomeCode" in exc_info.value.detail

    def test_network_error_is_other(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteStatusError) as exc_info:
            make_client(settings, handler).renew(CREDENTIAL, "sub-1")
        assert exc_info.value.status is RemoteStatus.OTHER

    def test_malformed_response_is_other(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "sub-1"})

        with pytest.raises(RemoteStatusError) as exc_info:
            make_client(settings, handler).renew(CREDENTIAL, "sub-1")
        assert exc_info.value.status is RemoteStatus.OTHER


class TestCreateListDelete:
    def test_create_sends_subscription_body(self, settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "id": "sub-new",
                    "resource": seen["body"]["resource"],
                    "expirationDateTime": "2026-10-22T06:30:00Z",
                },
            )

        record = make_client(settings, handler).create(CREDENTIAL)

        assert record.id == "sub-new"
        assert record.resource == "/me/mailFolders/inbox/messages"
        assert seen["body"]["changeType"] == "created,updated"
        assert seen["body"]["notificationUrl"] == "https://example.com/notifications"
        assert seen["body"]["clientState"] == "state-secret"

    def test_list_reads_value(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "value": [
                        {"id": "a", "resource": "/me/events", "expirationDateTime": "2026-10-22T06:30:00Z"},
                        {"id": "b", "resource": "/me/messages", "expirationDateTime": "2026-10-23T06:30:00Z"},
                    ]
                },
            )

        records = make_client(settings, handler).list(CREDENTIAL)
        assert [r.id for r in records] == ["a", "b"]

    def test_delete_not_found(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "DELETE"
            return httpx.Response(404)

        with pytest.raises(RemoteStatusError) as exc_info:
            make_client(settings, handler).delete(CREDENTIAL, "gone")
        assert exc_info.value.status is RemoteStatus.NOT_FOUND
