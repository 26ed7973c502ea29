"""Tests for the Magnum remote client, against a mocked SDK connection."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openstack.exceptions import HttpException, ResourceNotFound

from models import (
    OperationStatus,
    PendingOperation,
    RemoteOperationFailedError,
    ResourceNotFoundError,
    TransientNetworkError,
)
from openstack_client import OpenStackClient, cluster_status, retry_on_error


def _cluster(**attrs):
    defaults = {
        "id": "5d12f6fd-a196-4bf0-ae4c-000000000001",
        "name": "k8s-prod",
        "node_count": 2,
        "status": "CREATE_COMPLETE",
        "status_reason": None,
    }
    return SimpleNamespace(**{**defaults, **attrs})


@pytest.fixture
def coe():
    return MagicMock()


@pytest.fixture
def client(coe):
    client = OpenStackClient(cloud="test")
    client._conn = MagicMock(container_infrastructure_management=coe)
    return client


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("openstack_client.time.sleep", lambda _: None)


class TestRetryOnError:
    """Tests for the retry_on_error decorator."""

    def test_retries_server_errors(self, no_sleep):
        attempts = []

        @retry_on_error(max_retries=2)
        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise HttpException(message="unavailable", http_status=503)
            return "ok"

        assert flaky() == "ok"
        assert len(attempts) == 3

    def test_exhausted_retries_are_transient(self, no_sleep):
        @retry_on_error(max_retries=1)
        def down():
            raise HttpException(message="unavailable", http_status=503)

        with pytest.raises(TransientNetworkError, match="after 2 attempts"):
            down()

    def test_client_errors_fail_immediately(self, no_sleep):
        attempts = []

        @retry_on_error()
        def rejected():
            attempts.append(1)
            raise HttpException(message="bad template", http_status=400)

        with pytest.raises(RemoteOperationFailedError) as exc_info:
            rejected()

        assert len(attempts) == 1
        assert exc_info.value.payload["status_code"] == 400


class TestClusterStatus:
    """Tests for mapping Magnum statuses."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("CREATE_IN_PROGRESS", OperationStatus.RUNNING),
            ("UPDATE_IN_PROGRESS", OperationStatus.RUNNING),
            ("CREATE_COMPLETE", OperationStatus.SUCCEEDED),
            ("UPDATE_COMPLETE", OperationStatus.SUCCEEDED),
            ("CREATE_FAILED", OperationStatus.FAILED),
            ("DELETE_FAILED", OperationStatus.FAILED),
            (None, OperationStatus.RUNNING),
        ],
    )
    def test_mapping(self, status, expected):
        assert cluster_status(status) is expected


class TestOpenStackClient:
    """Tests for OpenStackClient cluster operations."""

    def test_get_found(self, client, coe):
        coe.find_cluster.return_value = _cluster()

        remote = client.get("k8s-prod")

        coe.find_cluster.assert_called_once_with("k8s-prod", ignore_missing=True)
        assert remote["id"] == "5d12f6fd-a196-4bf0-ae4c-000000000001"
        assert remote["node_count"] == 2
        assert remote["api_address"] is None

    def test_get_missing(self, client, coe):
        coe.find_cluster.return_value = None
        assert client.get("k8s-prod") is None

    def test_create_new_cluster(self, client, coe):
        coe.find_cluster.return_value = None
        coe.create_cluster.return_value = _cluster(status="CREATE_IN_PROGRESS")
        request = {"name": "k8s-prod", "cluster_template_id": "tmpl", "node_count": 2}

        submission = client.create("k8s-prod", request)

        coe.create_cluster.assert_called_once_with(**request)
        assert submission.operation.action == "create"
        assert submission.operation.handle == "5d12f6fd-a196-4bf0-ae4c-000000000001"

    def test_create_existing_updates_node_count(self, client, coe):
        coe.find_cluster.return_value = _cluster(node_count=2)

        submission = client.create("k8s-prod", {"name": "k8s-prod", "node_count": 5})

        coe.update_cluster.assert_called_once_with(
            "5d12f6fd-a196-4bf0-ae4c-000000000001", node_count=5
        )
        coe.create_cluster.assert_not_called()
        assert submission.operation.action == "update"

    def test_create_existing_unchanged(self, client, coe):
        coe.find_cluster.return_value = _cluster(node_count=2)

        submission = client.create("k8s-prod", {"name": "k8s-prod", "node_count": 2})

        coe.update_cluster.assert_not_called()
        assert submission.operation is None
        assert submission.resource["name"] == "k8s-prod"

    def test_delete(self, client, coe):
        submission = client.delete("5d12f6fd")

        coe.delete_cluster.assert_called_once_with("5d12f6fd", ignore_missing=False)
        assert submission.operation.action == "delete"

    def test_delete_missing(self, client, coe):
        coe.delete_cluster.side_effect = ResourceNotFound(message="gone")

        with pytest.raises(ResourceNotFoundError):
            client.delete("5d12f6fd")

    def test_poll_running(self, client, coe):
        coe.get_cluster.return_value = _cluster(status="CREATE_IN_PROGRESS")
        operation = PendingOperation(handle="5d12f6fd", action="create", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.RUNNING

    def test_poll_failed_reports_reason(self, client, coe):
        coe.get_cluster.return_value = _cluster(
            status="CREATE_FAILED", status_reason="Quota exceeded for instances"
        )
        operation = PendingOperation(handle="5d12f6fd", action="create", remote_id="5d12f6fd")

        report = client.poll_status(operation)

        assert report.status is OperationStatus.FAILED
        assert report.error == {
            "status": "CREATE_FAILED",
            "reason": "Quota exceeded for instances",
        }

    def test_poll_delete_finishes_when_gone(self, client, coe):
        coe.get_cluster.side_effect = ResourceNotFound(message="gone")
        operation = PendingOperation(handle="5d12f6fd", action="delete", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.SUCCEEDED

    def test_poll_delete_ignores_stale_complete_status(self, client, coe):
        coe.get_cluster.return_value = _cluster(status="UPDATE_COMPLETE")
        operation = PendingOperation(handle="5d12f6fd", action="delete", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.RUNNING

    def test_poll_update_ignores_stale_create_complete(self, client, coe):
        coe.get_cluster.return_value = _cluster(status="CREATE_COMPLETE")
        operation = PendingOperation(handle="5d12f6fd", action="update", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.RUNNING

    def test_poll_update_complete(self, client, coe):
        coe.get_cluster.return_value = _cluster(status="UPDATE_COMPLETE", node_count=5)
        operation = PendingOperation(handle="5d12f6fd", action="update", remote_id="5d12f6fd")

        report = client.poll_status(operation)

        assert report.status is OperationStatus.SUCCEEDED
        assert report.resource["node_count"] == 5

    def test_poll_create_ignores_stale_update_complete(self, client, coe):
        coe.get_cluster.return_value = _cluster(status="UPDATE_COMPLETE")
        operation = PendingOperation(handle="5d12f6fd", action="create", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.RUNNING

    def test_poll_create_of_vanished_cluster_fails(self, client, coe):
        coe.get_cluster.side_effect = ResourceNotFound(message="gone")
        operation = PendingOperation(handle="5d12f6fd", action="create", remote_id="5d12f6fd")

        assert client.poll_status(operation).status is OperationStatus.FAILED

    def test_close(self, client):
        conn = client._conn
        client.close()

        conn.close.assert_called_once()
        assert client._conn is None
