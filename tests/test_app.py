# tests/test_app.py
import io
import json

import pytest
from unittest.mock import MagicMock, patch

from src import app
from src.services.exceptions import (
    EnvironmentNotFoundError,
    ExternalServiceError,
    InvalidTransitionError,
    NoCapacityError,
    QuotaExceededError,
)
from src.services.host_allocator import HostAllocator
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.schemas import CommandResult


def call(method, path, body=None, headers=None):
    """WSGI application을 직접 호출하고 (status, json body)를 반환합니다."""
    raw = json.dumps(body).encode("utf-8") if body is not None else b""
    environ = {
        "REQUEST_METHOD": method,
        "PATH_INFO": path,
        "CONTENT_LENGTH": str(len(raw)),
        "wsgi.input": io.BytesIO(raw),
    }
    environ.update(headers or {})
    captured = {}

    def start_response(status, response_headers):
        captured["status"] = status

    response = b"".join(app.application(environ, start_response))
    return captured["status"], (json.loads(response) if response else None)


@pytest.fixture
def services():
    """build_services를 모의 서비스로 바꾸고, 실제 DB 세션은 만들지 않습니다."""
    fake = {
        "orchestrator": MagicMock(spec=EnvironmentOrchestrator),
        "hosts": MagicMock(spec=HostAllocator),
        "audit": MagicMock(),
        "commands": MagicMock(),
    }
    with patch("src.app.SessionLocal"), patch("src.app.build_services", return_value=fake):
        yield fake


class TestHandleException:

    @pytest.mark.parametrize("error, status", [
        (EnvironmentNotFoundError("missing"), "404 Not Found"),
        (InvalidTransitionError("destroyed", "running"), "409 Conflict"),
        (QuotaExceededError("vcpus", "Quota exceeded"), "429 Too Many Requests"),
        (NoCapacityError("full"), "503 Service Unavailable"),
        (ExternalServiceError("job-queue", "down"), "503 Service Unavailable"),
        (ValueError("bad"), "400 Bad Request"),
        (RuntimeError("boom"), "500 Internal Server Error"),
    ])
    def test_status_mapping(self, error, status):
        assert app.handle_exception(error)[0] == status

    def test_quota_error_includes_dimension(self):
        _, body = app.handle_exception(QuotaExceededError("concurrency", "Quota exceeded"))
        assert json.loads(body) == {"error": "Quota exceeded", "dimension": "concurrency"}


class TestRoutes:

    def test_create_requires_user_header(self, services):
        status, body = call("POST", "/v1/environments", {"resources": {"vcpus": 2}})

        assert status == "400 Bad Request"
        assert "X-User-Id" in body["error"]
        services["orchestrator"].create_environment.assert_not_called()

    def test_create_environment(self, services):
        # === Arrange ===
        details = MagicMock()
        details.to_dict.return_value = {"id": "env-id-1", "state": "provisioning"}
        services["orchestrator"].create_environment.return_value = details

        # === Act ===
        status, body = call(
            "POST", "/v1/environments",
            {"resources": {"vcpus": 2}, "duration_hours": 4},
            {"HTTP_X_USER_ID": "user-1"},
        )

        # === Assert ===
        assert status == "201 Created"
        assert body == {"id": "env-id-1", "state": "provisioning"}
        services["orchestrator"].create_environment.assert_called_once_with(
            "user-1", resources={"vcpus": 2}, duration_hours=4, repository_url=None,
            init_script=None, environment_vars=None, name=None,
        )

    def test_transition_callback(self, services):
        services["orchestrator"].get_environment.return_value.to_dict.return_value = {"state": "running"}

        status, body = call("POST", "/v1/environments/env-id-1/transitions",
                            {"state": "running", "metadata": {"ip_address": "10.1.0.5"}})

        assert status == "200 OK"
        services["orchestrator"].transition_state.assert_called_once_with(
            "env-id-1", "running", {"ip_address": "10.1.0.5"}
        )

    def test_invalid_transition_maps_to_conflict(self, services):
        services["orchestrator"].transition_state.side_effect = InvalidTransitionError("destroyed", "running")

        status, body = call("POST", "/v1/environments/env-id-1/transitions", {"state": "running"})

        assert status == "409 Conflict"
        assert "Invalid state transition" in body["error"]

    def test_unknown_route(self, services):
        status, body = call("GET", "/v1/unknown")

        assert status == "404 Not Found"
        assert body == {"error": "Not Found"}

    def test_non_object_body_is_bad_request(self, services):
        status, body = call("POST", "/v1/environments", [2, 4096], {"HTTP_X_USER_ID": "user-1"})

        assert status == "400 Bad Request"
        assert "JSON object" in body["error"]
        services["orchestrator"].create_environment.assert_not_called()

    def test_register_host_rejects_unknown_field(self, services):
        status, body = call("POST", "/v1/hosts", {
            "name": "hv-2", "region": "local", "ip_address": "10.0.0.2", "gpu_count": 4,
        })

        assert status == "400 Bad Request"
        assert "gpu_count" in body["error"]
        services["hosts"].register_host.assert_not_called()

    def test_register_host_requires_name_region_ip(self, services):
        status, body = call("POST", "/v1/hosts", {"name": "hv-2"})

        assert status == "400 Bad Request"
        assert "ip_address" in body["error"]
        assert "region" in body["error"]

    def test_register_host(self, services):
        services["hosts"].to_dict.return_value = {"id": 2, "status": "provisioning"}

        status, body = call("POST", "/v1/hosts", {
            "name": "hv-2", "region": "local", "ip_address": "10.0.0.2", "max_vcpus": 32,
        })

        assert status == "201 Created"
        services["hosts"].register_host.assert_called_once_with(
            name="hv-2", region="local", ip_address="10.0.0.2", max_vcpus=32,
        )

    def test_inbound_email_returns_ledger_id(self, services):
        services["commands"].process_email.return_value = CommandResult(
            success=True, command="list", message="0 environment(s).", data={"environments": []},
            notified=True, email_command_id="email-1",
        )

        status, body = call("POST", "/v1/inbound-email", {
            "from": "dev@example.com", "to": "agent@example.com", "subject": "list", "message_id": "<m-1>",
        })

        assert status == "200 OK"
        assert body["email_command_id"] == "email-1"
        services["commands"].process_email.assert_called_once_with(
            sender="dev@example.com", subject="list", body_text=None, body_html=None, user_id=None,
            recipient="agent@example.com", message_id="<m-1>", in_reply_to=None,
        )
