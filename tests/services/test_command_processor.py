# tests/services/test_command_processor.py
import pytest
from datetime import datetime
from unittest.mock import MagicMock

from src.gateways.notification import INotificationService, NotificationKind
from src.repositories.interfaces import IInboundEmailCommandRepository
from src.repositories.sqlalchemy import SqlalchemyInboundEmailCommandRepository
from src.services.audit_service import AuditService
from src.services.command_processor import CommandProcessor
from src.services.exceptions import (
    EnvironmentNotFoundError,
    ExternalServiceError,
    NoCapacityError,
    QuotaExceededError,
)
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.schemas import EnvironmentDetails, UserContext
from src.utils.command_parser import Command, CommandKind

# ===================================================================
#  테스트를 위한 Fixture 설정
# ===================================================================

@pytest.fixture
def mock_orchestrator() -> MagicMock:
    """EnvironmentOrchestrator에 대한 모의(Mock) 객체를 생성하여 반환합니다."""
    return MagicMock(spec=EnvironmentOrchestrator)

@pytest.fixture
def mock_audit_service() -> MagicMock:
    return MagicMock(spec=AuditService)

@pytest.fixture
def mock_notifier() -> MagicMock:
    return MagicMock(spec=INotificationService)

@pytest.fixture
def mock_email_repo() -> MagicMock:
    return MagicMock(spec=IInboundEmailCommandRepository)

@pytest.fixture
def processor(mock_orchestrator, mock_audit_service, mock_notifier, mock_email_repo) -> CommandProcessor:
    return CommandProcessor(mock_orchestrator, mock_audit_service, mock_notifier, mock_email_repo)

@pytest.fixture
def user() -> UserContext:
    return UserContext(user_id="user-1", email="dev@example.com")

def make_details(state="running") -> EnvironmentDetails:
    return EnvironmentDetails(
        id="env-id-1",
        slug="env_abc12345",
        state=state,
        ip_address="10.1.0.5",
        ssh_port=2222,
        vscode_port=8443,
        ws_endpoint=None,
        access_token="token",
        expires_at=datetime(2026, 1, 2),
        created_at=datetime(2026, 1, 1),
    )

def notified_kind(mock_notifier):
    _, kind, _ = mock_notifier.notify.call_args.args
    return kind

# ===================================================================
#  dispatch 테스트 스위트
# ===================================================================
class TestDispatchCreate:

    def test_create_success_notifies(self, processor, mock_orchestrator, mock_notifier, user):
        """create 명령이 오케스트레이터로 전달되고 성공 알림이 가는지 테스트합니다."""
        # === Arrange ===
        mock_orchestrator.create_environment.return_value = make_details(state="provisioning")
        command = Command(kind=CommandKind.CREATE, resources={"vcpus": 2}, duration_hours=4,
                          repository_url="https://github.com/acme/api")

        # === Act ===
        result = processor.dispatch(command, user)

        # === Assert ===
        assert result.success is True
        assert result.command == "create"
        assert result.notified is True
        assert result.data["slug"] == "env_abc12345"
        mock_orchestrator.create_environment.assert_called_once_with(
            "user-1", resources={"vcpus": 2}, duration_hours=4,
            repository_url="https://github.com/acme/api", init_script=None, environment_vars=None,
        )
        assert notified_kind(mock_notifier) == NotificationKind.ENVIRONMENT_CREATED

    @pytest.mark.parametrize("error", [
        QuotaExceededError("concurrency", "Quota exceeded"),
        NoCapacityError("No available hosts."),
    ])
    def test_create_failure_is_reported(self, processor, mock_orchestrator, mock_notifier, user, error):
        """실패도 반드시 알림으로 전달되어야 합니다."""
        mock_orchestrator.create_environment.side_effect = error

        result = processor.dispatch(Command(kind=CommandKind.CREATE), user)

        assert result.success is False
        assert result.error == str(error)
        assert notified_kind(mock_notifier) == NotificationKind.ENVIRONMENT_CREATION_FAILED


class TestDispatchTargeted:

    def test_destroy_looks_up_by_slug_for_user(self, processor, mock_orchestrator, mock_notifier, user):
        # === Arrange ===
        mock_orchestrator.get_environment_by_slug.return_value = make_details()

        # === Act ===
        result = processor.dispatch(Command(kind=CommandKind.DESTROY, environment_slug="env_abc12345"), user)

        # === Assert ===
        assert result.success is True
        mock_orchestrator.get_environment_by_slug.assert_called_once_with("user-1", "env_abc12345")
        mock_orchestrator.destroy_environment.assert_called_once_with("env-id-1", "user-1")
        assert notified_kind(mock_notifier) == NotificationKind.ENVIRONMENT_DESTROYED

    def test_environment_of_other_user_is_not_found(self, processor, mock_orchestrator, mock_notifier, user):
        mock_orchestrator.get_environment_by_slug.side_effect = EnvironmentNotFoundError("Environment env_x not found.")

        result = processor.dispatch(Command(kind=CommandKind.STATUS, environment_slug="env_xxxxxxxx"), user)

        assert result.success is False
        assert "not found" in result.error
        assert notified_kind(mock_notifier) == NotificationKind.COMMAND_FAILED

    def test_missing_slug_is_reported(self, processor, mock_orchestrator, user):
        result = processor.dispatch(Command(kind=CommandKind.DESTROY), user)

        assert result.success is False
        assert "slug is required" in result.error
        mock_orchestrator.destroy_environment.assert_not_called()

    def test_status_returns_details(self, processor, mock_orchestrator, mock_notifier, user):
        mock_orchestrator.get_environment_by_slug.return_value = make_details(state="stopped")

        result = processor.dispatch(Command(kind=CommandKind.STATUS, environment_slug="env_abc12345"), user)

        assert result.data["state"] == "stopped"
        assert notified_kind(mock_notifier) == NotificationKind.ENVIRONMENT_STATUS

    def test_list(self, processor, mock_orchestrator, mock_notifier, user):
        mock_orchestrator.list_environments.return_value = [make_details(), make_details(state="destroyed")]

        result = processor.dispatch(Command(kind=CommandKind.LIST), user)

        assert len(result.data["environments"]) == 2
        assert notified_kind(mock_notifier) == NotificationKind.ENVIRONMENT_LIST

    def test_execute_records_in_progress_audit(self, processor, mock_orchestrator, mock_audit_service, mock_notifier, user):
        """execute는 실행 요청을 'in_progress' 감사 로그로 남깁니다."""
        mock_orchestrator.get_environment_by_slug.return_value = make_details()
        command = Command(kind=CommandKind.EXECUTE, environment_slug="env_abc12345", code="pytest -q")

        result = processor.dispatch(command, user)

        assert result.success is True
        mock_audit_service.record.assert_called_once_with(
            "user-1", "env-id-1", "execute", "in_progress",
            metadata={"code": "pytest -q", "working_dir": "/workspace"},
        )
        assert notified_kind(mock_notifier) == NotificationKind.EXECUTION_REQUESTED

    def test_execute_without_code_fails(self, processor, mock_audit_service, user):
        result = processor.dispatch(Command(kind=CommandKind.EXECUTE, environment_slug="env_abc12345"), user)

        assert result.success is False
        assert "No code" in result.error
        mock_audit_service.record.assert_not_called()

    def test_connect_records_access(self, processor, mock_orchestrator, mock_audit_service, mock_notifier, user):
        mock_orchestrator.get_environment_by_slug.return_value = make_details()

        result = processor.dispatch(Command(kind=CommandKind.CONNECT, environment_slug="env_abc12345"), user)

        assert result.data["ssh_port"] == 2222
        assert mock_audit_service.record.call_args.args[2] == "access"
        assert notified_kind(mock_notifier) == NotificationKind.CONNECTION_DETAILS


class TestNotificationFailures:

    def test_notification_failure_does_not_mask_success(self, processor, mock_orchestrator, mock_notifier, user):
        mock_orchestrator.list_environments.return_value = []
        mock_notifier.notify.side_effect = ExternalServiceError("notification", "smtp down")

        result = processor.dispatch(Command(kind=CommandKind.LIST), user)

        assert result.success is True
        assert result.notified is False

    def test_unexpected_error_is_reported_then_raised(self, processor, mock_orchestrator, mock_notifier, user):
        mock_orchestrator.list_environments.side_effect = RuntimeError("database is locked")

        with pytest.raises(RuntimeError):
            processor.dispatch(Command(kind=CommandKind.LIST), user)

        assert notified_kind(mock_notifier) == NotificationKind.COMMAND_FAILED

# ===================================================================
#  process_email 테스트 스위트
# ===================================================================
class TestProcessEmail:

    def test_unparseable_email_is_reported_not_created(self, processor, mock_orchestrator, mock_notifier):
        """해석할 수 없는 제목은 create로 처리되지 않고 실패로 보고됩니다."""
        result = processor.process_email("dev@example.com", "hello there")

        assert result.success is False
        assert result.command == "unknown"
        mock_orchestrator.create_environment.assert_not_called()
        user_id, kind, payload = mock_notifier.notify.call_args.args
        assert user_id == "dev@example.com"
        assert kind == NotificationKind.COMMAND_FAILED
        assert payload["to"] == "dev@example.com"

    def test_email_is_parsed_and_dispatched(self, processor, mock_orchestrator):
        mock_orchestrator.get_environment_by_slug.return_value = make_details()

        result = processor.process_email(
            "dev@example.com", "Destroy env_abc12345", body_text="thanks", user_id="user-1"
        )

        assert result.success is True
        mock_orchestrator.destroy_environment.assert_called_once_with("env-id-1", "user-1")


def stored_email(mock_email_repo):
    """process_email이 저장한 inbound_email_commands 레코드."""
    return mock_email_repo.create.call_args.args[0]


class TestInboundEmailLedger:
    """모든 명령 이메일은 처리 결과와 함께 기록으로 남아야 합니다."""

    def test_status_moves_pending_processing_completed(self, processor, mock_orchestrator, mock_email_repo):
        # === Arrange ===
        mock_orchestrator.get_environment_by_slug.return_value = make_details()
        statuses = []
        mock_email_repo.commit.side_effect = lambda: statuses.append(stored_email(mock_email_repo).status)

        # === Act ===
        result = processor.process_email(
            "dev@example.com", "Destroy env_abc12345", body_text="thanks",
            user_id="user-1", recipient="agent@example.com", message_id="<m-1@example.com>",
        )

        # === Assert ===
        assert result.success is True
        assert statuses == ["pending", "processing", "completed"]

        email = stored_email(mock_email_repo)
        assert email.sender == "dev@example.com"
        assert email.recipient == "agent@example.com"
        assert email.user_id == "user-1"
        assert email.message_id == "<m-1@example.com>"
        assert email.command == "destroy"
        assert email.command_data["environment_slug"] == "env_abc12345"
        assert email.processed_at is not None
        assert email.error_message is None
        assert email.response_sent is True

    def test_unparseable_email_is_stored_as_failed(self, processor, mock_email_repo):
        result = processor.process_email("dev@example.com", "hello there")

        email = stored_email(mock_email_repo)
        assert result.success is False
        assert email.status == "failed"
        assert email.command is None
        assert "Could not find a command" in email.error_message
        assert email.response_sent is True

    def test_rejected_create_is_stored_as_failed(self, processor, mock_orchestrator, mock_email_repo):
        mock_orchestrator.create_environment.side_effect = QuotaExceededError("concurrency", "Quota exceeded")

        result = processor.process_email("dev@example.com", "Create environment", body_text="2 cpu")

        email = stored_email(mock_email_repo)
        assert result.success is False
        assert email.status == "failed"
        assert email.command == "create"
        assert email.error_message == "Quota exceeded"
        assert email.environment_id is None

    def test_created_environment_is_linked(self, processor, mock_orchestrator, mock_email_repo):
        mock_orchestrator.create_environment.return_value = make_details(state="provisioning")

        processor.process_email("dev@example.com", "Create environment", body_text="4 cpu for 2 hours")

        email = stored_email(mock_email_repo)
        assert email.status == "completed"
        assert email.environment_id == "env-id-1"
        assert email.command_data["resources"] == {"vcpus": 4}
        assert email.command_data["duration_hours"] == 2

    def test_notification_failure_is_recorded(self, processor, mock_orchestrator, mock_notifier, mock_email_repo):
        mock_orchestrator.list_environments.return_value = []
        mock_notifier.notify.side_effect = ExternalServiceError("notification", "smtp down")

        processor.process_email("dev@example.com", "list my environments")

        email = stored_email(mock_email_repo)
        assert email.status == "completed"
        assert email.response_sent is False

    def test_unexpected_error_marks_failed_then_raises(self, processor, mock_orchestrator, mock_email_repo):
        mock_orchestrator.list_environments.side_effect = RuntimeError("database is locked")

        with pytest.raises(RuntimeError):
            processor.process_email("dev@example.com", "list")

        email = stored_email(mock_email_repo)
        assert email.status == "failed"
        assert email.error_message == "database is locked"

    def test_record_is_persisted(self, mock_orchestrator, mock_audit_service, mock_notifier, db_session):
        """실제 SQLite 저장소에 레코드가 남고, 사용자별로 조회할 수 있어야 합니다."""
        # === Arrange ===
        email_repo = SqlalchemyInboundEmailCommandRepository(db_session)
        processor = CommandProcessor(mock_orchestrator, mock_audit_service, mock_notifier, email_repo)

        # === Act ===
        result = processor.process_email("dev@example.com", "hello there", body_html="<p>hi</p>")

        # === Assert ===
        stored = email_repo.find_by_id(result.email_command_id)
        assert stored.status == "failed"
        assert stored.sender == "dev@example.com"
        assert stored.body_html == "<p>hi</p>"
        assert stored.created_at is not None
        assert [e.id for e in email_repo.list_by_user_id("dev@example.com")] == [result.email_command_id]
