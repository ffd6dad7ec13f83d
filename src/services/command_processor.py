import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Tuple

from src.database import models
from src.gateways.notification import INotificationService, NotificationKind
from src.repositories.interfaces import IInboundEmailCommandRepository
from src.services.audit_service import AuditService
from src.services.exceptions import (
    CommandParseError,
    ExternalServiceError,
    InvalidTransitionError,
    NoCapacityError,
    NotFoundError,
    QuotaExceededError,
)
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.schemas import CommandResult, EnvironmentDetails, UserContext
from src.utils.command_parser import Command, CommandKind, parse_email_command
from src.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# 사용자에게 그대로 전달되는 예상 가능한 실패들
EXPECTED_ERRORS = (
    NotFoundError,
    QuotaExceededError,
    NoCapacityError,
    InvalidTransitionError,
    ExternalServiceError,
    ValueError,
)

HandlerResult = Tuple[NotificationKind, str, Dict[str, Any]]


class CommandProcessor:
    """
    해석된 명령을 오케스트레이터 호출로 바꾸고, 결과(성공/실패)를 알림 서비스로 전달합니다.
    이메일로 들어온 명령은 처리 상태와 함께 inbound_email_commands에 기록합니다.
    """

    def __init__(
        self,
        orchestrator: EnvironmentOrchestrator,
        audit_service: AuditService,
        notification_service: INotificationService,
        inbound_email_repo: IInboundEmailCommandRepository,
    ):
        self.orchestrator = orchestrator
        self.audit_service = audit_service
        self.notification_service = notification_service
        self.inbound_email_repo = inbound_email_repo
        self._handlers: Dict[CommandKind, Callable[[Command, UserContext], HandlerResult]] = {
            CommandKind.CREATE: self._handle_create,
            CommandKind.DESTROY: self._handle_destroy,
            CommandKind.STATUS: self._handle_status,
            CommandKind.LIST: self._handle_list,
            CommandKind.EXECUTE: self._handle_execute,
            CommandKind.CONNECT: self._handle_connect,
        }

    def process_email(
        self,
        sender: str,
        subject: str,
        body_text: Optional[str] = None,
        body_html: Optional[str] = None,
        user_id: Optional[str] = None,
        recipient: Optional[str] = None,
        message_id: Optional[str] = None,
        in_reply_to: Optional[str] = None,
    ) -> CommandResult:
        """
        수신한 이메일을 저장하고, 해석해서 실행합니다. 사용자 ID가 없으면 보낸 사람 주소를 사용합니다.

        이메일 레코드는 pending -> processing -> completed/failed 순서로 갱신되며,
        해석에 실패하면 'command_failed' 알림을 보내고 레코드를 failed로 남긴 뒤 실패 결과를 반환합니다.
        예상하지 못한 예외는 레코드를 failed로 남긴 뒤 그대로 다시 발생시킵니다.
        """
        user_context = UserContext(user_id=user_id or sender, email=sender)
        email = models.InboundEmailCommand(
            user_id=user_context.user_id,
            sender=sender,
            recipient=recipient,
            subject=subject or "",
            body_text=body_text,
            body_html=body_html,
            message_id=message_id,
            in_reply_to=in_reply_to,
            status=models.InboundEmailStatus.PENDING.value,
        )
        self._save_email(email, create=True)
        email_id = email.id

        try:
            command = parse_email_command(subject, body_text, body_html)
        except CommandParseError as e:
            logger.warning(f"Could not parse command from {sender}: {e}")
            notified = self._notify(user_context, NotificationKind.COMMAND_FAILED, {
                "command": None,
                "subject": subject,
                "error": str(e),
            })
            self._save_email(
                email, status=models.InboundEmailStatus.FAILED.value,
                processed_at=utcnow(), error_message=str(e), response_sent=notified,
            )
            return CommandResult(
                success=False,
                command="unknown",
                message="Could not understand the command.",
                error=str(e),
                notified=notified,
                email_command_id=email_id,
            )

        kind = CommandKind(command.kind)
        self._save_email(
            email, status=models.InboundEmailStatus.PROCESSING.value, processed_at=utcnow(),
            command=kind.value, command_data=self._command_data(command),
        )

        try:
            result = self.dispatch(command, user_context)
        except Exception as e:
            self._save_email(email, status=models.InboundEmailStatus.FAILED.value, error_message=str(e))
            raise

        self._save_email(
            email,
            status=(models.InboundEmailStatus.COMPLETED if result.success else models.InboundEmailStatus.FAILED).value,
            error_message=result.error,
            response_sent=result.notified,
            environment_id=result.data.get("id") if result.success and kind == CommandKind.CREATE else None,
        )
        result.email_command_id = email_id
        return result

    def dispatch(self, command: Command, user_context: UserContext) -> CommandResult:
        """
        명령을 실행하고 결과를 알립니다.

        예상 가능한 실패(쿼터 초과, 자원 부족, 환경 없음 등)는 실패 결과로 반환하고,
        그 외의 예외는 실패 알림을 보낸 뒤 그대로 다시 발생시킵니다.

        Returns:
            실행 결과. notified는 알림 전달 성공 여부입니다.
        """
        kind = CommandKind(command.kind)
        handler = self._handlers[kind]

        try:
            notification_kind, message, data = handler(command, user_context)
        except EXPECTED_ERRORS as e:
            logger.warning(f"Command '{kind.value}' from {user_context.user_id} failed: {e}")
            notified = self._notify_failure(kind, user_context, e)
            return CommandResult(
                success=False,
                command=kind.value,
                message=f"Failed to {kind.value} environment.",
                error=str(e),
                notified=notified,
            )
        except Exception as e:
            logger.exception(f"Unexpected error while handling '{kind.value}' for {user_context.user_id}")
            self._notify_failure(kind, user_context, e)
            raise

        notified = self._notify(user_context, notification_kind, data)
        return CommandResult(success=True, command=kind.value, message=message, data=data, notified=notified)

    def _handle_create(self, command: Command, user_context: UserContext) -> HandlerResult:
        details = self.orchestrator.create_environment(
            user_context.user_id,
            resources=command.resources,
            duration_hours=command.duration_hours,
            repository_url=command.repository_url,
            init_script=command.init_script,
            environment_vars=command.environment_vars,
        )
        return NotificationKind.ENVIRONMENT_CREATED, f"Environment {details.slug} is being provisioned.", details.to_dict()

    def _handle_destroy(self, command: Command, user_context: UserContext) -> HandlerResult:
        details = self._find_target(command, user_context)
        self.orchestrator.destroy_environment(details.id, user_context.user_id)
        return (
            NotificationKind.ENVIRONMENT_DESTROYED,
            f"Environment {details.slug} destroyed.",
            {"id": details.id, "slug": details.slug},
        )

    def _handle_status(self, command: Command, user_context: UserContext) -> HandlerResult:
        details = self._find_target(command, user_context)
        return NotificationKind.ENVIRONMENT_STATUS, f"Environment {details.slug} is {details.state}.", details.to_dict()

    def _handle_list(self, command: Command, user_context: UserContext) -> HandlerResult:
        environments = self.orchestrator.list_environments(user_context.user_id)
        return (
            NotificationKind.ENVIRONMENT_LIST,
            f"{len(environments)} environment(s).",
            {"environments": [e.to_dict() for e in environments]},
        )

    def _handle_execute(self, command: Command, user_context: UserContext) -> HandlerResult:
        if not command.code:
            raise ValueError("No code provided to execute.")
        details = self._find_target(command, user_context)

        # 실제 실행은 제어 에이전트가 담당하므로 요청 사실만 기록합니다.
        self.audit_service.record(
            user_context.user_id, details.id, "execute", models.AuditStatus.IN_PROGRESS.value,
            metadata={"code": command.code, "working_dir": command.working_dir},
        )
        return (
            NotificationKind.EXECUTION_REQUESTED,
            f"Execution queued for {details.slug}.",
            {"id": details.id, "slug": details.slug, "code": command.code, "working_dir": command.working_dir},
        )

    def _handle_connect(self, command: Command, user_context: UserContext) -> HandlerResult:
        details = self._find_target(command, user_context)
        self.audit_service.record(
            user_context.user_id, details.id, "access", models.AuditStatus.SUCCESS.value,
            metadata={"via": "command", "email": user_context.email},
        )
        return NotificationKind.CONNECTION_DETAILS, f"Connection details for {details.slug}.", details.to_dict()

    def _find_target(self, command: Command, user_context: UserContext) -> EnvironmentDetails:
        if not command.environment_slug:
            raise ValueError(f"An environment slug is required for the {CommandKind(command.kind).value} command.")
        return self.orchestrator.get_environment_by_slug(user_context.user_id, command.environment_slug)

    def _save_email(self, email: models.InboundEmailCommand, create: bool = False, **changes) -> None:
        try:
            for name, value in changes.items():
                setattr(email, name, value)
            if create:
                self.inbound_email_repo.create(email)
            self.inbound_email_repo.commit()
        except Exception:
            self.inbound_email_repo.rollback()
            raise

    @staticmethod
    def _command_data(command: Command) -> Dict[str, Any]:
        return {name: value for name, value in asdict(command).items() if name != "kind" and value is not None}

    def _notify_failure(self, kind: CommandKind, user_context: UserContext, error: Exception) -> bool:
        notification_kind = (
            NotificationKind.ENVIRONMENT_CREATION_FAILED if kind == CommandKind.CREATE
            else NotificationKind.COMMAND_FAILED
        )
        return self._notify(user_context, notification_kind, {"command": kind.value, "error": str(error)})

    def _notify(self, user_context: UserContext, kind: NotificationKind, payload: Dict[str, Any]) -> bool:
        try:
            self.notification_service.notify(user_context.user_id, kind, {"to": user_context.email, **payload})
            return True
        except ExternalServiceError:
            logger.exception(f"Failed to send '{kind.value}' notification to {user_context.user_id}")
            return False
