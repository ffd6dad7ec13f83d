import enum
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    ENVIRONMENT_CREATED = "environment_created"
    ENVIRONMENT_CREATION_FAILED = "environment_creation_failed"
    ENVIRONMENT_DESTROYED = "environment_destroyed"
    ENVIRONMENT_STATUS = "environment_status"
    ENVIRONMENT_LIST = "environment_list"
    EXECUTION_REQUESTED = "execution_requested"
    CONNECTION_DETAILS = "connection_details"
    COMMAND_FAILED = "command_failed"


class INotificationService(ABC):
    @abstractmethod
    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        """
        사용자에게 명령 처리 결과를 알립니다.

        Raises:
            ExternalServiceError: 알림 전달에 실패했을 때.
        """
        pass


class LoggingNotificationService(INotificationService):
    """알림을 로그로만 남깁니다. 실제 이메일 발송은 외부 서비스가 담당합니다."""

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info(f"Notify {user_id} [{NotificationKind(kind).value}]: {json.dumps(payload, default=str)}")
