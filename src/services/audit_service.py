import json
import logging
from typing import Any, Dict, List, Optional

from src.database import models
from src.repositories.interfaces import IAuditLogRepository

logger = logging.getLogger(__name__)


class AuditService:
    """환경 감사 로그에 엔트리를 추가하고 조회합니다. 수정/삭제 연산은 제공하지 않습니다."""

    def __init__(self, audit_repo: IAuditLogRepository):
        self.audit_repo = audit_repo

    def append(
        self,
        user_id: Optional[str],
        environment_id: Optional[str],
        action: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> models.AuditLogEntry:
        """
        감사 로그 엔트리를 하나 추가합니다. commit은 호출자의 트랜잭션에 맡깁니다.

        Raises:
            ValueError: status가 success/failed/in_progress 중 하나가 아닐 때.
        """
        entry = models.AuditLogEntry(
            user_id=user_id,
            environment_id=environment_id,
            action=action,
            status=models.AuditStatus(status).value,
            details=self._to_json_safe(metadata),
            error_message=error_message,
            duration_ms=duration_ms,
        )
        self.audit_repo.create(entry)
        logger.debug(f"Audit [{entry.status}] {action} env={environment_id} user={user_id}")
        return entry

    def record(self, user_id: Optional[str], environment_id: Optional[str], action: str, status: str, **kwargs) -> models.AuditLogEntry:
        """다른 변경 없이 감사 로그 하나만 남길 때 사용합니다. append 후 바로 commit 합니다."""
        try:
            entry = self.append(user_id, environment_id, action, status, **kwargs)
            self.audit_repo.commit()
            return entry
        except Exception:
            self.audit_repo.rollback()
            raise

    def list_by_environment(self, environment_id: str) -> List[Dict[str, Any]]:
        return [self.to_dict(e) for e in self.audit_repo.list_by_environment_id(environment_id)]

    def list_by_user(self, user_id: str) -> List[Dict[str, Any]]:
        return [self.to_dict(e) for e in self.audit_repo.list_by_user_id(user_id)]

    @staticmethod
    def to_dict(entry: models.AuditLogEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "user_id": entry.user_id,
            "environment_id": entry.environment_id,
            "action": entry.action,
            "status": entry.status,
            "metadata": entry.details,
            "error_message": entry.error_message,
            "duration_ms": entry.duration_ms,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }

    @staticmethod
    def _to_json_safe(metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if metadata is None:
            return None
        # datetime, Enum 등을 JSON 컬럼에 넣을 수 있는 값으로 변환
        return json.loads(json.dumps(metadata, default=str))
