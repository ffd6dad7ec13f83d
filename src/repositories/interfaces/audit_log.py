from abc import abstractmethod
from typing import List
from src.database import models
from .base import IRepository


class IAuditLogRepository(IRepository):
    @abstractmethod
    def create(self, entry_model: models.AuditLogEntry) -> models.AuditLogEntry:
        """감사 로그 엔트리를 추가합니다. 수정/삭제 메서드는 존재하지 않습니다."""
        pass

    @abstractmethod
    def list_by_environment_id(self, environment_id: str) -> List[models.AuditLogEntry]:
        """특정 환경의 감사 로그를 시간순으로 조회합니다."""
        pass

    @abstractmethod
    def list_by_user_id(self, user_id: str) -> List[models.AuditLogEntry]:
        """특정 사용자의 감사 로그를 시간순으로 조회합니다."""
        pass
