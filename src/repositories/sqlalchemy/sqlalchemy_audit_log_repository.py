from typing import List
from src.database import models
from src.repositories.interfaces import IAuditLogRepository
from .base import SqlalchemyRepository


class SqlalchemyAuditLogRepository(SqlalchemyRepository, IAuditLogRepository):
    def create(self, entry_model: models.AuditLogEntry) -> models.AuditLogEntry:
        self.db.add(entry_model)
        self.db.flush()
        return entry_model

    def list_by_environment_id(self, environment_id: str) -> List[models.AuditLogEntry]:
        return self.db.query(models.AuditLogEntry).filter(
            models.AuditLogEntry.environment_id == environment_id
        ).order_by(models.AuditLogEntry.created_at.asc(), models.AuditLogEntry.id.asc()).all()

    def list_by_user_id(self, user_id: str) -> List[models.AuditLogEntry]:
        return self.db.query(models.AuditLogEntry).filter(
            models.AuditLogEntry.user_id == user_id
        ).order_by(models.AuditLogEntry.created_at.asc(), models.AuditLogEntry.id.asc()).all()
