from typing import List, Optional
from src.database import models
from src.repositories.interfaces import IInboundEmailCommandRepository
from .base import SqlalchemyRepository


class SqlalchemyInboundEmailCommandRepository(SqlalchemyRepository, IInboundEmailCommandRepository):
    def create(self, email_model: models.InboundEmailCommand) -> models.InboundEmailCommand:
        self.db.add(email_model)
        self.db.flush()
        return email_model

    def find_by_id(self, email_id: str) -> Optional[models.InboundEmailCommand]:
        return self.db.query(models.InboundEmailCommand).filter(models.InboundEmailCommand.id == email_id).first()

    def list_by_user_id(self, user_id: str) -> List[models.InboundEmailCommand]:
        return self.db.query(models.InboundEmailCommand).filter(
            models.InboundEmailCommand.user_id == user_id
        ).order_by(models.InboundEmailCommand.created_at.desc()).all()
