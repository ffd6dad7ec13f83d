from abc import abstractmethod
from typing import List, Optional
from src.database import models
from .base import IRepository


class IInboundEmailCommandRepository(IRepository):
    @abstractmethod
    def create(self, email_model: models.InboundEmailCommand) -> models.InboundEmailCommand:
        pass

    @abstractmethod
    def find_by_id(self, email_id: str) -> Optional[models.InboundEmailCommand]:
        pass

    @abstractmethod
    def list_by_user_id(self, user_id: str) -> List[models.InboundEmailCommand]:
        """사용자가 보낸 명령 이메일을 최신순으로 조회합니다."""
        pass
