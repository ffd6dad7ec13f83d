from typing import Optional
from sqlalchemy.exc import IntegrityError
from src.database import models
from src.repositories.interfaces import IQuotaRepository
from .base import SqlalchemyRepository


class SqlalchemyQuotaRepository(SqlalchemyRepository, IQuotaRepository):
    def create_if_absent(self, quota_model: models.UserQuota) -> models.UserQuota:
        try:
            # SAVEPOINT 안에서 추가하여, 다른 요청이 먼저 만든 경우 바깥 트랜잭션은 유지합니다.
            with self.db.begin_nested():
                self.db.add(quota_model)
            return quota_model
        except IntegrityError:
            return self.find_by_user_id(quota_model.user_id, for_update=True)

    def find_by_user_id(self, user_id: str, for_update: bool = False) -> Optional[models.UserQuota]:
        query = self.db.query(models.UserQuota).filter(models.UserQuota.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()
