from datetime import datetime
from typing import Iterable, List, Optional
from sqlalchemy import update
from src.database import models
from src.repositories.interfaces import IEnvironmentRepository
from .base import SqlalchemyRepository


class SqlalchemyEnvironmentRepository(SqlalchemyRepository, IEnvironmentRepository):
    def create(self, environment_model: models.Environment) -> models.Environment:
        self.db.add(environment_model)
        self.db.flush()
        return environment_model

    def find_by_id(self, environment_id: str) -> Optional[models.Environment]:
        return self.db.query(models.Environment).filter(models.Environment.id == environment_id).first()

    def find_by_id_for_update(self, environment_id: str) -> Optional[models.Environment]:
        return self.db.query(models.Environment).filter(
            models.Environment.id == environment_id
        ).with_for_update().populate_existing().first()

    def find_by_id_and_user_id(self, environment_id: str, user_id: str) -> Optional[models.Environment]:
        return self.db.query(models.Environment).filter(
            models.Environment.id == environment_id,
            models.Environment.user_id == user_id
        ).first()

    def find_by_slug_and_user_id(self, slug: str, user_id: str) -> Optional[models.Environment]:
        return self.db.query(models.Environment).filter(
            models.Environment.slug == slug,
            models.Environment.user_id == user_id
        ).first()

    def list_by_user_id(self, user_id: str) -> List[models.Environment]:
        return self.db.query(models.Environment).filter(
            models.Environment.user_id == user_id
        ).order_by(models.Environment.created_at.desc()).all()

    def count_by_user_id_and_states(self, user_id: str, states: Iterable[str]) -> int:
        return self.db.query(models.Environment).filter(
            models.Environment.user_id == user_id,
            models.Environment.state.in_(list(states))
        ).count()

    def list_expired(self, now: datetime, excluded_states: Iterable[str]) -> List[models.Environment]:
        return self.db.query(models.Environment).filter(
            models.Environment.expires_at <= now,
            models.Environment.state.notin_(list(excluded_states))
        ).order_by(models.Environment.expires_at.asc()).all()

    def mark_capacity_released(self, environment_id: str) -> bool:
        env = models.Environment
        result = self.db.execute(
            update(env)
            .where(
                env.id == environment_id,
                env.capacity_reserved.is_(True),
                env.capacity_released.is_(False),
            )
            .values(capacity_released=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
