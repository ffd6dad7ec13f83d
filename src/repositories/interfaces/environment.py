from abc import abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional
from src.database import models
from .base import IRepository


class IEnvironmentRepository(IRepository):
    @abstractmethod
    def create(self, environment_model: models.Environment) -> models.Environment:
        """새로운 환경 레코드를 추가합니다."""
        pass

    @abstractmethod
    def find_by_id(self, environment_id: str) -> Optional[models.Environment]:
        """고유 ID로 환경을 조회합니다."""
        pass

    @abstractmethod
    def find_by_id_for_update(self, environment_id: str) -> Optional[models.Environment]:
        """환경 행에 쓰기 잠금(SELECT ... FOR UPDATE)을 걸고 조회합니다."""
        pass

    @abstractmethod
    def find_by_id_and_user_id(self, environment_id: str, user_id: str) -> Optional[models.Environment]:
        """사용자 소유의 환경을 ID로 조회합니다."""
        pass

    @abstractmethod
    def find_by_slug_and_user_id(self, slug: str, user_id: str) -> Optional[models.Environment]:
        """사용자 소유의 환경을 slug로 조회합니다."""
        pass

    @abstractmethod
    def list_by_user_id(self, user_id: str) -> List[models.Environment]:
        """사용자의 모든 환경을 최신 생성 순으로 조회합니다."""
        pass

    @abstractmethod
    def count_by_user_id_and_states(self, user_id: str, states: Iterable[str]) -> int:
        """주어진 상태들 중 하나에 있는 사용자의 환경 개수를 셉니다."""
        pass

    @abstractmethod
    def list_expired(self, now: datetime, excluded_states: Iterable[str]) -> List[models.Environment]:
        """expires_at이 now 이전이고, 제외 상태가 아닌 환경 목록을 조회합니다."""
        pass

    @abstractmethod
    def mark_capacity_released(self, environment_id: str) -> bool:
        """
        capacity_reserved가 참이고 capacity_released가 거짓인 경우에만
        capacity_released를 참으로 바꿉니다 (조건부 UPDATE).

        Returns:
            이번 호출이 플래그를 바꿨으면 True. 이미 해제되었거나 예약된 적이 없으면 False.
        """
        pass
