from abc import abstractmethod
from typing import Optional
from src.database import models
from .base import IRepository


class IQuotaRepository(IRepository):
    @abstractmethod
    def create_if_absent(self, quota_model: models.UserQuota) -> models.UserQuota:
        """
        사용자 쿼터를 추가합니다. 동시에 다른 요청이 같은 사용자의 쿼터를 먼저 만들었다면
        새로 추가하지 않고 이미 존재하는 쿼터를 반환합니다.
        """
        pass

    @abstractmethod
    def find_by_user_id(self, user_id: str, for_update: bool = False) -> Optional[models.UserQuota]:
        """
        사용자 ID로 쿼터를 조회합니다.
        for_update가 참이면 같은 사용자의 동시 생성 요청이 직렬화되도록 행 잠금을 겁니다.
        """
        pass
