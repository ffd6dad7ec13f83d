from abc import abstractmethod
from typing import List, Optional
from src.database import models
from .base import IRepository


class IHostRepository(IRepository):
    @abstractmethod
    def create(self, host_model: models.Host) -> models.Host:
        """새로운 호스트를 등록합니다."""
        pass

    @abstractmethod
    def find_by_id(self, host_id: int) -> Optional[models.Host]:
        """고유 ID로 호스트를 조회합니다. 항상 DB의 최신 값으로 채워진 객체를 반환합니다."""
        pass

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[models.Host]:
        """이름으로 호스트를 조회합니다."""
        pass

    @abstractmethod
    def list_allocation_candidates(self) -> List[models.Host]:
        """
        할당 후보가 될 수 있는 'ready' 상태의 호스트 목록을 조회합니다.
        정렬 순서는 created_at 오름차순, 같으면 id 오름차순 (oldest-host-first) 입니다.
        """
        pass

    @abstractmethod
    def try_reserve(self, host_id: int, vcpus: int, memory_mb: int) -> bool:
        """
        하나의 조건부 UPDATE로 호스트 자원을 예약합니다 (compare-and-swap).

        호스트가 'ready' 상태이고 vCPU, 메모리 여유분과 VM 슬롯이 모두 충분할 때만
        current_* 카운터를 증가시킵니다.

        Returns:
            예약에 성공하면 True, 조건을 만족하지 못해 갱신된 행이 없으면 False.
        """
        pass

    @abstractmethod
    def release(self, host_id: int, vcpus: int, memory_mb: int) -> bool:
        """
        호스트의 사용량 카운터를 감소시킵니다. 각 카운터는 0 아래로 내려가지 않습니다.

        Returns:
            호스트가 존재하여 갱신되었으면 True.
        """
        pass

    @abstractmethod
    def set_status(self, host_id: int, status: str) -> bool:
        """호스트의 운영 상태를 변경합니다."""
        pass
