from abc import ABC, abstractmethod


class IRepository(ABC):
    """
    모든 리포지토리의 공통 인터페이스입니다.
    쓰기 메서드는 flush까지만 수행하고, 트랜잭션 확정(commit)과 취소(rollback)는
    여러 리포지토리를 묶어 쓰는 서비스 계층이 결정합니다.
    """

    @abstractmethod
    def commit(self) -> None:
        """현재 트랜잭션을 확정합니다."""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """현재 트랜잭션을 취소합니다."""
        pass
