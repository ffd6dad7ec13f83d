from typing import List, Optional
from sqlalchemy import case, update
from src.database import models
from src.repositories.interfaces import IHostRepository
from src.utils.time_utils import utcnow
from .base import SqlalchemyRepository


def _clamped_decrement(column, amount: int):
    # current - amount, 단 0 아래로는 내려가지 않음
    return case((column > amount, column - amount), else_=0)


class SqlalchemyHostRepository(SqlalchemyRepository, IHostRepository):
    def create(self, host_model: models.Host) -> models.Host:
        self.db.add(host_model)
        self.db.flush()
        return host_model

    def find_by_id(self, host_id: int) -> Optional[models.Host]:
        return self.db.get(models.Host, host_id, populate_existing=True)

    def find_by_name(self, name: str) -> Optional[models.Host]:
        return self.db.query(models.Host).filter(models.Host.name == name).first()

    def list_allocation_candidates(self) -> List[models.Host]:
        return self.db.query(models.Host).filter(
            models.Host.status == models.HostStatus.READY.value
        ).order_by(models.Host.created_at.asc(), models.Host.id.asc()).all()

    def try_reserve(self, host_id: int, vcpus: int, memory_mb: int) -> bool:
        host = models.Host
        result = self.db.execute(
            update(host)
            .where(
                host.id == host_id,
                host.status == models.HostStatus.READY.value,
                host.max_vcpus - host.current_vcpus >= vcpus,
                host.max_memory_mb - host.current_memory_mb >= memory_mb,
                host.current_vms < host.max_vms,
            )
            .values(
                current_vms=host.current_vms + 1,
                current_vcpus=host.current_vcpus + vcpus,
                current_memory_mb=host.current_memory_mb + memory_mb,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release(self, host_id: int, vcpus: int, memory_mb: int) -> bool:
        host = models.Host
        result = self.db.execute(
            update(host)
            .where(host.id == host_id)
            .values(
                current_vms=_clamped_decrement(host.current_vms, 1),
                current_vcpus=_clamped_decrement(host.current_vcpus, vcpus),
                current_memory_mb=_clamped_decrement(host.current_memory_mb, memory_mb),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_status(self, host_id: int, status: str) -> bool:
        result = self.db.execute(
            update(models.Host)
            .where(models.Host.id == host_id)
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
