import logging
from typing import Optional

from src.database import models
from src.repositories.interfaces import IHostRepository
from src.services.exceptions import HostAlreadyExistsError, HostNotFoundError, NoCapacityError
from src.services.schemas import ResourceRequest

logger = logging.getLogger(__name__)


class HostAllocator:
    """
    호스트 용량을 first-fit 방식으로 할당하고 반환합니다.
    후보 순서는 가장 먼저 등록된 호스트부터 (created_at, id 오름차순) 입니다.
    """

    def __init__(self, host_repo: IHostRepository):
        self.host_repo = host_repo

    def find_and_reserve_host(self, resources: ResourceRequest) -> models.Host:
        """
        요청을 수용할 수 있는 첫 번째 'ready' 호스트를 찾아 자원을 예약합니다.

        후보 목록은 읽은 시점의 스냅샷일 뿐이고, 실제 예약은 호스트마다 하나의 조건부 UPDATE로
        이루어집니다. 다른 요청이 먼저 용량을 가져가 UPDATE가 실패하면 다음 후보로 넘어갑니다.
        commit은 호출자의 트랜잭션에 맡깁니다.

        Returns:
            예약된 사용량이 반영된 호스트.

        Raises:
            NoCapacityError: vCPU, 메모리, VM 슬롯을 동시에 만족하는 호스트가 없을 때.
        """
        for candidate in self.host_repo.list_allocation_candidates():
            if not self._fits(candidate, resources):
                continue
            if self.host_repo.try_reserve(candidate.id, resources.vcpus, resources.memory_mb):
                host = self.host_repo.find_by_id(candidate.id)
                logger.info(
                    f"Reserved {resources.vcpus} vCPU / {resources.memory_mb}MB on host '{host.name}' "
                    f"({host.current_vcpus}/{host.max_vcpus} vCPU, {host.current_memory_mb}/{host.max_memory_mb}MB)"
                )
                return host
            logger.debug(f"Host '{candidate.name}' lost its capacity to a concurrent reservation")

        raise NoCapacityError("No available hosts. All capacity is currently in use.")

    def release_host(self, host_id: int, resources: ResourceRequest) -> bool:
        """
        호스트 사용량을 요청 자원만큼 줄이고 VM 슬롯 하나를 돌려줍니다. 카운터는 0에서 멈춥니다.
        같은 환경에 대해 한 번만 호출되도록 보장하는 것은 호출자(상태 머신)의 책임입니다.

        Returns:
            호스트가 존재하여 반환이 반영되었으면 True.
        """
        released = self.host_repo.release(host_id, resources.vcpus, resources.memory_mb)
        if released:
            logger.info(f"Released {resources.vcpus} vCPU / {resources.memory_mb}MB on host {host_id}")
        else:
            logger.warning(f"Host {host_id} not found while releasing capacity")
        return released

    def register_host(
        self,
        name: str,
        region: str,
        ip_address: str,
        max_vms: int = 50,
        max_vcpus: int = 16,
        max_memory_mb: int = 60000,
        agent_ws_url: Optional[str] = None,
    ) -> models.Host:
        """
        새 하이퍼바이저 호스트를 'provisioning' 상태로 등록합니다.

        Raises:
            HostAlreadyExistsError: 같은 이름의 호스트가 이미 있을 때.
            ValueError: 용량 값이 양수가 아닐 때.
        """
        if min(max_vms, max_vcpus, max_memory_mb) < 1:
            raise ValueError("Host capacity values must be positive integers.")
        if self.host_repo.find_by_name(name):
            raise HostAlreadyExistsError(f"Host '{name}' already exists.")

        host = models.Host(
            name=name,
            region=region,
            ip_address=ip_address,
            max_vms=max_vms,
            max_vcpus=max_vcpus,
            max_memory_mb=max_memory_mb,
            current_vms=0,
            current_vcpus=0,
            current_memory_mb=0,
            status=models.HostStatus.PROVISIONING.value,
            agent_ws_url=agent_ws_url,
        )
        try:
            self.host_repo.create(host)
            self.host_repo.commit()
        except Exception:
            self.host_repo.rollback()
            raise
        logger.info(f"Registered host '{name}' in {region}")
        return host

    def set_host_status(self, host_id: int, status: str) -> models.Host:
        """
        호스트의 운영 상태를 바꿉니다. 'ready' 상태의 호스트만 할당 후보가 됩니다.

        Raises:
            ValueError: 알 수 없는 상태일 때.
            HostNotFoundError: 호스트가 없을 때.
        """
        status = models.HostStatus(status).value
        try:
            if not self.host_repo.set_status(host_id, status):
                raise HostNotFoundError(f"Host with id '{host_id}' not found.")
            self.host_repo.commit()
        except Exception:
            self.host_repo.rollback()
            raise
        logger.info(f"Host {host_id} status -> {status}")
        return self.host_repo.find_by_id(host_id)

    def get_host(self, host_id: int) -> models.Host:
        host = self.host_repo.find_by_id(host_id)
        if not host:
            raise HostNotFoundError(f"Host with id '{host_id}' not found.")
        return host

    @staticmethod
    def _fits(host: models.Host, resources: ResourceRequest) -> bool:
        return (
            host.max_vcpus - host.current_vcpus >= resources.vcpus
            and host.max_memory_mb - host.current_memory_mb >= resources.memory_mb
            and host.max_vms - host.current_vms > 0
        )

    @staticmethod
    def to_dict(host: models.Host) -> dict:
        return {
            "id": host.id,
            "name": host.name,
            "region": host.region,
            "ip_address": host.ip_address,
            "status": host.status,
            "max_vms": host.max_vms,
            "max_vcpus": host.max_vcpus,
            "max_memory_mb": host.max_memory_mb,
            "current_vms": host.current_vms,
            "current_vcpus": host.current_vcpus,
            "current_memory_mb": host.current_memory_mb,
        }
