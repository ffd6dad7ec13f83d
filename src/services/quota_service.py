import logging

from src.config import Config
from src.database import models
from src.repositories.interfaces import IEnvironmentRepository, IQuotaRepository
from src.services.exceptions import QuotaExceededError
from src.services.schemas import ResourceRequest
from src.services.states import ACTIVE_STATES

logger = logging.getLogger(__name__)


class QuotaService:
    """사용자별 동시 환경 수와 환경당 자원 한도를 검사합니다."""

    def __init__(self, quota_repo: IQuotaRepository, environment_repo: IEnvironmentRepository):
        self.quota_repo = quota_repo
        self.environment_repo = environment_repo

    def check_quota(self, user_id: str, resources: ResourceRequest) -> models.UserQuota:
        """
        요청한 자원이 사용자의 쿼터 안에 있는지 검사합니다.

        쿼터 레코드가 없으면 시스템 기본값으로 새로 만든 뒤 그 값으로 검사하므로,
        쿼터가 없다는 이유만으로 실패하지는 않습니다. 기존 쿼터 레코드는 절대 수정하지 않습니다.
        쿼터 행은 잠금(FOR UPDATE)을 걸고 읽으므로, 호출자가 같은 트랜잭션 안에서 환경을 추가하고
        commit 할 때까지 같은 사용자의 다른 생성 요청은 대기합니다.

        Args:
            user_id: 요청한 사용자의 ID.
            resources: 기본값이 채워진 자원 요청.

        Returns:
            검사에 사용된 쿼터 레코드.

        Raises:
            QuotaExceededError: 동시 환경 수(concurrency) 또는 vcpus/memory/disk 한도를 넘었을 때.
        """
        quota = self.quota_repo.find_by_user_id(user_id, for_update=True)
        if not quota:
            quota = self.quota_repo.create_if_absent(self._default_quota(user_id))
            logger.info(f"Created default quota for user '{user_id}'")

        active_count = self.environment_repo.count_by_user_id_and_states(
            user_id, sorted(state.value for state in ACTIVE_STATES)
        )
        if active_count >= quota.max_concurrent_environments:
            raise QuotaExceededError(
                "concurrency",
                f"Quota exceeded: You can have max {quota.max_concurrent_environments} concurrent environments"
            )

        limits = (
            ("vcpus", resources.vcpus, quota.max_vcpus, "Max vCPUs is {}"),
            ("memory", resources.memory_mb, quota.max_memory_mb, "Max memory is {}MB"),
            ("disk", resources.disk_gb, quota.max_disk_gb, "Max disk is {}GB"),
        )
        for dimension, requested, ceiling, template in limits:
            if requested > ceiling:
                raise QuotaExceededError(dimension, "Quota exceeded: " + template.format(ceiling))

        return quota

    def _default_quota(self, user_id: str) -> models.UserQuota:
        return models.UserQuota(
            user_id=user_id,
            max_environments=Config.QUOTA_MAX_ENVIRONMENTS,
            max_concurrent_environments=Config.QUOTA_MAX_CONCURRENT_ENVIRONMENTS,
            max_environment_duration_hours=Config.QUOTA_MAX_DURATION_HOURS,
            max_vcpus=Config.QUOTA_MAX_VCPUS,
            max_memory_mb=Config.QUOTA_MAX_MEMORY_MB,
            max_disk_gb=Config.QUOTA_MAX_DISK_GB,
            current_environments=0,
        )
