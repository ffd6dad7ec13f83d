import enum
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis

from src.config import Config
from src.services.exceptions import ExternalServiceError
from src.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class JobKind(str, enum.Enum):
    PROVISION = "provision"
    START = "start"
    STOP = "stop"
    DESTROY = "destroy"


class IJobQueueGateway(ABC):
    """
    하이퍼바이저 제어 작업을 비동기로 넘기는 작업 큐의 인터페이스입니다.
    전달/재시도 정책은 큐와 워커의 책임이며, 오케스트레이터는 작업을 넣고 바로 반환합니다.
    """

    @abstractmethod
    def enqueue(self, kind: JobKind, environment_id: str, payload: Dict[str, Any]) -> str:
        """
        작업을 큐에 넣습니다.

        Returns:
            큐에 들어간 작업의 ID.

        Raises:
            ExternalServiceError: 큐에 접근할 수 없을 때.
        """
        pass


class RedisJobQueueGateway(IJobQueueGateway):
    """
    Redis 리스트를 작업 큐로 사용합니다.
    provision 작업은 '<prefix>:vm-provision', 나머지 제어 작업은 '<prefix>:vm-control' 리스트에 쌓입니다.
    """
    PROVISION_QUEUE = "vm-provision"
    CONTROL_QUEUE = "vm-control"

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: Optional[str] = None):
        self._client = redis_client or redis.Redis.from_url(
            Config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2
        )
        self.prefix = prefix or Config.JOB_QUEUE_PREFIX

    def queue_key(self, kind: JobKind) -> str:
        queue = self.PROVISION_QUEUE if kind == JobKind.PROVISION else self.CONTROL_QUEUE
        return f"{self.prefix}:{queue}"

    def enqueue(self, kind: JobKind, environment_id: str, payload: Dict[str, Any]) -> str:
        kind = JobKind(kind)
        job_id = f"{kind.value}-{environment_id}"
        job = {
            "id": job_id,
            "kind": kind.value,
            "environment_id": environment_id,
            "payload": payload,
            "enqueued_at": utcnow().isoformat(),
        }
        try:
            self._client.lpush(self.queue_key(kind), json.dumps(job))
        except redis.RedisError as e:
            raise ExternalServiceError("job-queue", f"Failed to enqueue {kind.value} job for '{environment_id}': {e}") from e

        logger.info(f"Queued {kind.value} job {job_id}")
        return job_id
