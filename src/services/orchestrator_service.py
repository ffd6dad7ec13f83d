import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from src.config import Config
from src.database import models
from src.gateways.job_queue import IJobQueueGateway, JobKind
from src.repositories.interfaces import IEnvironmentRepository
from src.services.audit_service import AuditService
from src.services.exceptions import (
    EnvironmentNotFoundError,
    ExternalServiceError,
    InvalidTransitionError,
    NoCapacityError,
    NotFoundError,
    QuotaExceededError,
)
from src.services.host_allocator import HostAllocator
from src.services.quota_service import QuotaService
from src.services.schemas import EnvironmentDetails, ResourceRequest
from src.services.states import EnvironmentState, can_transition, parse_state
from src.utils.id_generator import generate_access_token, generate_slug
from src.utils.keyed_lock import KeyedLock
from src.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

S = EnvironmentState

# 워커가 상태 전이와 함께 보고하는 네트워크 정보
REPORTED_DETAIL_FIELDS = {
    "ip_address": str,
    "ssh_port": int,
    "vscode_port": int,
    "ws_endpoint": str,
}


class EnvironmentOrchestrator:
    """
    개발 환경의 생성부터 삭제까지의 수명 주기를 관리합니다.

    쿼터 검사, 호스트 자원 예약, 상태 전이와 감사 로그 기록을 하나의 흐름으로 묶고,
    실제 VM 생성/시작/중지/삭제는 작업 큐에 요청만 남깁니다.
    같은 환경에 대한 상태 전이와 같은 사용자의 환경 생성은 각각 직렬화됩니다.
    """
    # 요청마다 서비스 객체가 새로 만들어지므로, 락은 클래스 단위로 공유합니다.
    _user_locks = KeyedLock()
    _environment_locks = KeyedLock()

    # 상태별 부수 효과 핸들러. 모든 상태가 빠짐없이 등록되어 있어야 합니다 (모듈 하단에서 검사).
    STATE_HOOKS = {
        S.REQUESTED: "_on_requested",
        S.PROVISIONING: "_on_provisioning",
        S.STARTING: "_on_starting",
        S.RUNNING: "_on_running",
        S.STOPPING: "_on_stopping",
        S.STOPPED: "_on_stopped",
        S.DESTROYING: "_on_destroying",
        S.DESTROYED: "_on_destroyed",
        S.ERROR: "_on_error",
    }

    def __init__(
        self,
        environment_repo: IEnvironmentRepository,
        quota_service: QuotaService,
        host_allocator: HostAllocator,
        audit_service: AuditService,
        job_queue: IJobQueueGateway,
    ):
        self.environment_repo = environment_repo
        self.quota_service = quota_service
        self.host_allocator = host_allocator
        self.audit_service = audit_service
        self.job_queue = job_queue

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create_environment(
        self,
        user_id: str,
        resources: Optional[Dict[str, Any]] = None,
        duration_hours: Optional[int] = None,
        repository_url: Optional[str] = None,
        init_script: Optional[str] = None,
        environment_vars: Optional[Dict[str, str]] = None,
        name: Optional[str] = None,
    ) -> EnvironmentDetails:
        """
        새 개발 환경을 만들고 프로비저닝 작업을 큐에 넣습니다.

        쿼터 검사, 호스트 예약, 환경 레코드('requested') 생성, 'create' 감사 로그는
        하나의 트랜잭션으로 처리되고, 그 다음 'provisioning'으로 전이하면서 provision 작업이 큐에 들어갑니다.
        하이퍼바이저 작업이 끝나기를 기다리지 않고 바로 반환합니다.

        Args:
            user_id: 환경을 소유할 사용자 ID.
            resources: {'vcpus', 'memory_mb', 'disk_gb'} 중 일부. 빠진 값은 기본값을 사용합니다.
            duration_hours: 환경 수명 (시간). 없으면 기본값을 사용합니다.
            repository_url: 첫 부팅 시 클론할 저장소 URL.
            init_script: 첫 부팅 시 실행할 스크립트.
            environment_vars: VM에 주입할 환경 변수.
            name: 사용자가 붙인 이름.

        Returns:
            생성된 환경의 상세 정보.

        Raises:
            ValueError: 자원 값이나 수명이 양수가 아닐 때.
            QuotaExceededError: 사용자 쿼터를 넘었을 때.
            NoCapacityError: 수용 가능한 호스트가 없을 때.
            ExternalServiceError: 환경은 만들어졌지만 provision 작업을 큐에 넣지 못했을 때.
        """
        request = ResourceRequest.from_values(resources)
        duration = Config.DEFAULT_DURATION_HOURS if duration_hours is None else int(duration_hours)
        if duration <= 0:
            raise ValueError("duration_hours must be a positive integer.")

        request_summary = {
            "resources": request.to_dict(),
            "duration_hours": duration,
            "repository_url": repository_url,
            "name": name,
        }

        self._release_read_transaction()
        with self._user_locks.hold(user_id):
            try:
                self.quota_service.check_quota(user_id, request)
                host = self.host_allocator.find_and_reserve_host(request)

                now = utcnow()
                slug = generate_slug()
                environment = models.Environment(
                    user_id=user_id,
                    name=name,
                    slug=slug,
                    host_id=host.id,
                    vm_id=f"vm_{slug}",
                    base_image=Config.DEFAULT_BASE_IMAGE,
                    access_token=generate_access_token(),
                    vcpus=request.vcpus,
                    memory_mb=request.memory_mb,
                    disk_gb=request.disk_gb,
                    capacity_reserved=True,
                    capacity_released=False,
                    state=S.REQUESTED.value,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + timedelta(hours=duration),
                    repository_url=repository_url,
                    init_script=init_script,
                    environment_vars=environment_vars,
                )
                self.environment_repo.create(environment)
                self.audit_service.append(
                    user_id, environment.id, "create", models.AuditStatus.SUCCESS.value,
                    metadata={"request": request_summary, "host_id": host.id},
                )
                self.environment_repo.commit()
            except (QuotaExceededError, NoCapacityError) as e:
                self.environment_repo.rollback()
                logger.warning(f"Rejected environment request from '{user_id}': {e}")
                self._record_rejected_create(user_id, request_summary, e)
                raise
            except Exception:
                self.environment_repo.rollback()
                raise

            environment_id = environment.id
            logger.info(f"Created environment {slug} for '{user_id}' on host {host.id}")

        self.transition_state(environment_id, S.PROVISIONING)
        return self.get_environment(environment_id)

    def transition_state(
        self,
        environment_id: str,
        new_state,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        환경을 새 상태로 전이시키고, 감사 로그를 남긴 뒤 상태별 부수 효과를 실행합니다.

        허용되지 않은 전이는 'failed' 감사 로그만 남기고 환경 레코드는 건드리지 않은 채
        InvalidTransitionError를 발생시킵니다. 작업 큐 요청은 상태 변경이 commit 된 뒤에 보내며,
        큐 요청이 실패하면 그 사실을 감사 로그에 남기고 ExternalServiceError를 발생시킵니다.

        Args:
            environment_id: 전이시킬 환경의 ID.
            new_state: 목표 상태 (EnvironmentState 또는 문자열).
            metadata: 감사 로그에 함께 남길 정보. 'message'는 state_message로,
                'ip_address', 'ssh_port', 'vscode_port', 'ws_endpoint'는 환경 레코드에 저장됩니다.

        Raises:
            ValueError: 알 수 없는 상태일 때.
            EnvironmentNotFoundError: 환경이 없을 때.
            InvalidTransitionError: 현재 상태에서 갈 수 없는 상태일 때.
            ExternalServiceError: 작업 큐 요청이 실패했을 때.
        """
        target = parse_state(new_state)
        metadata = dict(metadata or {})
        action = f"state_transition_{target.value}"

        self._release_read_transaction()
        with self._environment_locks.hold(environment_id):
            try:
                environment = self.environment_repo.find_by_id_for_update(environment_id)
                if not environment:
                    raise EnvironmentNotFoundError(f"Environment {environment_id} not found.")

                user_id = environment.user_id
                previous = parse_state(environment.state)
                if not can_transition(previous, target):
                    self._reject_transition(user_id, environment_id, action, previous, target, metadata)

                now = utcnow()
                environment.state = target.value
                environment.state_message = metadata.get("message")
                environment.updated_at = now
                self._apply_reported_details(environment, metadata)

                effects: Dict[str, Any] = {}
                hook = getattr(self, self.STATE_HOOKS[target])
                job_kind = hook(environment, now, effects)
                payload = self._job_payload(environment, job_kind) if job_kind else None

                self.audit_service.append(
                    user_id, environment_id, action, models.AuditStatus.SUCCESS.value,
                    metadata={**metadata, **effects, "previous_state": previous.value, "new_state": target.value},
                )
                self.environment_repo.commit()
            except Exception:
                self.environment_repo.rollback()
                raise

            logger.info(f"Environment {environment_id}: {previous.value} -> {target.value}")
            if job_kind:
                self._enqueue(user_id, environment_id, job_kind, payload)

    def get_environment(self, environment_id: str) -> Optional[EnvironmentDetails]:
        environment = self.environment_repo.find_by_id(environment_id)
        if not environment:
            return None
        return EnvironmentDetails.from_model(environment)

    def get_environment_by_slug(self, user_id: str, slug: str) -> EnvironmentDetails:
        """
        사용자 소유의 환경을 slug로 조회합니다.

        Raises:
            EnvironmentNotFoundError: 환경이 없거나 다른 사용자의 환경일 때.
        """
        environment = self.environment_repo.find_by_slug_and_user_id(slug, user_id)
        if not environment:
            raise EnvironmentNotFoundError(f"Environment {slug} not found.")
        return EnvironmentDetails.from_model(environment)

    def list_environments(self, user_id: str) -> List[EnvironmentDetails]:
        """사용자의 모든 환경을 최신 생성 순으로 반환합니다. 삭제된 환경도 상태와 함께 포함됩니다."""
        return [EnvironmentDetails.from_model(e) for e in self.environment_repo.list_by_user_id(user_id)]

    def destroy_environment(self, environment_id: str, user_id: str) -> None:
        """
        사용자의 환경을 삭제합니다 (destroying -> destroyed).
        진행 중인 어떤 상태에서든 요청할 수 있으며, 호스트 자원은 환경당 정확히 한 번 반환됩니다.

        Raises:
            EnvironmentNotFoundError: 환경이 없거나 다른 사용자의 환경일 때.
            InvalidTransitionError: 이미 삭제된 환경일 때.
        """
        self._find_owned(environment_id, user_id)
        self.transition_state(environment_id, S.DESTROYING, {"requested_by": user_id})
        self.transition_state(environment_id, S.DESTROYED)

    def start_environment(self, environment_id: str, user_id: str) -> None:
        """중지된 환경을 다시 시작합니다 (stopped -> starting)."""
        self._find_owned(environment_id, user_id)
        self.transition_state(environment_id, S.STARTING, {"requested_by": user_id})

    def stop_environment(self, environment_id: str, user_id: str) -> None:
        """실행 중인 환경을 중지합니다 (-> stopping)."""
        self._find_owned(environment_id, user_id)
        self.transition_state(environment_id, S.STOPPING, {"requested_by": user_id})

    def reap_expired_environments(self, now: Optional[datetime] = None) -> List[str]:
        """
        expires_at이 지난 모든 환경을 삭제합니다. 외부 스케줄러가 주기적으로 호출합니다.
        한 환경의 삭제가 실패해도 나머지 환경은 계속 처리합니다.

        Returns:
            삭제에 성공한 환경 ID 목록.
        """
        now = now or utcnow()
        expired = [
            (e.id, e.user_id, e.slug)
            for e in self.environment_repo.list_expired(now, [S.DESTROYED.value])
        ]

        reaped = []
        for environment_id, user_id, slug in expired:
            try:
                self.destroy_environment(environment_id, user_id)
                reaped.append(environment_id)
            except (ExternalServiceError, InvalidTransitionError, NotFoundError) as e:
                logger.warning(f"Failed to reap expired environment {slug}: {e}")
            except Exception:
                logger.exception(f"Unexpected error while reaping expired environment {slug}")
                self.environment_repo.rollback()

        if expired:
            logger.info(f"Reaped {len(reaped)}/{len(expired)} expired environments")
        return reaped

    # ------------------------------------------------------------------
    # State hooks
    # ------------------------------------------------------------------

    def _on_requested(self, environment, now, effects):
        return None

    def _on_provisioning(self, environment, now, effects):
        return JobKind.PROVISION

    def _on_starting(self, environment, now, effects):
        return JobKind.START

    def _on_running(self, environment, now, effects):
        environment.started_at = now
        environment.last_activity_at = now
        return None

    def _on_stopping(self, environment, now, effects):
        return JobKind.STOP

    def _on_stopped(self, environment, now, effects):
        environment.stopped_at = now
        return None

    def _on_destroying(self, environment, now, effects):
        effects["capacity_released"] = self._release_capacity(environment)
        return JobKind.DESTROY

    def _on_destroyed(self, environment, now, effects):
        # destroying을 거쳤다면 이미 반환되었으므로 여기서는 아무 일도 일어나지 않습니다.
        effects["capacity_released"] = self._release_capacity(environment)
        environment.destroyed_at = now
        if environment.stopped_at is None:
            environment.stopped_at = now
        return None

    def _on_error(self, environment, now, effects):
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release_read_transaction(self) -> None:
        # 키 잠금을 기다리는 동안 DB 쓰기 잠금(SQLite BEGIN IMMEDIATE)을 쥐고 있으면
        # 잠금을 가진 쪽과 서로를 기다리게 되므로, 조회만 하던 트랜잭션은 먼저 닫습니다.
        self.environment_repo.rollback()

    def _release_capacity(self, environment: models.Environment) -> bool:
        if environment.host_id is None:
            return False
        if not self.environment_repo.mark_capacity_released(environment.id):
            logger.debug(f"Capacity for {environment.id} already released or never reserved")
            return False
        self.host_allocator.release_host(
            environment.host_id,
            ResourceRequest(vcpus=environment.vcpus, memory_mb=environment.memory_mb, disk_gb=environment.disk_gb),
        )
        return True

    def _reject_transition(self, user_id, environment_id, action, previous, target, metadata):
        error = InvalidTransitionError(previous.value, target.value)
        # 잠금을 풀고 환경 레코드에는 손대지 않은 채 실패 기록만 남깁니다.
        self.environment_repo.rollback()
        self.audit_service.append(
            user_id, environment_id, action, models.AuditStatus.FAILED.value,
            metadata={**metadata, "previous_state": previous.value, "new_state": target.value},
            error_message=str(error),
        )
        self.environment_repo.commit()
        logger.warning(f"Environment {environment_id}: {error}")
        raise error

    def _enqueue(self, user_id: str, environment_id: str, kind: JobKind, payload: Dict[str, Any]) -> None:
        try:
            self.job_queue.enqueue(kind, environment_id, payload)
        except ExternalServiceError as e:
            logger.exception(f"Failed to enqueue {kind.value} job for environment {environment_id}")
            try:
                self.audit_service.append(
                    user_id, environment_id, f"enqueue_{kind.value}", models.AuditStatus.FAILED.value,
                    metadata={"payload": payload}, error_message=str(e),
                )
                self.environment_repo.commit()
            except Exception:
                self.environment_repo.rollback()
                raise
            raise

    def _record_rejected_create(self, user_id: str, request_summary: Dict[str, Any], error: Exception) -> None:
        try:
            self.audit_service.append(
                user_id, None, "create", models.AuditStatus.FAILED.value,
                metadata={"request": request_summary, "dimension": getattr(error, "dimension", None)},
                error_message=str(error),
            )
            self.environment_repo.commit()
        except Exception:
            self.environment_repo.rollback()
            raise

    def _find_owned(self, environment_id: str, user_id: str) -> models.Environment:
        environment = self.environment_repo.find_by_id_and_user_id(environment_id, user_id)
        if not environment:
            raise EnvironmentNotFoundError("Environment not found.")
        return environment

    @staticmethod
    def _apply_reported_details(environment: models.Environment, metadata: Dict[str, Any]) -> None:
        for field, cast in REPORTED_DETAIL_FIELDS.items():
            value = metadata.get(field)
            if value is not None:
                setattr(environment, field, cast(value))

    @staticmethod
    def _job_payload(environment: models.Environment, kind: JobKind) -> Dict[str, Any]:
        payload = {
            "user_id": environment.user_id,
            "host_id": environment.host_id,
            "vm_id": environment.vm_id,
        }
        if kind == JobKind.PROVISION:
            payload.update({
                "vcpus": environment.vcpus,
                "memory_mb": environment.memory_mb,
                "disk_gb": environment.disk_gb,
                "base_image": environment.base_image,
                "init_script": environment.init_script,
                "environment_vars": environment.environment_vars,
                "repository_url": environment.repository_url,
            })
        return payload


_missing_hooks = set(EnvironmentState) - set(EnvironmentOrchestrator.STATE_HOOKS)
if _missing_hooks:
    raise RuntimeError(f"EnvironmentOrchestrator.STATE_HOOKS is missing handlers for: {sorted(_missing_hooks)}")
