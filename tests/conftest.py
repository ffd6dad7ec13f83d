# tests/conftest.py
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.database import models
from src.database.database import Base, build_engine
from src.gateways.job_queue import IJobQueueGateway, JobKind
from src.repositories.sqlalchemy import (
    SqlalchemyAuditLogRepository,
    SqlalchemyEnvironmentRepository,
    SqlalchemyHostRepository,
    SqlalchemyQuotaRepository,
)
from src.services.audit_service import AuditService
from src.services.exceptions import ExternalServiceError
from src.services.host_allocator import HostAllocator
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.quota_service import QuotaService
from src.utils.time_utils import utcnow

# ===================================================================
#  테스트를 위한 가짜 객체 및 Fixture 설정
# ===================================================================

class RecordingJobQueue(IJobQueueGateway):
    """큐에 들어간 작업을 메모리에 기록하는 가짜 작업 큐. fail=True면 큐 장애를 흉내 냅니다."""
    def __init__(self):
        self.jobs = []
        self.fail = False

    def enqueue(self, kind, environment_id, payload):
        if self.fail:
            raise ExternalServiceError("job-queue", "connection refused")
        kind = JobKind(kind)
        self.jobs.append((kind, environment_id, payload))
        return f"{kind.value}-{environment_id}"

    @property
    def kinds(self):
        return [kind for kind, _, _ in self.jobs]


@pytest.fixture
def engine():
    """테스트마다 새로 만드는 in-memory SQLite 엔진."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()

@pytest.fixture
def host_repo(db_session) -> SqlalchemyHostRepository:
    return SqlalchemyHostRepository(db_session)

@pytest.fixture
def environment_repo(db_session) -> SqlalchemyEnvironmentRepository:
    return SqlalchemyEnvironmentRepository(db_session)

@pytest.fixture
def quota_repo(db_session) -> SqlalchemyQuotaRepository:
    return SqlalchemyQuotaRepository(db_session)

@pytest.fixture
def audit_repo(db_session) -> SqlalchemyAuditLogRepository:
    return SqlalchemyAuditLogRepository(db_session)

@pytest.fixture
def audit_service(audit_repo) -> AuditService:
    return AuditService(audit_repo)

@pytest.fixture
def host_allocator(host_repo) -> HostAllocator:
    return HostAllocator(host_repo)

@pytest.fixture
def quota_service(quota_repo, environment_repo) -> QuotaService:
    return QuotaService(quota_repo, environment_repo)

@pytest.fixture
def job_queue() -> RecordingJobQueue:
    return RecordingJobQueue()

@pytest.fixture
def orchestrator(environment_repo, quota_service, host_allocator, audit_service, job_queue) -> EnvironmentOrchestrator:
    """실제 SQLite 저장소와 가짜 작업 큐로 조립한 오케스트레이터."""
    return EnvironmentOrchestrator(environment_repo, quota_service, host_allocator, audit_service, job_queue)

@pytest.fixture
def make_host(db_session):
    """호스트를 바로 DB에 넣는 팩토리. 기본값은 비어 있는 'ready' 호스트입니다."""
    counter = {"n": 0}

    def _make_host(**overrides) -> models.Host:
        counter["n"] += 1
        values = {
            "name": f"host-{counter['n']}",
            "region": "local",
            "ip_address": f"10.0.0.{counter['n']}",
            "max_vms": 50,
            "max_vcpus": 16,
            "max_memory_mb": 60000,
            "current_vms": 0,
            "current_vcpus": 0,
            "current_memory_mb": 0,
            "status": models.HostStatus.READY.value,
            # 등록 순서대로 created_at이 증가하도록 고정
            "created_at": utcnow() - timedelta(days=30) + timedelta(minutes=counter["n"]),
        }
        values.update(overrides)
        host = models.Host(**values)
        db_session.add(host)
        db_session.commit()
        return host

    return _make_host

@pytest.fixture
def make_quota(db_session):
    """사용자 쿼터 행을 미리 만들어 두는 팩토리."""
    def _make_quota(user_id: str, **overrides) -> models.UserQuota:
        values = {
            "user_id": user_id,
            "max_environments": 5,
            "max_concurrent_environments": 1,
            "max_environment_duration_hours": 24,
            "max_vcpus": 2,
            "max_memory_mb": 4096,
            "max_disk_gb": 10,
            "current_environments": 0,
        }
        values.update(overrides)
        quota = models.UserQuota(**values)
        db_session.add(quota)
        db_session.commit()
        return quota

    return _make_quota

@pytest.fixture
def file_engine(tmp_path):
    """스레드마다 별도 연결을 여는 동시성 테스트용 파일 기반 SQLite 엔진."""
    engine = build_engine(f"sqlite:///{tmp_path / 'orchestrator.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(file_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

@pytest.fixture
def orchestrator_factory(job_queue):
    """세션 하나로 요청 하나분의 Repository -> Service 객체를 조립합니다 (app.build_services와 같은 구성)."""
    def _build(session) -> EnvironmentOrchestrator:
        environment_repo = SqlalchemyEnvironmentRepository(session)
        return EnvironmentOrchestrator(
            environment_repo,
            QuotaService(SqlalchemyQuotaRepository(session), environment_repo),
            HostAllocator(SqlalchemyHostRepository(session)),
            AuditService(SqlalchemyAuditLogRepository(session)),
            job_queue,
        )

    return _build
