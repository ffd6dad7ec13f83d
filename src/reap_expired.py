# src/reap_expired.py
import logging
import sys

from src.database.database import SessionLocal
from src.gateways import RedisJobQueueGateway
from src.repositories.sqlalchemy import (
    SqlalchemyAuditLogRepository,
    SqlalchemyEnvironmentRepository,
    SqlalchemyHostRepository,
    SqlalchemyQuotaRepository,
)
from src.services.audit_service import AuditService
from src.services.host_allocator import HostAllocator
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.quota_service import QuotaService
from src.utils.logger import setup_logging

logger = logging.getLogger(__name__)


def reap_expired():
    """
    만료 시간이 지난 환경을 한 번 정리합니다.
    주기적인 실행은 cron 같은 외부 스케줄러가 담당합니다.
    """
    db_session = SessionLocal()
    try:
        environment_repo = SqlalchemyEnvironmentRepository(db_session)
        orchestrator = EnvironmentOrchestrator(
            environment_repo,
            QuotaService(SqlalchemyQuotaRepository(db_session), environment_repo),
            HostAllocator(SqlalchemyHostRepository(db_session)),
            AuditService(SqlalchemyAuditLogRepository(db_session)),
            RedisJobQueueGateway(),
        )
        return orchestrator.reap_expired_environments()
    finally:
        db_session.close()


if __name__ == '__main__':
    setup_logging()
    try:
        reaped = reap_expired()
        logger.info(f"Reaper finished: {len(reaped)} environment(s) destroyed.")
    except Exception as e:
        logger.exception("Reaper run failed")
        print(f"오류 발생: {e}", file=sys.stderr)
        sys.exit(1)
