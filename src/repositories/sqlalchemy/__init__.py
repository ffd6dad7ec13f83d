from .sqlalchemy_host_repository import SqlalchemyHostRepository
from .sqlalchemy_environment_repository import SqlalchemyEnvironmentRepository
from .sqlalchemy_quota_repository import SqlalchemyQuotaRepository
from .sqlalchemy_audit_log_repository import SqlalchemyAuditLogRepository
from .sqlalchemy_inbound_email_repository import SqlalchemyInboundEmailCommandRepository

__all__ = [
    "SqlalchemyHostRepository",
    "SqlalchemyEnvironmentRepository",
    "SqlalchemyQuotaRepository",
    "SqlalchemyAuditLogRepository",
    "SqlalchemyInboundEmailCommandRepository",
]
