from .base import IRepository
from .host import IHostRepository
from .environment import IEnvironmentRepository
from .quota import IQuotaRepository
from .audit_log import IAuditLogRepository
from .inbound_email import IInboundEmailCommandRepository

__all__ = [
    "IRepository",
    "IHostRepository",
    "IEnvironmentRepository",
    "IQuotaRepository",
    "IAuditLogRepository",
    "IInboundEmailCommandRepository",
]
