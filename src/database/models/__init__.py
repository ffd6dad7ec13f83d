from .host import Host, HostStatus
from .environment import Environment
from .quota import UserQuota
from .audit_log import AuditLogEntry, AuditStatus
from .inbound_email import InboundEmailCommand, InboundEmailStatus

__all__ = [
    "Host",
    "HostStatus",
    "Environment",
    "UserQuota",
    "AuditLogEntry",
    "AuditStatus",
    "InboundEmailCommand",
    "InboundEmailStatus",
]
