from .job_queue import IJobQueueGateway, JobKind, RedisJobQueueGateway
from .notification import INotificationService, LoggingNotificationService, NotificationKind

__all__ = [
    "IJobQueueGateway",
    "JobKind",
    "RedisJobQueueGateway",
    "INotificationService",
    "LoggingNotificationService",
    "NotificationKind",
]
