import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, event

from src.utils.time_utils import utcnow
from ..database import Base


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


class AuditLogEntry(Base):
    """
    환경에 대해 일어난 모든 오케스트레이션 동작과 상태 전이를 기록하는 append-only 로그입니다.
    한 번 기록된 엔트리는 수정하거나 삭제할 수 없습니다.
    """
    __tablename__ = "environment_audit_log"
    __table_args__ = (
        Index("ix_environment_audit_log_environment_created", "environment_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True)
    environment_id = Column(String(36), ForeignKey("environments.id"))

    action = Column(String, nullable=False)
    status = Column(String, nullable=False)
    # 'metadata'는 Declarative Base가 예약한 이름이라 속성 이름만 details로 사용합니다.
    details = Column("metadata", JSON)
    error_message = Column(Text)
    duration_ms = Column(Integer)

    created_at = Column(DateTime, nullable=False, default=utcnow)


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ValueError("Audit log entries are immutable.")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ValueError("Audit log entries cannot be deleted.")
