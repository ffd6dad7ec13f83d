import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text

from src.utils.time_utils import utcnow
from ..database import Base


class InboundEmailStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InboundEmailCommand(Base):
    """
    명령으로 들어온 이메일 한 통과 그 처리 결과입니다.
    수신 즉시 'pending'으로 저장되고, 해석이 끝나면 'processing', 실행 결과에 따라 'completed' 또는 'failed'가 됩니다.
    """
    __tablename__ = "inbound_email_commands"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True)

    # Email
    sender = Column("from", String, nullable=False)
    recipient = Column("to", String)
    subject = Column(String, nullable=False, default="")
    body_text = Column(Text)
    body_html = Column(Text)
    message_id = Column(String, unique=True)
    in_reply_to = Column(String)

    # Parsed command
    command = Column(String)
    command_data = Column(JSON)

    status = Column(String, nullable=False, default=InboundEmailStatus.PENDING.value)
    processed_at = Column(DateTime)
    error_message = Column(Text)

    # create 명령이 만든 환경
    environment_id = Column(String(36))
    response_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
