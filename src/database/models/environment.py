import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship, validates

from src.utils.time_utils import utcnow
from ..database import Base


class Environment(Base):
    """
    사용자 한 명이 소유하는 임시 개발용 VM 하나를 나타냅니다.
    상태(state)는 오케스트레이터의 transition_state를 통해서만 바뀌며,
    한 번 배정된 호스트(host_id)는 환경이 사라질 때까지 바뀌지 않습니다.
    """
    __tablename__ = "environments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    name = Column(String)
    slug = Column(String, unique=True, nullable=False, index=True)

    # Infrastructure
    host_id = Column(Integer, ForeignKey("hosts.id"))
    vm_id = Column(String, nullable=False)
    base_image = Column(String, nullable=False)

    # Network / Access
    ip_address = Column(String)
    ssh_port = Column(Integer)
    vscode_port = Column(Integer)
    ws_endpoint = Column(String)
    access_token = Column(String)

    # Resources
    vcpus = Column(Integer, nullable=False)
    memory_mb = Column(Integer, nullable=False)
    disk_gb = Column(Integer, nullable=False)
    capacity_reserved = Column(Boolean, nullable=False, default=False)
    capacity_released = Column(Boolean, nullable=False, default=False)

    # State
    state = Column(String, nullable=False, default="requested", index=True)
    state_message = Column(Text)

    # Lifecycle
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime)
    stopped_at = Column(DateTime)
    destroyed_at = Column(DateTime)
    expires_at = Column(DateTime, nullable=False, index=True)
    last_activity_at = Column(DateTime)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Configuration
    repository_url = Column(String)
    init_script = Column(Text)
    environment_vars = Column(JSON)

    host = relationship("Host", back_populates="environments")

    @validates("host_id")
    def validate_host_id(self, key, value):
        if self.host_id is not None and value != self.host_id:
            raise ValueError(
                f"Environment '{self.slug}' is already bound to host {self.host_id}; "
                "destroy and recreate it to move hosts."
            )
        return value
