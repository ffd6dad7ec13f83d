import enum

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from src.utils.time_utils import utcnow
from ..database import Base


class HostStatus(str, enum.Enum):
    PROVISIONING = "provisioning"
    READY = "ready"
    FULL = "full"
    MAINTENANCE = "maintenance"
    ERROR = "error"


class Host(Base):
    """
    개발 환경 VM을 실제로 띄우는 하이퍼바이저 노드입니다.
    VM 개수, vCPU, 메모리 각각에 대해 최대 용량(max_*)과 현재 사용량(current_*)을 가지며,
    모든 자원 차원에서 0 <= current_* <= max_* 가 항상 성립해야 합니다.
    """
    __tablename__ = "hosts"
    __table_args__ = (
        CheckConstraint("current_vms >= 0 AND current_vms <= max_vms", name="ck_hosts_vms_capacity"),
        CheckConstraint("current_vcpus >= 0 AND current_vcpus <= max_vcpus", name="ck_hosts_vcpus_capacity"),
        CheckConstraint(
            "current_memory_mb >= 0 AND current_memory_mb <= max_memory_mb",
            name="ck_hosts_memory_capacity",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)
    region = Column(String, nullable=False)
    ip_address = Column(String, nullable=False)

    max_vms = Column(Integer, nullable=False, default=50)
    max_vcpus = Column(Integer, nullable=False, default=16)
    max_memory_mb = Column(Integer, nullable=False, default=60000)

    current_vms = Column(Integer, nullable=False, default=0)
    current_vcpus = Column(Integer, nullable=False, default=0)
    current_memory_mb = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default=HostStatus.PROVISIONING.value)
    agent_ws_url = Column(String)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    environments = relationship("Environment", back_populates="host")
