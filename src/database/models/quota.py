from sqlalchemy import Column, DateTime, Integer, String

from src.utils.time_utils import utcnow
from ..database import Base


class UserQuota(Base):
    """
    사용자별 자원 한도입니다. 처음 쿼터를 검사할 때 기본값으로 생성됩니다.
    동시 환경 개수는 매번 environments 테이블에서 직접 세므로 current_environments는
    생성 시점의 값(0)을 유지합니다.
    """
    __tablename__ = "user_quotas"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False, index=True)

    max_environments = Column(Integer, nullable=False)
    max_concurrent_environments = Column(Integer, nullable=False)
    max_environment_duration_hours = Column(Integer, nullable=False)

    max_vcpus = Column(Integer, nullable=False)
    max_memory_mb = Column(Integer, nullable=False)
    max_disk_gb = Column(Integer, nullable=False)

    current_environments = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
