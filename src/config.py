# src/config.py
import os
from dotenv import load_dotenv

# .env 파일이 있으면 환경 변수로 읽어들입니다.
load_dotenv()


class Config:
    """개발 환경 오케스트레이터의 설정 값을 모아둔 클래스입니다."""

    # Database / Queue
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///devenv_metadata.db")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    JOB_QUEUE_PREFIX = os.getenv("JOB_QUEUE_PREFIX", "devenv")

    # Server
    SERVER_PORT = int(os.getenv("SERVER_PORT", "8000"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "")

    # 요청에 값이 빠졌을 때 적용되는 기본 리소스
    DEFAULT_VCPUS = int(os.getenv("DEFAULT_VCPUS", "2"))
    DEFAULT_MEMORY_MB = int(os.getenv("DEFAULT_MEMORY_MB", "4096"))
    DEFAULT_DISK_GB = int(os.getenv("DEFAULT_DISK_GB", "10"))
    DEFAULT_DURATION_HOURS = int(os.getenv("DEFAULT_DURATION_HOURS", "24"))
    DEFAULT_BASE_IMAGE = os.getenv("DEFAULT_BASE_IMAGE", "claude-dev-base-v1")

    # 사용자 쿼터가 처음 생성될 때의 기본값
    QUOTA_MAX_ENVIRONMENTS = int(os.getenv("QUOTA_MAX_ENVIRONMENTS", "1"))
    QUOTA_MAX_CONCURRENT_ENVIRONMENTS = int(os.getenv("QUOTA_MAX_CONCURRENT_ENVIRONMENTS", "1"))
    QUOTA_MAX_DURATION_HOURS = int(os.getenv("QUOTA_MAX_DURATION_HOURS", "24"))
    QUOTA_MAX_VCPUS = int(os.getenv("QUOTA_MAX_VCPUS", "2"))
    QUOTA_MAX_MEMORY_MB = int(os.getenv("QUOTA_MAX_MEMORY_MB", "4096"))
    QUOTA_MAX_DISK_GB = int(os.getenv("QUOTA_MAX_DISK_GB", "10"))

    @classmethod
    def validate(cls):
        """설정 값의 유효성을 검사합니다."""
        if cls.SERVER_PORT < 1 or cls.SERVER_PORT > 65535:
            raise ValueError("Invalid port number")

        positive_settings = {
            "DEFAULT_VCPUS": cls.DEFAULT_VCPUS,
            "DEFAULT_MEMORY_MB": cls.DEFAULT_MEMORY_MB,
            "DEFAULT_DISK_GB": cls.DEFAULT_DISK_GB,
            "DEFAULT_DURATION_HOURS": cls.DEFAULT_DURATION_HOURS,
            "QUOTA_MAX_CONCURRENT_ENVIRONMENTS": cls.QUOTA_MAX_CONCURRENT_ENVIRONMENTS,
            "QUOTA_MAX_VCPUS": cls.QUOTA_MAX_VCPUS,
            "QUOTA_MAX_MEMORY_MB": cls.QUOTA_MAX_MEMORY_MB,
            "QUOTA_MAX_DISK_GB": cls.QUOTA_MAX_DISK_GB,
        }
        for name, value in positive_settings.items():
            if value < 1:
                raise ValueError(f"Invalid {name}: must be a positive integer")
