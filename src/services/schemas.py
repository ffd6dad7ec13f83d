from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from src.config import Config
from src.database import models


@dataclass(frozen=True)
class ResourceRequest:
    """환경 하나에 할당할 자원. 빠진 값은 Config의 기본값으로 채워집니다."""
    vcpus: int
    memory_mb: int
    disk_gb: int

    @classmethod
    def from_values(cls, resources: Optional[Dict[str, Any]] = None) -> "ResourceRequest":
        resources = resources or {}
        if not isinstance(resources, dict):
            raise ValueError("resources must be an object.")
        request = cls(
            vcpus=int(resources.get("vcpus") or Config.DEFAULT_VCPUS),
            memory_mb=int(resources.get("memory_mb") or Config.DEFAULT_MEMORY_MB),
            disk_gb=int(resources.get("disk_gb") or Config.DEFAULT_DISK_GB),
        )
        for name, value in asdict(request).items():
            if value < 1:
                raise ValueError(f"Requested {name} must be a positive integer.")
        return request

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class EnvironmentDetails:
    id: str
    slug: str
    state: str
    ip_address: Optional[str]
    ssh_port: Optional[int]
    vscode_port: Optional[int]
    ws_endpoint: Optional[str]
    access_token: Optional[str]
    expires_at: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, environment: models.Environment) -> "EnvironmentDetails":
        return cls(
            id=environment.id,
            slug=environment.slug,
            state=environment.state,
            ip_address=environment.ip_address,
            ssh_port=environment.ssh_port,
            vscode_port=environment.vscode_port,
            ws_endpoint=environment.ws_endpoint,
            access_token=environment.access_token,
            expires_at=environment.expires_at,
            created_at=environment.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(frozen=True)
class UserContext:
    user_id: str
    email: Optional[str] = None


@dataclass
class CommandResult:
    success: bool
    command: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    notified: bool = False
    # 이메일로 들어온 명령이면 inbound_email_commands 레코드 ID
    email_command_id: Optional[str] = None
