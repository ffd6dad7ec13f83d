import enum
import html
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from src.services.exceptions import CommandParseError


class CommandKind(str, enum.Enum):
    CREATE = "create"
    DESTROY = "destroy"
    STATUS = "status"
    LIST = "list"
    EXECUTE = "execute"
    CONNECT = "connect"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    resources: Dict[str, int] = field(default_factory=dict)
    duration_hours: Optional[int] = None
    repository_url: Optional[str] = None
    init_script: Optional[str] = None
    environment_vars: Optional[Dict[str, str]] = None
    environment_slug: Optional[str] = None
    code: Optional[str] = None
    working_dir: str = "/workspace"


# 제목에서 명령을 찾을 때 검사하는 순서 그대로입니다.
SUBJECT_KEYWORDS = [
    (CommandKind.CREATE, ("create", "new", "spin up", "start")),
    (CommandKind.DESTROY, ("destroy", "delete", "remove", "kill")),
    (CommandKind.STATUS, ("status", "info")),
    (CommandKind.CONNECT, ("connect", "access", "ssh")),
    (CommandKind.EXECUTE, ("execute", "run", "exec")),
    (CommandKind.LIST, ("list", "show")),
]

SLUG_PATTERN = re.compile(r"\benv[_-]([a-z0-9]{8,})\b", re.IGNORECASE)
REPOSITORY_PATTERN = re.compile(r"(https?://github\.com/[\w.-]+/[\w.-]+?)(?:\.git)?(?=[.,]?(?:[\s/)>\"']|$))", re.IGNORECASE)
CPU_PATTERN = re.compile(r"(\d+)\s*(?:vcpus?|cpus?|cores?)\b", re.IGNORECASE)
MEMORY_PATTERN = re.compile(r"(\d+)\s*(gb|mb)\s*(?:of\s+)?(?:ram|memory)\b", re.IGNORECASE)
DISK_PATTERN = re.compile(r"(\d+)\s*gb\s*(?:of\s+)?disk\b", re.IGNORECASE)
DURATION_PATTERN = re.compile(r"(\d+)\s*(hours?|hrs?|h|days?|d)\b", re.IGNORECASE)
CODE_BLOCK_PATTERN = re.compile(r"```(?:[\w+-]*\n)?(.*?)```", re.DOTALL)
JSON_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([hd])\s*$", re.IGNORECASE)


def parse_email_command(subject: str, body_text: Optional[str] = None, body_html: Optional[str] = None) -> Command:
    """
    사용자가 보낸 이메일을 명령으로 해석합니다.

    본문이 'action' 키를 가진 JSON 객체면 그 내용을 그대로 사용하고,
    그렇지 않으면 제목의 키워드로 명령 종류를, 제목과 본문에서 자원/기간/저장소/slug 등을 추출합니다.

    Args:
        subject: 이메일 제목.
        body_text: 텍스트 본문.
        body_html: HTML 본문. body_text가 없을 때만 태그를 제거해서 사용합니다.

    Returns:
        해석된 Command.

    Raises:
        CommandParseError: 알 수 없는 action이거나 제목에서 명령을 찾지 못했을 때.
    """
    subject = (subject or "").strip()
    body = body_text if body_text else _strip_html(body_html or "")

    json_command = _parse_json_body(body)
    if json_command:
        return json_command

    kind = _match_subject(subject.lower())
    if kind is None:
        raise CommandParseError(f"Could not find a command in subject '{subject}'.")
    return _extract_command(kind, subject, body)


def _parse_json_body(body: str) -> Optional[Command]:
    trimmed = body.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not data.get("action"):
        return None

    try:
        kind = CommandKind(str(data["action"]).lower())
    except ValueError:
        raise CommandParseError(f"Unknown action '{data['action']}'.")

    return Command(
        kind=kind,
        resources=_normalize_resources(data.get("resources")),
        duration_hours=_parse_duration(data.get("duration")),
        repository_url=data.get("repository") or data.get("repositoryUrl"),
        init_script=data.get("initScript"),
        environment_vars=data.get("env") or data.get("environmentVars"),
        environment_slug=data.get("slug") or data.get("envId"),
        code=data.get("code"),
        working_dir=data.get("workingDir") or "/workspace",
    )


def _match_subject(subject: str) -> Optional[CommandKind]:
    for kind, keywords in SUBJECT_KEYWORDS:
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", subject):
                return kind
    return None


def _extract_command(kind: CommandKind, subject: str, body: str) -> Command:
    full_text = f"{subject} {body}"

    slug = None
    slug_match = SLUG_PATTERN.search(full_text)
    if slug_match:
        slug = f"env_{slug_match.group(1).lower()}"

    repository_url = None
    repo_match = REPOSITORY_PATTERN.search(full_text)
    if repo_match:
        repository_url = repo_match.group(1)

    resources = {}
    cpu_match = CPU_PATTERN.search(full_text)
    if cpu_match:
        resources["vcpus"] = int(cpu_match.group(1))
    memory_match = MEMORY_PATTERN.search(full_text)
    if memory_match:
        amount = int(memory_match.group(1))
        resources["memory_mb"] = amount * 1024 if memory_match.group(2).lower() == "gb" else amount
    disk_match = DISK_PATTERN.search(full_text)
    if disk_match:
        resources["disk_gb"] = int(disk_match.group(1))

    duration_hours = None
    duration_match = DURATION_PATTERN.search(full_text)
    if duration_match:
        amount = int(duration_match.group(1))
        duration_hours = amount * 24 if duration_match.group(2).lower().startswith("d") else amount

    code = None
    if kind == CommandKind.EXECUTE:
        block = CODE_BLOCK_PATTERN.search(body)
        code = (block.group(1) if block else body).strip() or None

    return Command(
        kind=kind,
        resources=resources,
        duration_hours=duration_hours,
        repository_url=repository_url,
        environment_slug=slug,
        code=code,
    )


def _normalize_resources(resources: Any) -> Dict[str, int]:
    if not isinstance(resources, dict):
        return {}
    aliases = {
        "vcpus": "vcpus",
        "memory_mb": "memory_mb",
        "memoryMb": "memory_mb",
        "disk_gb": "disk_gb",
        "diskGb": "disk_gb",
    }
    normalized = {}
    for key, value in resources.items():
        if key in aliases and value is not None:
            try:
                normalized[aliases[key]] = int(value)
            except (TypeError, ValueError):
                raise CommandParseError(f"Resource '{key}' must be an integer.")
    return normalized


def _parse_duration(duration: Any) -> Optional[int]:
    """'2h', '7d' 형식 또는 시간 단위 정수를 시간으로 변환합니다."""
    if duration is None or duration == "":
        return None
    if isinstance(duration, int):
        return duration
    match = JSON_DURATION_PATTERN.match(str(duration))
    if not match:
        raise CommandParseError(f"Invalid duration '{duration}'. Use '<n>h' or '<n>d'.")
    amount = int(match.group(1))
    return amount * 24 if match.group(2).lower() == "d" else amount


def _strip_html(markup: str) -> str:
    text = re.sub(r"<[^>]*>", "", markup)
    return html.unescape(text.replace("&nbsp;", " ")).strip()
