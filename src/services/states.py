import enum
from typing import Dict, FrozenSet


class EnvironmentState(str, enum.Enum):
    REQUESTED = "requested"
    PROVISIONING = "provisioning"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    ERROR = "error"


S = EnvironmentState

# 각 상태에서 이동할 수 있는 다음 상태 목록
ALLOWED_TRANSITIONS: Dict[EnvironmentState, FrozenSet[EnvironmentState]] = {
    S.REQUESTED: frozenset({S.PROVISIONING, S.DESTROYING, S.ERROR}),
    S.PROVISIONING: frozenset({S.STARTING, S.DESTROYING, S.ERROR}),
    S.STARTING: frozenset({S.RUNNING, S.STOPPING, S.DESTROYING, S.ERROR}),
    S.RUNNING: frozenset({S.STOPPING, S.DESTROYING, S.ERROR}),
    S.STOPPING: frozenset({S.STOPPED, S.DESTROYING, S.ERROR}),
    # VM이 남아 있으면 starting으로 바로 재시작, 사라졌으면 provisioning부터 다시 진행
    S.STOPPED: frozenset({S.STARTING, S.PROVISIONING, S.DESTROYING, S.ERROR}),
    # destroying 재진입은 허용하되, 자원 반환은 환경당 한 번만 일어납니다.
    S.DESTROYING: frozenset({S.DESTROYING, S.DESTROYED, S.ERROR}),
    S.DESTROYED: frozenset(),
    # error는 수명 주기의 끝이지만, 예약된 자원을 회수하기 위한 정리 경로는 열어둡니다.
    S.ERROR: frozenset({S.DESTROYING}),
}

TERMINAL_STATES: FrozenSet[EnvironmentState] = frozenset({S.DESTROYED, S.ERROR})

# 동시 환경 쿼터에 포함되는 상태들
ACTIVE_STATES: FrozenSet[EnvironmentState] = frozenset(set(EnvironmentState) - TERMINAL_STATES)

if set(ALLOWED_TRANSITIONS) != set(EnvironmentState):
    raise RuntimeError("ALLOWED_TRANSITIONS must cover every EnvironmentState.")


def parse_state(value) -> EnvironmentState:
    """문자열이나 EnvironmentState를 EnvironmentState로 변환합니다. 모르는 값이면 ValueError."""
    if isinstance(value, EnvironmentState):
        return value
    try:
        return EnvironmentState(value)
    except ValueError:
        raise ValueError(f"Unknown environment state: '{value}'.")


def can_transition(from_state: EnvironmentState, to_state: EnvironmentState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]
