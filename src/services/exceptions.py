# src/services/exceptions.py

# --- Not Found Exceptions ---
class NotFoundError(Exception):
    """요청한 리소스가 없거나 요청자 소유가 아닐 때"""
    pass

class EnvironmentNotFoundError(NotFoundError):
    """환경을 찾을 수 없을 때"""
    pass

class HostNotFoundError(NotFoundError):
    """호스트를 찾을 수 없을 때"""
    pass

# --- Allocation Exceptions ---
class QuotaExceededError(Exception):
    """사용자 쿼터(동시 환경 수 또는 자원 한도)를 초과했을 때"""
    def __init__(self, dimension: str, message: str):
        super().__init__(message)
        self.dimension = dimension

class NoCapacityError(Exception):
    """요청을 수용할 수 있는 호스트가 하나도 없을 때"""
    pass

class HostAlreadyExistsError(Exception):
    """같은 이름의 호스트가 이미 등록되어 있을 때"""
    pass

# --- Lifecycle Exceptions ---
class InvalidTransitionError(Exception):
    """허용되지 않은 상태 전이를 시도했을 때"""
    def __init__(self, from_state: str, to_state: str):
        super().__init__(f"Invalid state transition: '{from_state}' -> '{to_state}'.")
        self.from_state = from_state
        self.to_state = to_state

# --- Collaborator Exceptions ---
class ExternalServiceError(Exception):
    """작업 큐, 알림 서비스 등 외부 협력자 호출이 실패했을 때"""
    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service

# --- Command Exceptions ---
class CommandParseError(Exception):
    """이메일/JSON 명령을 해석할 수 없을 때"""
    pass
