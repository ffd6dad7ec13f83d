# src/app.py
from wsgiref.simple_server import make_server
import json
import logging
import sys
import re

# SQLAlchemy 및 의존성 임포트
from src.config import Config
from src.database.database import SessionLocal
from src.gateways import LoggingNotificationService, RedisJobQueueGateway
from src.repositories.sqlalchemy import (
    SqlalchemyAuditLogRepository,
    SqlalchemyEnvironmentRepository,
    SqlalchemyHostRepository,
    SqlalchemyInboundEmailCommandRepository,
    SqlalchemyQuotaRepository,
)
from src.services.audit_service import AuditService
from src.services.command_processor import CommandProcessor
from src.services.host_allocator import HostAllocator
from src.services.orchestrator_service import EnvironmentOrchestrator
from src.services.quota_service import QuotaService
from src.services.exceptions import *
from src.utils.logger import setup_logging

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        data = json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise ValueError("Invalid or missing JSON body.")
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data

def get_user_id(environ):
    # 인증은 앞단 게이트웨이가 처리하고, 확인된 사용자 ID만 헤더로 넘어옵니다.
    user_id = environ.get('HTTP_X_USER_ID')
    if not user_id:
        raise ValueError("Missing 'X-User-Id' header.")
    return user_id

def handle_exception(e):
    error_map = {
        NotFoundError: "404 Not Found",
        EnvironmentNotFoundError: "404 Not Found",
        HostNotFoundError: "404 Not Found",
        InvalidTransitionError: "409 Conflict",
        HostAlreadyExistsError: "409 Conflict",
        QuotaExceededError: "429 Too Many Requests",
        NoCapacityError: "503 Service Unavailable",
        ExternalServiceError: "503 Service Unavailable",
        ValueError: "400 Bad Request",
        CommandParseError: "400 Bad Request",
    }
    status = error_map.get(type(e), "500 Internal Server Error")
    if status.startswith("500"):
        logger.exception("Unhandled error while processing request")

    body = {"error": str(e)}
    if isinstance(e, QuotaExceededError):
        body["dimension"] = e.dimension
    return status, json.dumps(body)

def build_services(db_session):
    """요청 하나에서 사용할 Repository -> Service 객체들을 만듭니다."""
    environment_repo = SqlalchemyEnvironmentRepository(db_session)
    host_repo = SqlalchemyHostRepository(db_session)
    quota_repo = SqlalchemyQuotaRepository(db_session)
    audit_repo = SqlalchemyAuditLogRepository(db_session)
    inbound_email_repo = SqlalchemyInboundEmailCommandRepository(db_session)

    audit_service = AuditService(audit_repo)
    host_allocator = HostAllocator(host_repo)
    quota_service = QuotaService(quota_repo, environment_repo)
    orchestrator = EnvironmentOrchestrator(
        environment_repo, quota_service, host_allocator, audit_service, RedisJobQueueGateway()
    )
    command_processor = CommandProcessor(
        orchestrator, audit_service, LoggingNotificationService(), inbound_email_repo
    )

    return {
        'orchestrator': orchestrator,
        'hosts': host_allocator,
        'audit': audit_service,
        'commands': command_processor,
    }

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def application(environ, start_response):
    db_session = SessionLocal()
    try:
        # 1. 생성된 서비스 객체들을 environ을 통해 핸들러에 전달
        environ['services'] = build_services(db_session)

        # 2. 라우팅 및 핸들러 실행
        path = environ.get("PATH_INFO", "")
        method = environ.get("REQUEST_METHOD", "")

        routes = [
            ('GET', r'^/v1/environments$', list_environments_handler),
            ('POST', r'^/v1/environments$', create_environment_handler),
            ('GET', r'^/v1/environments/([a-zA-Z0-9_-]+)$', get_environment_handler),
            ('DELETE', r'^/v1/environments/([a-zA-Z0-9_-]+)$', destroy_environment_handler),
            ('POST', r'^/v1/environments/([a-zA-Z0-9_-]+)/start$', start_environment_handler),
            ('POST', r'^/v1/environments/([a-zA-Z0-9_-]+)/stop$', stop_environment_handler),
            ('POST', r'^/v1/environments/([a-zA-Z0-9_-]+)/transitions$', transition_environment_handler),
            ('GET', r'^/v1/environments/([a-zA-Z0-9_-]+)/audit$', list_audit_entries_handler),
            ('POST', r'^/v1/hosts$', register_host_handler),
            ('PUT', r'^/v1/hosts/([0-9]+)/status$', set_host_status_handler),
            ('POST', r'^/v1/inbound-email$', inbound_email_handler),
        ]

        handler, path_args = None, []
        for route_method, pattern, route_handler in routes:
            if method == route_method and (match := re.match(pattern, path)):
                handler, path_args = route_handler, match.groups()
                break

        if handler:
            status, response_body = handler(environ, *path_args)
        else:
            status, response_body = '404 Not Found', json.dumps({'error': 'Not Found'})

    except Exception as e:
        status, response_body = handle_exception(e)
    finally:
        db_session.close()

    start_response(status, [("Content-Type", "application/json")])
    return [response_body.encode("utf-8")]

# --------------------------------------------------------------------------
## 핸들러 함수
# --------------------------------------------------------------------------

def _get_owned_environment(environ, environment_id):
    user_id = get_user_id(environ)
    details = environ['services']['orchestrator'].get_environment(environment_id)
    if not details:
        raise EnvironmentNotFoundError(f"Environment {environment_id} not found.")
    # 다른 사용자의 환경은 존재하지 않는 것과 같게 취급합니다.
    environ['services']['orchestrator'].get_environment_by_slug(user_id, details.slug)
    return user_id, details

def list_environments_handler(environ, *args):
    user_id = get_user_id(environ)
    environments = environ['services']['orchestrator'].list_environments(user_id)
    return '200 OK', json.dumps({'environments': [e.to_dict() for e in environments]})

def create_environment_handler(environ, *args):
    user_id = get_user_id(environ)
    data = get_request_data(environ)
    details = environ['services']['orchestrator'].create_environment(
        user_id,
        resources=data.get('resources'),
        duration_hours=data.get('duration_hours'),
        repository_url=data.get('repository_url'),
        init_script=data.get('init_script'),
        environment_vars=data.get('environment_vars'),
        name=data.get('name'),
    )
    return '201 Created', json.dumps(details.to_dict())

def get_environment_handler(environ, environment_id):
    _, details = _get_owned_environment(environ, environment_id)
    return '200 OK', json.dumps(details.to_dict())

def destroy_environment_handler(environ, environment_id):
    user_id = get_user_id(environ)
    environ['services']['orchestrator'].destroy_environment(environment_id, user_id)
    return '200 OK', json.dumps({"message": f"Environment '{environment_id}' destroyed."})

def start_environment_handler(environ, environment_id):
    user_id = get_user_id(environ)
    environ['services']['orchestrator'].start_environment(environment_id, user_id)
    details = environ['services']['orchestrator'].get_environment(environment_id)
    return '202 Accepted', json.dumps(details.to_dict())

def stop_environment_handler(environ, environment_id):
    user_id = get_user_id(environ)
    environ['services']['orchestrator'].stop_environment(environment_id, user_id)
    details = environ['services']['orchestrator'].get_environment(environment_id)
    return '202 Accepted', json.dumps(details.to_dict())

def transition_environment_handler(environ, environment_id):
    # 워커가 하이퍼바이저 작업 결과를 보고하는 콜백입니다.
    data = get_request_data(environ)
    if not data.get('state'):
        raise ValueError("'state' is required.")
    environ['services']['orchestrator'].transition_state(environment_id, data['state'], data.get('metadata'))
    details = environ['services']['orchestrator'].get_environment(environment_id)
    return '200 OK', json.dumps(details.to_dict())

def list_audit_entries_handler(environ, environment_id):
    _get_owned_environment(environ, environment_id)
    entries = environ['services']['audit'].list_by_environment(environment_id)
    return '200 OK', json.dumps({"entries": entries})

HOST_FIELDS = {'name', 'region', 'ip_address', 'max_vms', 'max_vcpus', 'max_memory_mb', 'agent_ws_url'}

def register_host_handler(environ, *args):
    data = get_request_data(environ)
    unknown = sorted(set(data) - HOST_FIELDS)
    if unknown:
        raise ValueError(f"Unknown host field(s): {', '.join(unknown)}.")
    missing = sorted({'name', 'region', 'ip_address'} - set(data))
    if missing:
        raise ValueError(f"Missing host field(s): {', '.join(missing)}.")
    host = environ['services']['hosts'].register_host(**data)
    return '201 Created', json.dumps(environ['services']['hosts'].to_dict(host))

def set_host_status_handler(environ, host_id):
    data = get_request_data(environ)
    host = environ['services']['hosts'].set_host_status(int(host_id), data.get('status'))
    return '200 OK', json.dumps(environ['services']['hosts'].to_dict(host))

def inbound_email_handler(environ, *args):
    data = get_request_data(environ)
    if not data.get('from'):
        raise ValueError("'from' is required.")
    result = environ['services']['commands'].process_email(
        sender=data['from'],
        subject=data.get('subject', ''),
        body_text=data.get('body_text'),
        body_html=data.get('body_html'),
        user_id=data.get('user_id'),
        recipient=data.get('to'),
        message_id=data.get('message_id'),
        in_reply_to=data.get('in_reply_to'),
    )
    return '200 OK', json.dumps({
        "success": result.success,
        "command": result.command,
        "message": result.message,
        "data": result.data,
        "error": result.error,
        "notified": result.notified,
        "email_command_id": result.email_command_id,
    })

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

if __name__ == "__main__":
    setup_logging()
    try:
        Config.validate()
        with make_server("", Config.SERVER_PORT, application) as httpd:
            logger.info(f"Serving dev environment orchestrator on port {Config.SERVER_PORT}...")
            httpd.serve_forever()
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
