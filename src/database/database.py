from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from src.config import Config

# 데이터베이스 연결 문자열은 Config(DATABASE_URL 환경 변수)에서 가져옵니다.
SQLALCHEMY_DATABASE_URL = Config.DATABASE_URL


def build_engine(url: str, **kwargs):
    """
    SQLAlchemy 엔진을 생성합니다.

    SQLite는 여러 스레드에서 같은 연결을 쓸 수 있도록 check_same_thread를 끄고,
    SAVEPOINT(begin_nested)가 올바르게 동작하도록 트랜잭션 시작(BEGIN)을 SQLAlchemy가 직접 내보냅니다.

    SQLite는 FOR UPDATE를 무시하므로 트랜잭션을 BEGIN IMMEDIATE로 열어 쓰기 잠금을 시작 시점에 잡습니다.
    그래서 동시에 들어온 쓰기 트랜잭션은 "database is locked"로 실패하지 않고 busy timeout 동안 차례를 기다립니다.
    세션은 작업이 끝나면 바로 commit 하거나 닫아야 다른 요청이 기다리지 않습니다.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(SQLALCHEMY_DATABASE_URL)

# autocommit=False, autoflush=False로 설정하여, 트랜잭션 경계는 서비스 계층이 명시적으로 commit 합니다.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 모든 모델 클래스가 상속받을 Base 클래스
Base = declarative_base()
