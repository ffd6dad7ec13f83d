import logging

from src.config import Config
from src.utils.logger import setup_logging
from .database import engine, SessionLocal, Base
from .models import *

logger = logging.getLogger(__name__)


def initialize_db(seed_host: bool = True):
    """
    DB와 테이블을 생성하고, 기본 호스트 하나를 'ready' 상태로 등록합니다.
    SQLAlchemy 모델을 사용하여 모든 작업을 수행합니다.
    """
    logger.info(f"DB 초기화 중 ({Config.DATABASE_URL})...")

    # 모든 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    Base.metadata.create_all(bind=engine)
    logger.info("테이블 생성 완료.")

    if not seed_host:
        return

    db = SessionLocal()
    try:
        # 기본 데이터가 이미 있는지 확인
        if db.query(Host).first():
            logger.info("호스트가 이미 등록되어 있습니다. 초기화를 건너뜁니다.")
            return

        local_host = Host(
            name='local-hypervisor-1',
            region='local',
            ip_address='127.0.0.1',
            status=HostStatus.READY.value,
            agent_ws_url='ws://127.0.0.1:8765',
        )
        db.add(local_host)
        db.commit()
        logger.info(f"기본 호스트 '{local_host.name}' 등록 완료.")

    except Exception:
        logger.exception("DB 초기화 중 오류 발생")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == '__main__':
    setup_logging()
    initialize_db()
