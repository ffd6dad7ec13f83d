# src/utils/logger.py
import logging
import logging.handlers
import sys

from src.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(name: str = "src") -> logging.Logger:
    """
    애플리케이션 로거를 설정합니다. 콘솔 핸들러는 항상 붙이고,
    LOG_FILE이 설정되어 있으면 크기 기반 로테이션 파일 핸들러를 추가합니다.

    여러 번 호출해도 핸들러가 중복으로 붙지 않습니다.
    """
    logger = logging.getLogger(name)
    level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    logger.handlers.clear()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if Config.LOG_FILE:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                Config.LOG_FILE,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not setup file logging: {e}")

    return logger
