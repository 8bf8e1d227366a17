"""
로깅 시스템
Rich 콘솔 로깅 + 회전 로그 파일

모든 명령은 같은 파일(wg-peer-agent.log, error.log)에 이어 쓰며 크기 기준으로 회전한다.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console(stderr=True)

DEFAULT_LOG_DIR = "/var/log/wg-peer-agent"
LOG_FILE_NAME = "wg-peer-agent.log"
ERROR_FILE_NAME = "error.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

FILE_FORMAT = "%(asctime)s - %(levelname)s - [pid %(process)d] %(message)s"


class AgentLogger:
    """에이전트 로거"""

    def __init__(self, log_dir: Optional[str] = DEFAULT_LOG_DIR, log_level: str = "INFO", debug: bool = False):
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper())
        self.log_file = None
        self.error_file = None

        self.logger = logging.getLogger("wg_peer_agent")
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        self.logger.addHandler(self._console_handler(debug))

        # log_dir 이 None 이면 콘솔 로깅만 사용
        if log_dir:
            try:
                self._add_file_handlers(log_dir)
            except OSError as e:
                # 일반 사용자로 list/show 를 실행하는 경우 등
                self.logger.warning(f"File logging disabled, cannot write to {log_dir}: {e}")

    def _console_handler(self, debug: bool) -> logging.Handler:
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        handler.setLevel(self.log_level)
        return handler

    def _add_file_handlers(self, log_dir: str):
        os.makedirs(log_dir, exist_ok=True)
        formatter = logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

        log_file = os.path.join(log_dir, LOG_FILE_NAME)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding='utf-8'
        )
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(formatter)

        error_file = os.path.join(log_dir, ERROR_FILE_NAME)
        error_handler = RotatingFileHandler(
            error_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        self.logger.addHandler(file_handler)
        self.logger.addHandler(error_handler)
        self.log_file = log_file
        self.error_file = error_file

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)


# 글로벌 로거 인스턴스
_logger: Optional[AgentLogger] = None


def get_logger() -> AgentLogger:
    """로거 인스턴스 가져오기 (초기화 전이면 콘솔 전용)"""
    global _logger
    if _logger is None:
        _logger = AgentLogger(None)
    return _logger


def init_logger(log_dir: Optional[str], log_level: str, debug: bool) -> AgentLogger:
    """로거 초기화"""
    global _logger
    _logger = AgentLogger(log_dir, log_level, debug)
    return _logger
