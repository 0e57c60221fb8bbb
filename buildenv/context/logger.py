import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

from loguru import logger as _loguru

import buildenv.context._globals as _globals


class InterceptHandler(logging.Handler):
    """
    A logging.Handler that re-emits stdlib LogRecords through loguru so module
    loggers (logging.getLogger(__name__)) share the loguru sinks.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _loguru.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _loguru.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


class Logger:
    """
    Logger utility using loguru with UUID-tagged run identity.
    """

    _configured = False
    _uuid = None
    _log_path = None
    _handler_ids = SimpleNamespace(file=None, console=None)

    @staticmethod
    def init_logger(
            log_dir: Path = _globals.GLOBAL_LOG_DIR,
            label: str = None,
            level: str = "INFO",
            pretty_console: bool = True,
            to_file: bool = True,
    ):
        """
        Initialize loguru with console and file output and route stdlib logging into it.
        """
        if Logger._configured:
            return _loguru

        Logger._uuid = str(uuid.uuid4())
        Logger._configured = True

        _loguru.remove()
        _loguru.configure(extra={"name": "buildenv"})

        fmt = (
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[name]}</cyan> | "
            "{message}"
        )

        if pretty_console:
            Logger._handler_ids.console = _loguru.add(
                sys.stderr, level=level.upper(), colorize=True, format=fmt
            )

        if to_file:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            suffix = f"__{label}" if label else f"__{Logger._uuid}"
            log_file = log_dir / f"{timestamp}{suffix}.log"
            Logger._log_path = log_file
            Logger._handler_ids.file = _loguru.add(
                str(log_file), level="DEBUG", format=fmt, encoding="utf-8"
            )

        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        _loguru.debug("[Logger Init] UUID={} → {}", Logger._uuid, Logger._log_path)
        return _loguru

    @staticmethod
    def reset():
        _loguru.remove()
        logging.basicConfig(handlers=[], force=True)
        Logger._configured = False
        Logger._uuid = None
        Logger._log_path = None
        Logger._handler_ids = SimpleNamespace(file=None, console=None)
