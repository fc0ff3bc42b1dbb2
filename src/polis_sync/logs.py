from __future__ import annotations

import logging
import logging.handlers
import os


LOGGER_NAME = "polis_sync"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class LogService:
    """
    日志服务：由入口创建一次，给 polis_sync 包 logger 挂上控制台与按天滚动的文件 handler。

    各模块仍然使用 logging.getLogger(__name__)，不自行配置 handler。
    """

    def __init__(
        self,
        log_dir: str | None,
        *,
        level: int = logging.INFO,
        backup_count: int = 14,
        filename: str = "polis-sync.log",
        console: bool = True,
    ) -> None:
        self._log_dir = log_dir
        self._level = level
        self._backup_count = backup_count
        self._filename = filename
        self._console = console
        self._handlers: list[logging.Handler] = []
        self._file_handler: logging.handlers.TimedRotatingFileHandler | None = None

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(LOGGER_NAME)

    @property
    def log_path(self) -> str | None:
        if not self._log_dir:
            return None
        return os.path.join(self._log_dir, self._filename)

    def open(self) -> "LogService":
        if self._handlers:
            return self
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

        if self._console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            self._handlers.append(console)

        path = self.log_path
        if path:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            fh = logging.handlers.TimedRotatingFileHandler(
                path,
                when="midnight",
                backupCount=self._backup_count,
                encoding="utf-8",
                utc=True,
            )
            fh.setFormatter(formatter)
            self._file_handler = fh
            self._handlers.append(fh)

        root = self.logger
        root.setLevel(self._level)
        for h in self._handlers:
            root.addHandler(h)
        return self

    def rotate(self) -> None:
        if self._file_handler is not None:
            self._file_handler.doRollover()

    def close(self) -> None:
        root = self.logger
        for h in self._handlers:
            root.removeHandler(h)
            h.close()
        self._handlers = []
        self._file_handler = None

    def __enter__(self) -> "LogService":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()


def resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO
