from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass


logger = logging.getLogger(__name__)


class NullRenderer:
    """没有配置渲染命令时使用。"""

    def render_all(self) -> None:
        logger.debug("render skipped: no render command configured")


@dataclass(slots=True)
class CommandRenderer:
    """调用外部命令重新渲染整个站点（例如 "polis render"）。"""

    command: str
    cwd: str
    timeout_seconds: float = 300.0

    def render_all(self) -> None:
        proc = subprocess.run(
            shlex.split(self.command),
            cwd=self.cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=self.timeout_seconds,
            check=False,
        )
        if proc.returncode != 0:
            output = proc.stdout.decode("utf-8", errors="replace")
            raise RuntimeError(f"render command failed: exit={proc.returncode} command={self.command!r}\n{output}")
        logger.info("site rendered: command=%s", self.command)
