from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass

from .base import DiscoveryError


@dataclass(slots=True)
class CommandSigner:
    """
    通过外部命令签名（例如包装了节点私钥的脚本）：数据走 stdin，签名从 stdout 读取。
    """

    command: str
    timeout_seconds: float = 10.0

    def sign(self, data: bytes) -> str:
        try:
            proc = subprocess.run(
                shlex.split(self.command),
                input=data,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DiscoveryError(f"signing command failed: {type(e).__name__}: {e}") from e
        if proc.returncode != 0:
            err = proc.stderr.decode("utf-8", errors="replace").strip()
            raise DiscoveryError(f"signing command exited with {proc.returncode}: {err}")
        return proc.stdout.decode("utf-8").strip()
