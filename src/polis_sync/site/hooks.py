from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import asdict, dataclass


logger = logging.getLogger(__name__)

EVENT_POST_COMMENT = "post-comment"


class HookError(RuntimeError):
    """hook 脚本不存在、超时或以非零状态退出。"""


@dataclass(frozen=True, slots=True)
class HookPayload:
    event: str
    path: str
    title: str
    version: str
    timestamp: str
    commit_message: str


@dataclass(frozen=True, slots=True)
class HookResult:
    executed: bool
    output: str = ""


def commit_message_for(event: str, title: str) -> str:
    if event == EVENT_POST_COMMENT:
        return f"Comment blessed: {title}"
    return f"Polis: {title}"


def resolve_hook_path(data_dir: str, event: str, configured: str | None) -> str | None:
    """显式配置优先，否则按约定查找 .polis/hooks/<event>.sh。"""
    hook_path = configured or ""
    if not hook_path:
        conventional = os.path.join(".polis", "hooks", event + ".sh")
        if os.path.exists(os.path.join(data_dir, conventional)):
            hook_path = conventional
    if not hook_path:
        return None
    if not os.path.isabs(hook_path):
        hook_path = os.path.join(data_dir, hook_path)
    return hook_path


def run_hook(
    data_dir: str,
    hook_path: str | None,
    payload: HookPayload,
    *,
    timeout_seconds: float = 60.0,
) -> HookResult:
    """
    执行站点 hook 脚本：
    - POLIS_* 环境变量描述事件
    - stdin 传入 JSON payload
    - 工作目录为站点根目录

    没有可用 hook 时返回 executed=False（不是错误）。
    """
    resolved = resolve_hook_path(data_dir, payload.event, hook_path)
    if resolved is None:
        return HookResult(executed=False)
    if not os.path.exists(resolved):
        raise HookError(f"hook not found: {resolved}")

    env = dict(os.environ)
    env.update(
        {
            "POLIS_EVENT": payload.event,
            "POLIS_PATH": payload.path,
            "POLIS_TITLE": payload.title,
            "POLIS_VERSION": payload.version,
            "POLIS_TIMESTAMP": payload.timestamp,
            "POLIS_SITE_DIR": data_dir,
            "POLIS_CONFIG_DIR": os.path.join(data_dir, ".polis"),
            "POLIS_COMMIT_MESSAGE": payload.commit_message,
        }
    )

    try:
        proc = subprocess.run(
            [resolved],
            input=json.dumps(asdict(payload)).encode("utf-8"),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=data_dir,
            env=env,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise HookError(f"hook timed out after {timeout_seconds}s: {resolved}") from e
    except OSError as e:
        raise HookError(f"hook could not be executed: {resolved}: {e}") from e

    output = proc.stdout.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        raise HookError(f"hook failed: exit={proc.returncode} path={resolved}\nOutput: {output}")
    logger.debug("hook executed: event=%s path=%s", payload.event, resolved)
    return HookResult(executed=True, output=output)
