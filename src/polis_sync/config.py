from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .urls import extract_domain


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool) or v is None:
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool) or v is None:
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class DiscoveryConfig:
    """
    Discovery service 配置。

    key_env:
      - API key 的环境变量名（不落盘）
    query_limit:
      - 每次 stream 查询的最大事件数
    """

    url: str
    key_env: str
    query_limit: int = 1000
    timeout_seconds: float = 8.0


@dataclass(frozen=True, slots=True)
class SigningConfig:
    """
    认证查询的签名方式：外部命令从 stdin 读取待签名数据，向 stdout 输出签名。
    未配置时发送普通（仅 Bearer）查询。
    """

    command: str | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    dir: str | None = None
    backup_count: int = 14


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    data_dir:
      - 站点根目录（metadata/、comments/、.polis/ 都在这里）
    base_url:
      - 本站公开地址，host 即本站域名
    sqlite_path:
      - 同步状态库路径，默认 <data_dir>/.polis/sync.sqlite3
    """

    data_dir: str
    base_url: str
    poll_interval_seconds: int
    discovery: DiscoveryConfig | None
    signing: SigningConfig
    remote_timeout_seconds: float
    sqlite_path: str
    post_comment_hook: str | None
    render_command: str | None
    logging: LoggingConfig
    broadcast_queue_size: int = 16

    @property
    def local_domain(self) -> str:
        return extract_domain(self.base_url)

    @property
    def discovery_domain(self) -> str:
        if self.discovery is None:
            return ""
        return extract_domain(self.discovery.url)

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)

    def discovery_key(self) -> str:
        if self.discovery is None:
            return ""
        return self.resolve_env(self.discovery.key_env) or ""

    def log_dir(self) -> str:
        d = self.logging.dir or os.path.join(".polis", "logs")
        if os.path.isabs(d):
            return d
        return os.path.join(self.data_dir, d)


def load_config(config_path: str) -> AppConfig:
    """
    JSON 配置，顶层结构（示意）：
    {
      "data_dir": "./site",
      "base_url": "https://alice.example.com",
      "poll_interval_seconds": 30,
      "discovery": { "url": "https://ds.example.com", "key_env": "POLIS_DISCOVERY_KEY" },
      "signing": { "command": null },
      "remote": { "timeout_seconds": 8 },
      "state": { "sqlite_path": null },
      "hooks": { "post_comment": null },
      "render": { "command": null },
      "logging": { "dir": ".polis/logs", "backup_count": 14 },
      "broadcast": { "queue_size": 16 }
    }

    相对的 data_dir 以配置文件所在目录为基准。
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")

    base_dir = os.path.dirname(os.path.abspath(config_path))
    data_dir = str(root.get("data_dir") or ".")
    if not os.path.isabs(data_dir):
        data_dir = os.path.normpath(os.path.join(base_dir, data_dir))

    base_url = (_get_str(root, "base_url", "") or "").strip()
    poll_interval_seconds = _get_int(root, "poll_interval_seconds", 30)

    discovery_cfg: DiscoveryConfig | None = None
    if isinstance(root.get("discovery"), dict):
        ds = _require_dict(root["discovery"], where="$.discovery")
        url = (_get_str(ds, "url", "") or "").strip()
        if url:
            discovery_cfg = DiscoveryConfig(
                url=url,
                key_env=str(ds.get("key_env") or "POLIS_DISCOVERY_KEY"),
                query_limit=max(1, _get_int(ds, "query_limit", 1000)),
                timeout_seconds=_get_float(ds, "timeout_seconds", 8.0),
            )

    signing = _require_dict(root.get("signing", {}), where="$.signing")
    remote = _require_dict(root.get("remote", {}), where="$.remote")
    state = _require_dict(root.get("state", {}), where="$.state")
    hooks = _require_dict(root.get("hooks", {}), where="$.hooks")
    render = _require_dict(root.get("render", {}), where="$.render")
    logging_raw = _require_dict(root.get("logging", {}), where="$.logging")
    broadcast = _require_dict(root.get("broadcast", {}), where="$.broadcast")

    sqlite_path = state.get("sqlite_path") or os.path.join(data_dir, ".polis", "sync.sqlite3")

    return AppConfig(
        data_dir=data_dir,
        base_url=base_url,
        poll_interval_seconds=poll_interval_seconds,
        discovery=discovery_cfg,
        signing=SigningConfig(command=_get_str(signing, "command", None)),
        remote_timeout_seconds=_get_float(remote, "timeout_seconds", 8.0),
        sqlite_path=str(sqlite_path),
        post_comment_hook=_get_str(hooks, "post_comment", None),
        render_command=_get_str(render, "command", None),
        logging=LoggingConfig(
            dir=_get_str(logging_raw, "dir", None),
            backup_count=max(0, _get_int(logging_raw, "backup_count", 14)),
        ),
        broadcast_queue_size=max(1, _get_int(broadcast, "queue_size", 16)),
    )
