from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .client import DEFAULT_IDENTITY_URL, SessionClient, connect
from .errors import ConfigError
from .http_utils import HttpClient


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        f = float(v)
    except Exception:
        return default
    if not math.isfinite(f):
        return default
    return f


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用配置。

    host:
      - Jira 站点地址，例如 https://example.atlassian.net
    username / username_env:
      - 登录用户名；配置文件中的 username 优先，其次读取 username_env 指向的环境变量
    password_env:
      - 密码所在的环境变量名（密码不落盘）
    poll_interval_seconds:
      - 每一步轮询之间的固定间隔，最小 1 秒
    timeout_seconds:
      - 单次 HTTP 请求超时
    """

    host: str
    identity_url: str
    username: str | None
    username_env: str | None
    password_env: str
    poll_interval_seconds: float
    timeout_seconds: float

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)

    def resolve_username(self) -> str | None:
        return self.username or self.resolve_env(self.username_env)


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式。

    JSON 顶层结构（示意）：
    {
      "host": "https://example.atlassian.net",
      "username_env": "JNW_USERNAME",
      "password_env": "JNW_PASSWORD",
      "poll_interval_seconds": 30
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")
    return AppConfig(
        host=str(root.get("host") or ""),
        identity_url=str(root.get("identity_url") or DEFAULT_IDENTITY_URL),
        username=_get_str(root, "username", None),
        username_env=_get_str(root, "username_env", "JNW_USERNAME"),
        password_env=str(root.get("password_env") or "JNW_PASSWORD"),
        poll_interval_seconds=max(1.0, _get_float(root, "poll_interval_seconds", 30.0)),
        timeout_seconds=_get_float(root, "timeout_seconds", 5.0),
    )


def build_client(config: AppConfig) -> SessionClient:
    """
    配置 -> SessionClient 的装配；用户名/密码只从环境变量读取（用户名可写在配置里）。
    """
    username = config.resolve_username()
    if not username:
        raise ConfigError(f"username not configured (set \"username\" or env {config.username_env})")
    password = config.resolve_env(config.password_env)
    if password is None:
        raise ConfigError(f"password env {config.password_env} is not set")

    http = HttpClient(timeout_seconds=config.timeout_seconds)
    return connect(config.host, username, password, http=http, identity_url=config.identity_url)
