from __future__ import annotations

import json
import urllib.parse
from dataclasses import dataclass
from http.client import HTTPException
from typing import Any

from .errors import ConfigError, DecodeError, HostUnreachable, InvalidCredentials, JnwError, TransportError
from .http_utils import HttpClient, HttpResponse
from .models import Notification

NOTIFICATIONS_PATH = "/gateway/api/notification-log/api/2/notifications"
NOTIFICATION_COUNT_PATH = "/gateway/api/notification-log/api/2/notifications/count/unseen"
DEFAULT_IDENTITY_URL = "https://id.atlassian.com/id/rest/login"


def _require_http_url(value: str, *, what: str) -> str:
    if not value:
        raise ConfigError(f"{what} must not be empty")
    parsed = urllib.parse.urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"{what} must be an absolute http(s) URL, got {value!r}")
    return value


def normalize_host(host: str) -> str:
    return _require_http_url((host or "").strip().rstrip("/"), what="host")


@dataclass(slots=True)
class SessionClient:
    """
    通知服务的会话客户端：封装探活、登录与两个读接口。

    会话（cookie）只由本对象持有：
    - login 成功时写入
    - 认证请求收到 403 时，尽力重新登录一次并用新会话重发同一请求
    - 重新登录本身的失败不向 fetch 调用方抛出，只记录在 last_login_error

    本类不写日志、不退出进程，所有错误以异常形式返回给调用方。
    """

    host: str
    credentials: bytes
    http: HttpClient
    identity_url: str = DEFAULT_IDENTITY_URL
    session: str | None = None
    last_login_error: JnwError | None = None

    def login(self) -> None:
        self._check_host()

        resp = self._send(
            "POST",
            self.identity_url,
            headers={"Content-Type": "application/json"},
            body=self.credentials,
        )
        if resp.status == 404:
            raise HostUnreachable(self.identity_url)
        if resp.status == 403:
            raise InvalidCredentials()
        if resp.status >= 400:
            raise TransportError(f"login failed: status={resp.status} url={self.identity_url}", status=resp.status)

        cookie = resp.header("Set-Cookie")
        if not cookie:
            raise DecodeError(f"login response carried no session cookie: url={self.identity_url}")
        self.session = cookie

    def is_logged_in(self) -> bool:
        """
        轻量会话探测：仅当服务端返回 403（或尚无会话）时视为未登录。

        这是启发式判断，网络错误同样返回 False。仅用于诊断（CLI --once 会打印结果），
        认证请求本身不依赖它，而是在收到 403 时重新登录。
        """
        if self.session is None:
            return False
        try:
            resp = self.http.get(self.host + NOTIFICATION_COUNT_PATH, headers=self._session_headers())
        except (OSError, HTTPException):
            return False
        return resp.status != 403

    def fetch_unseen_count(self) -> int:
        data = self._get_json(NOTIFICATION_COUNT_PATH)
        # 缺少 count 与缺少 data 一样按空处理
        count = data.get("count", 0)
        if isinstance(count, bool) or not isinstance(count, int):
            raise DecodeError(f"Expected integer at $.count, got {type(count).__name__}")
        return count

    def fetch_notifications(self) -> tuple[Notification, ...]:
        data = self._get_json(NOTIFICATIONS_PATH)
        items = data.get("data")
        if items is None:
            return ()
        if not isinstance(items, list):
            raise DecodeError(f"Expected list at $.data, got {type(items).__name__}")
        return tuple(Notification.from_json_dict(it, where=f"$.data[{i}]") for i, it in enumerate(items))

    def _check_host(self) -> None:
        resp = self._send("GET", self.host)
        if resp.status == 404:
            raise HostUnreachable(self.host)

    def _relogin(self) -> None:
        try:
            self.login()
        except JnwError as e:
            self.last_login_error = e
        else:
            self.last_login_error = None

    def _session_headers(self) -> dict[str, str]:
        return {"Cookie": self.session or "", "Connection": "keep-alive"}

    def _authenticated_get(self, path: str) -> HttpResponse:
        url = self.host + path
        lazy_login_failed = False
        if self.session is None:
            self._relogin()
            lazy_login_failed = self.last_login_error is not None

        resp = self._send("GET", url, headers=self._session_headers())
        if resp.status == 403 and not lazy_login_failed:
            self._relogin()
            resp = self._send("GET", url, headers=self._session_headers())

        if resp.status >= 400:
            # 本次调用里首次登录已失败时，把登录错误挂在 __cause__ 上
            cause = self.last_login_error if lazy_login_failed else None
            raise TransportError(f"request failed: status={resp.status} url={url}", status=resp.status) from cause
        return resp

    def _get_json(self, path: str) -> dict[str, Any]:
        resp = self._authenticated_get(path)
        try:
            data = resp.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON response: url={resp.url} body={resp.body[:200]!r}") from e
        if not isinstance(data, dict):
            raise DecodeError(f"Expected object at $, got {type(data).__name__}: url={resp.url}")
        return data

    def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
    ) -> HttpResponse:
        try:
            if method == "POST":
                return self.http.post(url, body=body or b"", headers=headers)
            return self.http.get(url, headers=headers)
        except (OSError, HTTPException) as e:
            raise TransportError(f"{method} {url} failed: {type(e).__name__}: {e}") from e


def connect(
    host: str,
    username: str,
    password: str,
    *,
    http: HttpClient | None = None,
    identity_url: str = DEFAULT_IDENTITY_URL,
) -> SessionClient:
    """
    构造 SessionClient：校验并规范化 host（去掉末尾斜杠），预先编码登录请求体。

    不发起任何网络请求。
    """
    normalized = normalize_host(host)
    if not username:
        raise ConfigError("username must not be empty")
    identity_url = _require_http_url((identity_url or "").strip(), what="identity_url")

    credentials = json.dumps({"username": username, "password": password or ""}, ensure_ascii=False).encode("utf-8")
    return SessionClient(
        host=normalized,
        credentials=credentials,
        http=http if http is not None else HttpClient(),
        identity_url=identity_url,
    )
