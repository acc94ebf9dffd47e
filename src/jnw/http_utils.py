from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def header(self, name: str) -> str | None:
        """
        大小写不敏感地读取响应头；同名多值时返回第一个。
        """
        wanted = name.lower()
        for k, v in self.headers.items():
            if k.lower() == wanted:
                return v
        return None


def _collect_headers(raw_headers: Any) -> dict[str, str]:
    # 同名头（如多个 Set-Cookie）只保留第一个
    headers: dict[str, str] = {}
    if raw_headers is None:
        return headers
    for k, v in raw_headers.items():
        headers.setdefault(k, v)
    return headers


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），供 SessionClient 访问通知服务。

    约定：
    - 任何 HTTP 状态码（包括 4xx/5xx）都返回 HttpResponse，由调用方解释状态
    - 只有网络层失败（DNS、连接、超时）才抛出 OSError
    - 固定短超时、统一 User-Agent，不做重试
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 5.0,
        user_agent: str = "jira-notification-watcher/0",
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self._request("GET", url, headers=headers, body=None)

    def post(self, url: str, *, body: bytes, headers: Mapping[str, str] | None = None) -> HttpResponse:
        return self._request("POST", url, headers=headers, body=body)

    def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None,
        body: bytes | None,
    ) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))

        req = urllib.request.Request(url=url, data=body, headers=request_headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:  # noqa: S310
                return HttpResponse(
                    status=getattr(resp, "status", 200),
                    url=resp.geturl(),
                    headers=_collect_headers(resp.headers),
                    body=resp.read(),
                )
        except urllib.error.HTTPError as e:
            # urllib 把 4xx/5xx 当异常抛出，这里还原成普通响应
            try:
                error_body = e.read()
            finally:
                e.close()
            return HttpResponse(
                status=e.code,
                url=e.geturl() or url,
                headers=_collect_headers(e.headers),
                body=error_body or b"",
            )
