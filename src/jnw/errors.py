from __future__ import annotations


class JnwError(Exception):
    """所有可预期错误的基类。"""


class ConfigError(JnwError):
    """构造参数不合法（host/用户名等）。"""


class HostUnreachable(JnwError):
    """服务端对 host 探活或登录返回 404。"""

    def __init__(self, host: str) -> None:
        self.host = host
        super().__init__(f"unable to establish connection to the server, check URL spelling: {host}")


class InvalidCredentials(JnwError):
    """身份服务返回 403。"""

    def __init__(self) -> None:
        super().__init__("wrong username or password")


class TransportError(JnwError):
    """
    网络层失败或非预期的 HTTP 状态。

    status 为 None 表示请求没有拿到响应（DNS/连接/超时）。
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class DecodeError(JnwError):
    """响应体不是预期的 JSON 结构。"""
