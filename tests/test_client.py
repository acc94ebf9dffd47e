import json
import socket
import threading
from dataclasses import dataclass, field
from http.client import BadStatusLine

import pytest

from jnw.client import (
    DEFAULT_IDENTITY_URL,
    NOTIFICATION_COUNT_PATH,
    NOTIFICATIONS_PATH,
    connect,
)
from jnw.errors import ConfigError, DecodeError, HostUnreachable, InvalidCredentials, TransportError
from jnw.http_utils import HttpClient, HttpResponse


HOST = "https://example.atlassian.net"
COUNT_URL = HOST + NOTIFICATION_COUNT_PATH
LIST_URL = HOST + NOTIFICATIONS_PATH


def _resp(status: int = 200, body: object = None, headers: dict | None = None) -> HttpResponse:
    raw = b"" if body is None else (body if isinstance(body, bytes) else json.dumps(body).encode("utf-8"))
    return HttpResponse(status=status, url="", headers=headers or {}, body=raw)


@dataclass
class FakeHttp:
    """
    纯内存 HTTP：
    - routes 按 (method, url) 给出响应队列，队列只剩最后一个时重复返回它
    - 队列元素是异常时直接抛出，用于模拟网络失败
    - calls 记录每次请求，便于断言请求顺序与 header
    """

    routes: dict[tuple[str, str], list]
    calls: list[tuple[str, str, dict, bytes | None]] = field(default_factory=list)

    def get(self, url: str, *, headers=None) -> HttpResponse:  # noqa: ANN001
        return self._handle("GET", url, headers, None)

    def post(self, url: str, *, body: bytes, headers=None) -> HttpResponse:  # noqa: ANN001
        return self._handle("POST", url, headers, body)

    def _handle(self, method: str, url: str, headers, body) -> HttpResponse:  # noqa: ANN001
        self.calls.append((method, url, dict(headers or {}), body))
        queue = self.routes[(method, url)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def urls(self, method: str | None = None) -> list[str]:
        return [u for m, u, _, _ in self.calls if method is None or m == method]


def _login_routes(cookie: str = "session=s1") -> dict[tuple[str, str], list]:
    return {
        ("GET", HOST): [_resp(200)],
        ("POST", DEFAULT_IDENTITY_URL): [_resp(200, {}, {"Set-Cookie": cookie})],
    }


def test_connect_normalizes_host_and_encodes_credentials() -> None:
    client = connect(HOST + "//", "me@example.com", "pw", http=FakeHttp(routes={}))
    assert client.host == HOST
    assert json.loads(client.credentials) == {"username": "me@example.com", "password": "pw"}
    assert client.session is None


@pytest.mark.parametrize("host", ["", "   ", "example.atlassian.net", "ftp://example.net", "https://"])
def test_connect_rejects_bad_host(host: str) -> None:
    with pytest.raises(ConfigError):
        connect(host, "me", "pw", http=FakeHttp(routes={}))


def test_connect_rejects_empty_username() -> None:
    with pytest.raises(ConfigError):
        connect(HOST, "", "pw", http=FakeHttp(routes={}))


def test_login_stores_session_cookie() -> None:
    http = FakeHttp(routes=_login_routes())
    client = connect(HOST, "me", "pw", http=http)
    client.login()

    assert client.session == "session=s1"
    assert http.urls() == [HOST, DEFAULT_IDENTITY_URL]
    method, _, headers, body = http.calls[1]
    assert method == "POST"
    assert headers["Content-Type"] == "application/json"
    assert json.loads(body) == {"username": "me", "password": "pw"}


def test_login_host_not_found_stops_before_credentials() -> None:
    http = FakeHttp(routes={("GET", HOST): [_resp(404)]})
    client = connect(HOST, "me", "pw", http=http)

    with pytest.raises(HostUnreachable):
        client.login()
    assert http.urls("POST") == []
    assert client.session is None


def test_login_forbidden_is_invalid_credentials() -> None:
    routes = _login_routes()
    routes[("POST", DEFAULT_IDENTITY_URL)] = [_resp(403, headers={"Set-Cookie": "nope=1"})]
    client = connect(HOST, "me", "bad", http=FakeHttp(routes=routes))

    with pytest.raises(InvalidCredentials):
        client.login()
    assert client.session is None


def test_login_identity_not_found_is_host_unreachable() -> None:
    routes = _login_routes()
    routes[("POST", DEFAULT_IDENTITY_URL)] = [_resp(404)]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))

    with pytest.raises(HostUnreachable):
        client.login()


def test_login_network_failure_is_transport_error() -> None:
    client = connect(HOST, "me", "pw", http=FakeHttp(routes={("GET", HOST): [ConnectionRefusedError("refused")]}))
    with pytest.raises(TransportError) as ei:
        client.login()
    assert ei.value.status is None


def test_login_without_cookie_is_decode_error() -> None:
    routes = _login_routes()
    routes[("POST", DEFAULT_IDENTITY_URL)] = [_resp(200, {})]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    with pytest.raises(DecodeError):
        client.login()
    assert client.session is None


def test_fetch_unseen_count_sends_session_headers() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(200, {"count": 4})]
    http = FakeHttp(routes=routes)
    client = connect(HOST, "me", "pw", http=http)
    client.login()

    assert client.fetch_unseen_count() == 4
    _, url, headers, _ = http.calls[-1]
    assert url == COUNT_URL
    assert headers["Cookie"] == "session=s1"
    assert headers["Connection"] == "keep-alive"


def test_fetch_logs_in_lazily_when_no_session() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(200, {"count": 0})]
    http = FakeHttp(routes=routes)
    client = connect(HOST, "me", "pw", http=http)

    assert client.fetch_unseen_count() == 0
    assert http.urls() == [HOST, DEFAULT_IDENTITY_URL, COUNT_URL]


def test_forbidden_triggers_relogin_and_retry_with_fresh_session() -> None:
    routes = _login_routes(cookie="session=fresh")
    routes[("GET", LIST_URL)] = [
        _resp(403),
        _resp(200, {"data": [{"title": "hello", "metadata": {"user": {"atlassianId": "a", "name": "A"}}}]}),
    ]
    http = FakeHttp(routes=routes)
    client = connect(HOST, "me", "pw", http=http)
    client.session = "session=stale"

    notifications = client.fetch_notifications()

    assert [n.title for n in notifications] == ["hello"]
    assert http.urls() == [LIST_URL, HOST, DEFAULT_IDENTITY_URL, LIST_URL]
    assert http.calls[0][2]["Cookie"] == "session=stale"
    assert http.calls[-1][2]["Cookie"] == "session=fresh"
    assert client.session == "session=fresh"


def test_failed_relogin_is_not_raised_but_final_status_is() -> None:
    routes = {
        ("GET", HOST): [_resp(200)],
        ("POST", DEFAULT_IDENTITY_URL): [_resp(403)],
        ("GET", COUNT_URL): [_resp(403)],
    }
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.session = "session=stale"

    with pytest.raises(TransportError) as ei:
        client.fetch_unseen_count()
    assert ei.value.status == 403
    assert isinstance(client.last_login_error, InvalidCredentials)
    assert client.session == "session=stale"


def test_fetch_server_error_is_transport_error() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(500, b"oops")]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    with pytest.raises(TransportError) as ei:
        client.fetch_unseen_count()
    assert ei.value.status == 500


@pytest.mark.parametrize("body", [b"not json", [1, 2], {"count": "3"}, {"count": True}])
def test_fetch_unseen_count_decode_errors(body) -> None:  # noqa: ANN001
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(200, body)]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    with pytest.raises(DecodeError):
        client.fetch_unseen_count()


def test_fetch_notifications_decode_error_on_bad_data() -> None:
    routes = _login_routes()
    routes[("GET", LIST_URL)] = [_resp(200, {"data": {"title": "x"}})]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    with pytest.raises(DecodeError):
        client.fetch_notifications()


def test_fetch_notifications_without_data_is_empty() -> None:
    routes = _login_routes()
    routes[("GET", LIST_URL)] = [_resp(200, {})]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    assert client.fetch_notifications() == ()


def test_is_logged_in_only_false_on_forbidden() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(500), _resp(403)]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    assert client.is_logged_in() is False

    client.login()
    assert client.is_logged_in() is True
    assert client.is_logged_in() is False


@pytest.mark.parametrize("identity_url", ["", "not-a-url", "ftp://id.example.net/login", "https://"])
def test_connect_rejects_bad_identity_url(identity_url: str) -> None:
    with pytest.raises(ConfigError):
        connect(HOST, "me", "pw", http=FakeHttp(routes={}), identity_url=identity_url)


def test_http_protocol_error_is_transport_error() -> None:
    http = FakeHttp(routes={("GET", HOST): [BadStatusLine("GARBAGE")]})
    client = connect(HOST, "me", "pw", http=http)
    with pytest.raises(TransportError) as ei:
        client.login()
    assert isinstance(ei.value.__cause__, BadStatusLine)


def test_is_logged_in_false_on_http_protocol_error() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [BadStatusLine("GARBAGE")]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    assert client.is_logged_in() is False


def _garbage_status_server() -> tuple[socket.socket, threading.Thread]:
    """
    本地 TCP 服务：每个连接读一次请求后回一行非法状态行。
    """
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(4)
    srv.settimeout(0.1)

    def serve() -> None:
        while True:
            try:
                conn, _ = srv.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with conn:
                conn.recv(65536)
                conn.sendall(b"GARBAGE\r\n\r\n")

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    return srv, t


def test_garbage_status_line_from_real_server_is_transport_error() -> None:
    srv, t = _garbage_status_server()
    try:
        base = f"http://127.0.0.1:{srv.getsockname()[1]}"
        client = connect(base, "me", "pw", http=HttpClient(timeout_seconds=5), identity_url=base + "/login")
        with pytest.raises(TransportError):
            client.login()
    finally:
        srv.close()
        t.join(timeout=5)


def test_missing_count_is_zero_like_missing_data() -> None:
    routes = _login_routes()
    routes[("GET", COUNT_URL)] = [_resp(200, {})]
    client = connect(HOST, "me", "pw", http=FakeHttp(routes=routes))
    client.login()
    assert client.fetch_unseen_count() == 0


def test_failed_lazy_login_is_not_repeated_on_forbidden() -> None:
    routes = {
        ("GET", HOST): [_resp(200)],
        ("POST", DEFAULT_IDENTITY_URL): [_resp(403)],
        ("GET", COUNT_URL): [_resp(403)],
    }
    http = FakeHttp(routes=routes)
    client = connect(HOST, "me", "bad", http=http)

    with pytest.raises(TransportError) as ei:
        client.fetch_unseen_count()
    assert ei.value.status == 403
    assert isinstance(ei.value.__cause__, InvalidCredentials)
    assert http.urls() == [HOST, DEFAULT_IDENTITY_URL, COUNT_URL]
