from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import DecodeError


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise DecodeError(f"Expected object at {where}, got {type(value).__name__}")
    return value


def _get_str(d: Mapping[str, Any], key: str, *, where: str) -> str:
    v = d.get(key)
    if v is None:
        return ""
    if not isinstance(v, str):
        raise DecodeError(f"Expected string at {where}.{key}, got {type(v).__name__}")
    return v


@dataclass(frozen=True, slots=True)
class NotificationAuthor:
    atlassian_id: str
    name: str


@dataclass(frozen=True, slots=True)
class Notification:
    """
    通知服务返回的一条通知。

    所有字段参与相等比较（结构相等）；timestamp 保留服务端原始字符串，不做解析，
    避免格式差异导致同一条通知被判定为不同。
    """

    title: str
    users: Mapping[str, str]
    template: str
    timestamp: str
    author: NotificationAuthor

    def __hash__(self) -> int:
        return hash(self.fingerprint())

    def fingerprint(self) -> str:
        """
        内容指纹：覆盖全部字段，因此指纹相同当且仅当两条通知结构相等。
        """
        payload = json.dumps(self.to_json_dict(), ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def from_json_dict(cls, value: Any, *, where: str = "$") -> Notification:
        item = _require_dict(value, where=where)

        raw_users = item.get("users")
        users: dict[str, str] = {}
        if raw_users is not None:
            for k, v in _require_dict(raw_users, where=f"{where}.users").items():
                if not isinstance(v, str):
                    raise DecodeError(f"Expected string at {where}.users.{k}, got {type(v).__name__}")
                users[str(k)] = v

        metadata = _require_dict(item.get("metadata") or {}, where=f"{where}.metadata")
        user = _require_dict(metadata.get("user") or {}, where=f"{where}.metadata.user")

        return cls(
            title=_get_str(item, "title", where=where),
            users=users,
            template=_get_str(item, "template", where=where),
            timestamp=_get_str(item, "timestamp", where=where),
            author=NotificationAuthor(
                atlassian_id=_get_str(user, "atlassianId", where=f"{where}.metadata.user"),
                name=_get_str(user, "name", where=f"{where}.metadata.user"),
            ),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "users": dict(self.users),
            "template": self.template,
            "timestamp": self.timestamp,
            "metadata": {
                "user": {
                    "atlassianId": self.author.atlassian_id,
                    "name": self.author.name,
                }
            },
        }


def compute_delta(previous: Iterable[Notification], current: Iterable[Notification]) -> tuple[Notification, ...]:
    """
    计算 current 中新出现的通知（current - previous），保持 current 的原始顺序。

    只关心新增；previous 中存在而 current 中消失的通知不会体现在结果里。
    """
    seen = {n.fingerprint() for n in previous}
    return tuple(n for n in current if n.fingerprint() not in seen)
