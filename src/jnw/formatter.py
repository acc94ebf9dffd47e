from __future__ import annotations

from typing import Iterable

from .models import Notification


def format_notification(notification: Notification) -> str:
    author = notification.author.name or notification.author.atlassian_id or "-"
    title = notification.title or "-"
    return f"[{notification.timestamp or '-'}] {author}: {title}"


def format_delta(delta: Iterable[Notification]) -> str:
    """
    一批新增通知的文本输出，每条一行。
    """
    items = list(delta)
    lines = [f"{len(items)} new notification(s)"]
    lines.extend("  " + format_notification(n) for n in items)
    return "\n".join(lines)
