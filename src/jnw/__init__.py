"""
Jira Notification Watcher (jnw)

轮询 Jira/Atlassian 通知服务：先用未读数做廉价探测，变化时再拉全量列表，
与上一次快照求差，把新增通知推送给消费者。
"""

from .client import SessionClient, connect
from .models import Notification, NotificationAuthor, compute_delta
from .worker import Channel, NotificationWorker, PollState, advance, new_worker

__all__ = [
    "Channel",
    "Notification",
    "NotificationAuthor",
    "NotificationWorker",
    "PollState",
    "SessionClient",
    "advance",
    "compute_delta",
    "connect",
    "new_worker",
]
