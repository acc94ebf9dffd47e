from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, Protocol, TypeVar

from .models import Notification, compute_delta


logger = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationClient(Protocol):
    def fetch_unseen_count(self) -> int: ...

    def fetch_notifications(self) -> tuple[Notification, ...]: ...


class Channel(Generic[T]):
    """
    无缓冲的会合通道：send 阻塞直到消费者 receive 取走该条数据。

    close 之后 receive 返回 None，迭代结束；不允许再 send。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._item: T | None = None
        self._has_item = False
        self._taken = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, item: T) -> None:
        with self._cond:
            while self._has_item and not self._closed:
                self._cond.wait()
            if self._closed:
                raise RuntimeError("send on closed channel")
            self._item = item
            self._has_item = True
            ticket = self._taken + 1
            self._cond.notify_all()
            while self._taken < ticket and not self._closed:
                self._cond.wait()

    def receive(self, timeout: float | None = None) -> T | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._has_item and not self._closed:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if not self._has_item:
                return None
            item = self._item
            self._item = None
            self._has_item = False
            self._taken += 1
            self._cond.notify_all()
            return item

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.receive()
            if item is None:
                return
            yield item


class PollState(enum.Enum):
    COUNT_PROBE = "count_probe"
    LIST_FETCH = "list_fetch"


@dataclass(frozen=True, slots=True)
class Transition:
    state: PollState
    snapshot: tuple[Notification, ...]
    count: int | None
    delta: tuple[Notification, ...] = ()


def advance(
    state: PollState,
    client: NotificationClient,
    snapshot: tuple[Notification, ...],
    count: int | None,
) -> Transition:
    """
    状态机的单步转移：
    - COUNT_PROBE：只查未读数，变化时记录新值并进入 LIST_FETCH，否则原地不动
    - LIST_FETCH：拉全量列表，与旧快照求差得到 delta，快照整体替换，回到 COUNT_PROBE

    client 抛出的异常原样向上传播。
    """
    if state is PollState.COUNT_PROBE:
        new_count = client.fetch_unseen_count()
        if new_count != count:
            return Transition(state=PollState.LIST_FETCH, snapshot=snapshot, count=new_count)
        return Transition(state=PollState.COUNT_PROBE, snapshot=snapshot, count=count)

    notifications = tuple(client.fetch_notifications())
    delta = compute_delta(snapshot, notifications)
    return Transition(state=PollState.COUNT_PROBE, snapshot=notifications, count=count, delta=delta)


@dataclass(slots=True)
class NotificationWorker:
    """
    轮询 worker：单线程驱动 COUNT_PROBE / LIST_FETCH 两状态循环，把新增通知推送到 output。

    - 每一步之后都 sleep 固定间隔（包括“无变化”的一步）
    - 任一步（fetch、send、sleep）出错即停止循环：记录 error、关闭 output、记录日志、置位 done，
      最后调用一次 on_fatal(error)，由调用方决定是否退出进程
    """

    client: NotificationClient
    output: Channel[tuple[Notification, ...]]
    done: threading.Event
    snapshot: tuple[Notification, ...]
    state: PollState = PollState.COUNT_PROBE
    count: int | None = None
    error: Exception | None = None
    sleep: Callable[[float], None] = time.sleep
    on_fatal: Callable[[Exception], None] | None = None
    steps: int = 0

    @classmethod
    def create(
        cls,
        client: NotificationClient,
        output: Channel[tuple[Notification, ...]],
        done: threading.Event,
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_fatal: Callable[[Exception], None] | None = None,
    ) -> NotificationWorker:
        """
        同步拉取一次通知列表作为初始快照；失败直接抛给调用方，不产生半成品 worker。
        """
        snapshot = tuple(client.fetch_notifications())
        return cls(
            client=client,
            output=output,
            done=done,
            snapshot=snapshot,
            sleep=sleep,
            on_fatal=on_fatal,
        )

    def step(self) -> tuple[Notification, ...]:
        t = advance(self.state, self.client, self.snapshot, self.count)
        self.state = t.state
        self.snapshot = t.snapshot
        self.count = t.count
        self.steps += 1
        return t.delta

    def start(self, interval_seconds: float) -> None:
        logger.info(
            "worker start: interval_seconds=%s snapshot_size=%d",
            interval_seconds,
            len(self.snapshot),
        )
        while True:
            state_before = self.state
            try:
                delta = self.step()
                logger.debug("worker step: id=%d state=%s next=%s", self.steps, state_before.value, self.state.value)
                if delta:
                    logger.info("new notifications: count=%d", len(delta))
                    self.output.send(delta)
                self.sleep(interval_seconds)
            except Exception as e:  # noqa: BLE001
                self.error = e
                break

        self.output.close()
        logger.error(
            "worker stopped: steps=%d state=%s error=%s: %s",
            self.steps,
            self.state.value,
            type(self.error).__name__,
            self.error,
        )
        self.done.set()
        if self.on_fatal is not None:
            self.on_fatal(self.error)


new_worker = NotificationWorker.create
