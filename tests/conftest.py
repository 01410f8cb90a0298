"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用可手动推进的假定时器代替事件循环的 ``call_later``，
用记录型出站通道代替真实 WebSocket，使房间协调逻辑可以同步、确定地测试。
"""
from __future__ import annotations

import os
import random
from collections.abc import Callable
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RESOLVE_HOSTNAMES", "false")
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")

from app.schemas.messages import OutboundEvent  # noqa: E402
from app.services.coordinator import RoomCoordinator  # noqa: E402


# ── 假定时器 ──────────────────────────────────────────────────────────

class FakeTimerHandle:
    """模拟 ``asyncio.TimerHandle``。"""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock:
    """手动推进时间的定时器工厂，签名与 ``loop.call_later`` 一致。"""

    def __init__(self) -> None:
        self.now: float = 0.0
        self.handles: list[FakeTimerHandle] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        """推进时间并按到期顺序触发未取消的定时器。"""
        self.now += seconds
        due = sorted(
            (h for h in self.handles if not h.cancelled and not h.fired and h.when <= self.now),
            key=lambda h: h.when,
        )
        for handle in due:
            if handle.cancelled:
                continue
            handle.fired = True
            handle.callback(*handle.args)

    @property
    def pending(self) -> list[FakeTimerHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]


# ── 记录型出站通道 ────────────────────────────────────────────────────

class RecordingSink:
    """记录所有收到的出站事件。"""

    def __init__(self) -> None:
        self.events: list[OutboundEvent] = []

    def send(self, event: OutboundEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.event for e in self.events]

    def of(self, name: str) -> list[OutboundEvent]:
        return [e for e in self.events if e.event == name]

    def last(self, name: str) -> OutboundEvent:
        matches = self.of(name)
        assert matches, f"没有收到 {name} 事件，实际: {self.names()}"
        return matches[-1]

    def clear(self) -> None:
        self.events.clear()


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def coordinator(clock: FakeClock) -> RoomCoordinator:
    """使用假定时器和固定随机种子的协调服务。"""

    async def _resolve(ip: str) -> str:
        return f"host-{ip}"

    return RoomCoordinator(
        idle_minutes=10,
        call_later=clock.call_later,
        rng=random.Random(42),
        resolve_host=_resolve,
    )


@pytest.fixture()
def connect(coordinator: RoomCoordinator) -> Callable[..., tuple[Any, RecordingSink]]:
    """建立一个模拟连接，返回 ``(session, sink)``。"""
    counter = {"n": 0}

    def _connect(client_ip: str = "10.0.0.1") -> tuple[Any, RecordingSink]:
        counter["n"] += 1
        sink = RecordingSink()
        session = coordinator.open_session(f"s{counter['n']}", client_ip, sink)
        return session, sink

    return _connect
