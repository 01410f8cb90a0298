"""
app.services.coordinator
~~~~~~~~~~~~~~~~~~~~~~~~

房间协调服务的组合根。

在 FastAPI lifespan 中构造一次并挂载到 ``app.state.coordinator``，
持有唯一的 ``RoomStore`` 及依赖它的各个组件，所有在线会话也在这里登记。

- ``open_session()``        → 新连接建立会话
- ``close_session()``       → 连接断开，执行退出清理
- ``delete_room()``         → 创建者删除房间并通知成员
- ``notify_rooms_changed()`` → 向所有连接广播房间列表变更
"""
from __future__ import annotations

import random

from app.core.logging import get_logger
from app.core.settings import Settings
from app.schemas.messages import RoomDeleted, RoomsUpdate
from app.services.admin_query import AdminQuery
from app.services.connection import EventSink
from app.services.expiry import CallLater, ExpiryScheduler
from app.services.host_lookup import HostResolver, make_resolver
from app.services.relay import MessageRelay
from app.services.room_store import RoomStore
from app.services.session import SessionManager

logger = get_logger(__name__)


class RoomCoordinator:
    """进程内房间协调服务。

    Attributes:
        scheduler: 空闲删除调度器。
        store: 房间仓库（唯一可信来源）。
        relay: 消息转发器。
        admin: 只读查询。
        resolve_host: 反向主机名解析函数。
    """

    def __init__(
        self,
        idle_minutes: float = 10,
        pin_max_attempts: int = 1000,
        call_later: CallLater | None = None,
        rng: random.Random | None = None,
        resolve_host: HostResolver | None = None,
    ) -> None:
        self.scheduler = ExpiryScheduler(idle_minutes=idle_minutes, call_later=call_later)
        self.store = RoomStore(self.scheduler, pin_max_attempts=pin_max_attempts, rng=rng)
        self.relay = MessageRelay(self.store)
        self.admin = AdminQuery(self.store)
        self.resolve_host: HostResolver = resolve_host or make_resolver(enabled=False, timeout=1.0)
        self._sessions: dict[str, SessionManager] = {}
        self.store.add_expiry_listener(self._on_room_expired)

    @classmethod
    def from_settings(cls, settings: Settings) -> RoomCoordinator:
        """按全局配置构造。"""
        return cls(
            idle_minutes=settings.ROOM_IDLE_MINUTES,
            pin_max_attempts=settings.PIN_MAX_ATTEMPTS,
            resolve_host=make_resolver(
                enabled=settings.RESOLVE_HOSTNAMES,
                timeout=settings.HOSTNAME_LOOKUP_TIMEOUT,
            ),
        )

    # ── 会话 ──────────────────────────────────────────────────────────

    def open_session(self, session_id: str, client_ip: str, sink: EventSink) -> SessionManager:
        """为新连接创建会话并登记出站通道。"""
        session = SessionManager(session_id=session_id, client_ip=client_ip, coordinator=self)
        self._sessions[session_id] = session
        self.relay.register(session_id, sink)
        logger.info("客户端已连接 | ip=%s | 在线连接: %d", client_ip, len(self._sessions))
        return session

    def close_session(self, session_id: str) -> None:
        """连接断开：等价于退出房间，然后丢弃会话。重复调用无副作用。"""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.close()
        logger.info("客户端已断开 | ip=%s | 在线连接: %d", session.client_ip, len(self._sessions))

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ── 房间 ──────────────────────────────────────────────────────────

    def delete_room(self, pin: str, requester_fingerprint: str) -> list[str]:
        """创建者删除房间，向原成员发送 ``room_deleted`` 并重置其会话。

        Raises:
            RoomNotFoundError: PIN 不存在。
            UnauthorizedError: 请求方不是创建者。
        """
        member_ids = self.store.delete_room(pin, requester_fingerprint)
        event = RoomDeleted(data=pin)
        for session_id in member_ids:
            self.relay.send(session_id, event)
            member = self._sessions.get(session_id)
            if member is not None:
                member.on_room_deleted(pin)
        return member_ids

    def notify_rooms_changed(self) -> None:
        """房间列表发生变化，通知所有连接刷新。"""
        self.relay.broadcast_all(RoomsUpdate())

    def _on_room_expired(self, pin: str) -> None:
        self.notify_rooms_changed()
