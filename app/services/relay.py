"""
app.services.relay
~~~~~~~~~~~~~~~~~~

消息转发器 —— 维护会话 ID → 出站通道的映射，并按房间扇出事件。

扇出对象是调用那一刻已加入房间的会话（包含发送者本人），
不做过滤、去重或持久化。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.schemas.messages import OutboundEvent
from app.services.connection import EventSink
from app.services.room_store import RoomStore

logger = get_logger(__name__)


class MessageRelay:
    """按会话或房间投递出站事件。

    Attributes:
        store: 用于查询房间成员的房间仓库。
    """

    def __init__(self, store: RoomStore) -> None:
        self.store = store
        self._sinks: dict[str, EventSink] = {}

    def register(self, session_id: str, sink: EventSink) -> None:
        """登记一条连接的出站通道。"""
        self._sinks[session_id] = sink

    def unregister(self, session_id: str) -> None:
        """移除出站通道。"""
        self._sinks.pop(session_id, None)

    def send(self, session_id: str, event: OutboundEvent) -> bool:
        """向单个会话投递事件，会话不存在时返回 ``False``。"""
        sink = self._sinks.get(session_id)
        if sink is None:
            return False
        sink.send(event)
        return True

    def broadcast(self, pin: str, event: OutboundEvent) -> int:
        """向房间内所有成员投递事件，返回投递数。房间不存在时返回 0。"""
        room = self.store.get_room(pin)
        if room is None:
            return 0
        delivered = 0
        for session_id in list(room.participants):
            if self.send(session_id, event):
                delivered += 1
        logger.debug("房间广播 | pin=%s | event=%s | 送达 %d", pin, event.event, delivered)
        return delivered

    def broadcast_all(self, event: OutboundEvent) -> int:
        """向所有在线连接投递事件（如房间列表变更通知）。"""
        for sink in list(self._sinks.values()):
            sink.send(event)
        return len(self._sinks)
