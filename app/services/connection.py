"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

单条 WebSocket 连接的出站通道。

``send()`` 只做同步入队，真正的网络写入由 ``run_writer()`` 协程按 FIFO
顺序完成。房间状态修改期间因此不会发生任何 I/O，同一房间内消息的到达顺序
也与广播调用顺序一致。

队列有上限：客户端停止读取时，超出部分的事件会被丢弃并记录告警。
"""
from __future__ import annotations

import asyncio
from typing import Protocol

from fastapi import WebSocket

from app.core.logging import get_logger
from app.schemas.messages import OutboundEvent

logger = get_logger(__name__)


class EventSink(Protocol):
    """可以接收出站事件的对象。"""

    def send(self, event: OutboundEvent) -> None: ...


class WebSocketSink:
    """把出站事件排队并写入 WebSocket。

    Attributes:
        websocket: 底层 FastAPI WebSocket 连接。
    """

    def __init__(self, websocket: WebSocket, max_pending: int = 256) -> None:
        self.websocket = websocket
        self._queue: asyncio.Queue[OutboundEvent | None] = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self._dropped = 0

    def send(self, event: OutboundEvent) -> None:
        """事件入队；连接已关闭或队列已满时丢弃。"""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            # 同一段积压只告警一次
            if self._dropped == 0:
                logger.warning("出站队列已满，开始丢弃事件 | maxsize=%d", self._queue.maxsize)
            self._dropped += 1
            return
        if self._dropped:
            logger.info("出站队列已恢复 | 共丢弃 %d 个事件", self._dropped)
            self._dropped = 0

    def close(self) -> None:
        """通知写协程在清空队列后退出。"""
        if self._closed:
            return
        self._closed = True
        # 队列已满时写协程必然未阻塞在 get()，清空后自行退出
        if not self._queue.full():
            self._queue.put_nowait(None)

    async def run_writer(self) -> None:
        """按入队顺序把事件写入 WebSocket，直到 ``close()`` 或写入失败。"""
        while True:
            event = await self._queue.get()
            if event is None:
                break
            try:
                await self.websocket.send_text(event.to_frame())
            except Exception as e:
                logger.warning("发送失败，停止写入: %s", e)
                self._closed = True
                break
            if self._closed and self._queue.empty():
                break
