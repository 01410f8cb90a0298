"""
app.api.ws
~~~~~~~~~~

WebSocket 会话端点 —— ``/ws``。

每条连接对应一个 ``SessionManager``。接收循环负责解析帧、对聊天消息限流并分发命令；
出站事件由 ``WebSocketSink`` 的写协程按顺序发送。连接断开（无论正常与否）
都会执行与 ``leave_room`` 相同的清理。

帧格式: ``{"event": "<名称>", "data": <载荷>}``
"""
from __future__ import annotations

import asyncio
import contextlib
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.schemas.messages import ErrorEvent, SendMessage, parse_command
from app.services.connection import WebSocketSink
from app.services.coordinator import RoomCoordinator
from app.services.host_lookup import extract_client_ip

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_session_endpoint(websocket: WebSocket) -> None:
    """WebSocket 会话端点。

    协议详见 ``app.schemas.messages``：入站命令包括 ``register_fingerprint`` /
    ``create_room`` / ``join_room`` / ``send_message`` / ``get_rooms`` /
    ``delete_room`` / ``leave_room``。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    session_id = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(session_id)

    try:
        coordinator: RoomCoordinator = websocket.app.state.coordinator
        await websocket.accept()

        client_ip = extract_client_ip(
            websocket.headers,
            websocket.client.host if websocket.client else None,
            trust_proxy_headers=settings.TRUST_PROXY_HEADERS,
        )
        sink = WebSocketSink(websocket, max_pending=settings.WS_SEND_QUEUE_SIZE)
        session = coordinator.open_session(session_id, client_ip, sink)
        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        writer = asyncio.create_task(sink.run_writer())

        try:
            while True:
                raw: str = await websocket.receive_text()
                try:
                    command = parse_command(raw)
                except ValidationError as e:
                    logger.warning("无法解析的消息帧: %s", e.errors(include_url=False)[:1])
                    sink.send(ErrorEvent.of("无法识别的消息"))
                    continue

                # 只对聊天消息限流，房间操作不受影响
                if isinstance(command, SendMessage) and not ws_limiter.is_allowed(session_id):
                    sink.send(ErrorEvent.of("消息发送太快啦，请慢一点~"))
                    continue

                await session.handle(command)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 异常: %s", e, exc_info=True)
        finally:
            coordinator.close_session(session_id)
            ws_limiter.remove_client(session_id)
            sink.close()
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
    finally:
        request_id_ctx_var.reset(token)
