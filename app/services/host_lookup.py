"""
app.services.host_lookup
~~~~~~~~~~~~~~~~~~~~~~~~

客户端地址提取与反向主机名解析（仅用于展示）。

解析在独立任务中进行，超时或失败时回退为 IP 本身，不会阻塞房间操作。
"""
from __future__ import annotations

import asyncio
import socket
from collections.abc import Awaitable, Callable, Mapping

from app.core.logging import get_logger

logger = get_logger(__name__)

HostResolver = Callable[[str], Awaitable[str]]

_IPV4_MAPPED_PREFIX: str = "::ffff:"


def extract_client_ip(
    headers: Mapping[str, str],
    peer_host: str | None,
    trust_proxy_headers: bool = True,
) -> str:
    """取客户端地址：优先 ``X-Forwarded-For`` 的第一项，其次是对端地址。"""
    raw = ""
    if trust_proxy_headers:
        raw = headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not raw:
        raw = peer_host or "unknown"
    if raw.startswith(_IPV4_MAPPED_PREFIX):
        raw = raw[len(_IPV4_MAPPED_PREFIX):]
    return raw.strip()


async def reverse_lookup(ip: str, timeout: float = 2.0) -> str:
    """反向解析主机名，失败时返回原 IP。"""
    loop = asyncio.get_running_loop()
    try:
        host, _ = await asyncio.wait_for(
            loop.getnameinfo((ip, 0), socket.NI_NAMEREQD),
            timeout=timeout,
        )
    except (OSError, ValueError, asyncio.TimeoutError) as e:
        logger.debug("反向解析失败，使用 IP | ip=%s | %s", ip, e)
        return ip
    return host or ip


def make_resolver(enabled: bool, timeout: float) -> HostResolver:
    """按配置构造主机名解析函数；关闭时直接返回 IP。"""

    async def _disabled(ip: str) -> str:
        return ip

    async def _resolve(ip: str) -> str:
        return await reverse_lookup(ip, timeout=timeout)

    return _resolve if enabled else _disabled
