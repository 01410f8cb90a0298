"""
app.services.pin_allocator
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间 PIN 分配器：在 100000–999999 中均匀随机取值，与现存房间冲突时重新抽样。
"""
from __future__ import annotations

import random
from collections.abc import Callable

from app.core.errors import PinExhaustedError

PIN_MIN: int = 100000
PIN_MAX: int = 999999


def is_valid_pin(pin: str) -> bool:
    """PIN 必须是 6 位 ASCII 数字且不以 0 开头。"""
    return len(pin) == 6 and pin.isascii() and pin.isdigit() and pin[0] != "0"


class PinAllocator:
    """生成在存活房间中唯一的 6 位 PIN。

    Attributes:
        max_attempts: 单次分配的最大抽样次数，超过则抛出 ``PinExhaustedError``。
    """

    def __init__(
        self,
        is_taken: Callable[[str], bool],
        max_attempts: int = 1000,
        rng: random.Random | None = None,
    ) -> None:
        """
        Args:
            is_taken: 判断 PIN 是否已被占用（只读访问 RoomStore 的键集合）。
            max_attempts: 最大抽样次数。
            rng: 随机源，测试时可注入固定种子。
        """
        self._is_taken = is_taken
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()

    def allocate(self) -> str:
        """分配一个当前未被占用的 PIN。

        Raises:
            PinExhaustedError: 重试上限内所有抽样都已被占用。
        """
        for _ in range(self.max_attempts):
            pin = str(self._rng.randint(PIN_MIN, PIN_MAX))
            if not self._is_taken(pin):
                return pin
        raise PinExhaustedError()
