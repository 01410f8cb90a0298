"""
app.core.errors
~~~~~~~~~~~~~~~

房间协调服务的业务异常体系。

服务层只负责抛出，``SessionManager`` 在命令边界统一捕获并转换为对应的
出站事件（``room_not_found`` / ``room_full`` / ``error``）。
所有异常都不会修改房间状态，也不会波及其他会话。
"""
from __future__ import annotations


class CoordinatorError(Exception):
    """所有房间协调异常的基类。

    Attributes:
        message: 返回给客户端的可读说明。
    """

    default_message: str = "请求处理失败"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnregisteredError(CoordinatorError):
    """在注册设备指纹之前调用了需要身份的操作。"""

    default_message = "尚未注册设备指纹，请刷新页面后重试。"


class SessionStateError(CoordinatorError):
    """当前会话状态不允许该操作（如重复注册不同指纹、在房间内再次加入）。"""


class RoomValidationError(CoordinatorError):
    """创建房间的参数不合法。"""

    default_message = "房间参数不合法"


class RoomNotFoundError(CoordinatorError):
    """PIN 对应的房间不存在。"""

    default_message = "房间不存在"


class RoomFullError(CoordinatorError):
    """房间人数已达上限。"""

    default_message = "房间已满"


class DeviceConflictError(CoordinatorError):
    """同一台物理设备已在启用了单设备限制的房间中。"""

    default_message = "每台设备只允许一个连接。"


class UnauthorizedError(CoordinatorError):
    """非房间创建者试图删除房间。"""

    default_message = "只有房间创建者可以删除房间。"


class PinExhaustedError(CoordinatorError):
    """在重试上限内没能找到空闲的 PIN。"""

    default_message = "暂时无法分配房间 PIN，请稍后重试。"
