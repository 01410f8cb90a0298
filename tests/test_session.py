"""
tests.test_session
~~~~~~~~~~~~~~~~~~

SessionManager 状态机 + RoomCoordinator 编排的单元测试。

所有会话都挂在带假定时器的协调服务上，出站事件由 ``RecordingSink`` 记录。
"""
from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from app.schemas.messages import InboundCommand, RoomLeft, parse_command
from app.services.session import SessionState


def cmd(event: str, data: Any = None) -> InboundCommand:
    """按线上帧格式构造入站命令。"""
    return parse_command(json.dumps({"event": event, "data": data}))


async def register(session: Any, fingerprint: str) -> None:
    await session.handle(cmd("register_fingerprint", {"fingerprint": fingerprint}))


async def create(session: Any, name: str = "Team", max_participants: Any = 2, one_per_machine: bool = True) -> str:
    await session.handle(cmd("create_room", {
        "name": name,
        "maxParticipants": max_participants,
        "oneConnectionPerMachine": one_per_machine,
    }))
    return session.coordinator.relay._sinks[session.session_id].last("room_created").data.pin


async def join(session: Any, pin: str, nickname: str) -> None:
    await session.handle(cmd("join_room", {"roomPin": pin, "nickname": nickname}))


# ── 注册 ──────────────────────────────────────────────────────────────

class TestRegistration:
    """测试指纹注册与 UNIDENTIFIED 状态下的限制。"""

    @pytest.mark.asyncio
    async def test_register_sends_creator_rooms_and_host_info(self, connect) -> None:
        """注册后应收到 creator_rooms，并在后台解析完成后收到 host_info。"""
        session, sink = connect("192.168.1.4")

        await register(session, "m1_chrome")
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert session.state is SessionState.IDENTIFIED
        assert sink.last("creator_rooms").data == []
        host_info = sink.last("host_info").data
        assert host_info.ip == "192.168.1.4"
        assert host_info.host == "host-192.168.1.4"
        assert host_info.fingerprint == "m1_chrome"

    @pytest.mark.asyncio
    async def test_creator_rooms_lists_own_rooms(self, connect) -> None:
        """回访设备注册后应看到自己创建的房间。"""
        admin, _ = connect()
        await register(admin, "m1")
        pin = await create(admin)

        returning, sink = connect()
        await register(returning, "m1")

        assert sink.last("creator_rooms").data == [pin]

    @pytest.mark.asyncio
    async def test_conflicting_fingerprint_rejected(self, connect) -> None:
        """重复注册不同指纹应报错且不改变身份。"""
        session, sink = connect()
        await register(session, "m1")
        sink.clear()

        await register(session, "m2")

        assert session.fingerprint == "m1"
        assert sink.names() == ["error"]

    @pytest.mark.asyncio
    async def test_same_fingerprint_twice_is_accepted(self, connect) -> None:
        """重复注册相同指纹不是错误。"""
        session, sink = connect()
        await register(session, "m1")
        await register(session, "m1")

        assert "error" not in sink.names()
        assert len(sink.of("creator_rooms")) == 2

    @pytest.mark.asyncio
    async def test_fingerprint_stored_verbatim(self, connect) -> None:
        """指纹是外部组件给出的不透明字符串，原样保存。"""
        session, sink = connect()
        await register(session, " m1_chrome ")

        assert session.fingerprint == " m1_chrome "
        assert "error" not in sink.names()

    @pytest.mark.asyncio
    async def test_blank_fingerprint_rejected(self, connect) -> None:
        session, sink = connect()
        await register(session, "   ")

        assert session.state is SessionState.UNIDENTIFIED
        assert sink.names() == ["error"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", [
        ("create_room", {"name": "x", "maxParticipants": 2}),
        ("join_room", {"roomPin": "123456", "nickname": "Bob"}),
        ("get_rooms", None),
        ("delete_room", "123456"),
    ])
    async def test_operations_require_identity(self, connect, coordinator, command) -> None:
        """未注册时 create/join/list/delete 都应返回 error 且不改变状态。"""
        session, sink = connect()

        await session.handle(cmd(*command))

        assert sink.names() == ["error"]
        assert "指纹" in sink.last("error").data.message
        assert len(coordinator.store) == 0
        assert session.state is SessionState.UNIDENTIFIED


# ── 创建 / 加入 ───────────────────────────────────────────────────────

class TestCreateAndJoin:
    """测试创建、加入与各种拒绝路径。"""

    @pytest.mark.asyncio
    async def test_create_room_replies_and_notifies_everyone(self, connect) -> None:
        """创建成功后请求方收到 room_created，所有连接收到 rooms_update。"""
        admin, admin_sink = connect()
        _, other_sink = connect()
        await register(admin, "m1")

        pin = await create(admin, name="Sala", max_participants="10", one_per_machine=False)

        created = admin_sink.last("room_created").data
        assert created.pin == pin
        assert created.name == "Sala"
        assert created.max_participants == 10
        assert created.one_connection_per_machine is False
        assert "rooms_update" in other_sink.names()

    @pytest.mark.asyncio
    async def test_create_room_with_capacity_below_two_fails(self, connect, coordinator) -> None:
        session, sink = connect()
        await register(session, "m1")

        await session.handle(cmd("create_room", {"name": "Solo", "maxParticipants": 1}))

        assert sink.names()[-1] == "error"
        assert len(coordinator.store) == 0

    @pytest.mark.asyncio
    async def test_join_broadcasts_to_room(self, connect) -> None:
        """加入成功后房间内成员收到 user_joined 与 participants_update。"""
        alice, alice_sink = connect()
        bob, bob_sink = connect()
        await register(alice, "m1")
        await register(bob, "m2")
        pin = await create(alice, one_per_machine=False)

        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        assert bob.state is SessionState.IN_ROOM
        assert alice_sink.last("user_joined").data.nickname == "Bob"
        participants = bob_sink.last("participants_update").data
        assert {p.nickname for p in participants} == {"Alice", "Bob"}

    @pytest.mark.asyncio
    async def test_join_unknown_pin(self, connect) -> None:
        session, sink = connect()
        await register(session, "m1")

        await join(session, "999999", "Bob")

        assert sink.names()[-1] == "room_not_found"
        assert session.state is SessionState.IDENTIFIED

    @pytest.mark.asyncio
    async def test_join_full_room(self, connect, coordinator) -> None:
        """第 N+1 个加入者收到 room_full，成员不变。"""
        sessions = [connect() for _ in range(3)]
        for i, (session, _) in enumerate(sessions):
            await register(session, f"dev{i}")
        pin = await create(sessions[0][0], max_participants=2, one_per_machine=False)

        await join(sessions[0][0], pin, "a")
        await join(sessions[1][0], pin, "b")
        await join(sessions[2][0], pin, "c")

        assert sessions[2][1].names()[-1] == "room_full"
        assert coordinator.store.get_room(pin).online_count == 2

    @pytest.mark.asyncio
    async def test_join_while_in_room_rejected(self, connect, coordinator) -> None:
        session, sink = connect()
        await register(session, "m1")
        pin_a = await create(session, name="A", one_per_machine=False)
        pin_b = await create(session, name="B", one_per_machine=False)
        await join(session, pin_a, "Alice")

        await join(session, pin_b, "Alice")

        assert sink.names()[-1] == "error"
        assert session.current_pin == pin_a
        assert coordinator.store.get_room(pin_b).is_empty

    @pytest.mark.asyncio
    async def test_device_conflict_reported_as_error(self, connect) -> None:
        """同一设备不同浏览器加入限制型房间时被拒绝，不同设备成功。"""
        chrome, _ = connect()
        firefox, firefox_sink = connect()
        other, other_sink = connect()
        await register(chrome, "abc_chromeX")
        await register(firefox, "abc_firefoxY")
        await register(other, "xyz_safari")
        pin = await create(chrome, max_participants=5, one_per_machine=True)

        await join(chrome, pin, "Chrome")
        await join(firefox, pin, "Firefox")

        assert firefox_sink.names()[-1] == "error"
        assert "一个连接" in firefox_sink.last("error").data.message
        assert firefox.state is SessionState.IDENTIFIED

        await join(other, pin, "Other")

        assert other.state is SessionState.IN_ROOM
        assert "error" not in other_sink.names()


# ── 消息转发 ──────────────────────────────────────────────────────────

class TestMessaging:
    """测试 send_message 的转发范围。"""

    @pytest.mark.asyncio
    async def test_message_reaches_everyone_in_room_including_sender(self, connect) -> None:
        alice, alice_sink = connect()
        bob, bob_sink = connect()
        outsider, outsider_sink = connect()
        for session, fp in ((alice, "a"), (bob, "b"), (outsider, "c")):
            await register(session, fp)
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        await alice.handle(cmd("send_message", {"author": "Alice", "message": "hola", "timestamp": 1700000000000}))

        for sink in (alice_sink, bob_sink):
            received = sink.last("receive_message").data
            assert received.author == "Alice"
            assert received.message == "hola"
            assert received.timestamp == 1700000000000
        assert outsider_sink.of("receive_message") == []

    @pytest.mark.asyncio
    async def test_message_outside_room_is_dropped(self, connect) -> None:
        session, sink = connect()
        await register(session, "a")
        sink.clear()

        await session.handle(cmd("send_message", {"author": "x", "message": "hi"}))

        assert sink.names() == []

    @pytest.mark.asyncio
    async def test_messages_keep_arrival_order(self, connect) -> None:
        alice, _ = connect()
        bob, bob_sink = connect()
        await register(alice, "a")
        await register(bob, "b")
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        for i in range(5):
            await alice.handle(cmd("send_message", {"author": "Alice", "message": str(i)}))

        assert [e.data.message for e in bob_sink.of("receive_message")] == ["0", "1", "2", "3", "4"]


# ── 退出 / 断开 ───────────────────────────────────────────────────────

class TestLeaveAndDisconnect:
    """测试退出与断开的幂等性。"""

    @pytest.mark.asyncio
    async def test_leave_notifies_requester_and_remaining(self, connect) -> None:
        alice, alice_sink = connect()
        bob, bob_sink = connect()
        await register(alice, "a")
        await register(bob, "b")
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")
        bob_sink.clear()

        await bob.handle(cmd("leave_room"))

        assert bob_sink.names()[-1] == "room_left"
        assert bob_sink.of("user_left") == []
        assert alice_sink.last("user_left").data.nickname == "Bob"
        assert [p.nickname for p in alice_sink.last("participants_update").data] == ["Alice"]
        assert bob.state is SessionState.IDENTIFIED

    @pytest.mark.asyncio
    async def test_leave_twice_is_noop(self, connect) -> None:
        alice, alice_sink = connect()
        bob, bob_sink = connect()
        await register(alice, "a")
        await register(bob, "b")
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        await bob.handle(cmd("leave_room"))
        bob_events = len(bob_sink.events)
        await bob.handle(cmd("leave_room"))

        assert len(alice_sink.of("user_left")) == 1
        assert len(bob_sink.events) == bob_events

    @pytest.mark.asyncio
    async def test_disconnect_after_leave_is_noop(self, connect, coordinator) -> None:
        alice, alice_sink = connect()
        bob, _ = connect()
        await register(alice, "a")
        await register(bob, "b")
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        await bob.handle(cmd("leave_room"))
        coordinator.close_session(bob.session_id)
        coordinator.close_session(bob.session_id)

        assert len(alice_sink.of("user_left")) == 1
        assert bob.state is SessionState.CLOSED
        assert coordinator.relay.send(bob.session_id, RoomLeft()) is False

    @pytest.mark.asyncio
    async def test_disconnect_acts_as_leave(self, connect, coordinator) -> None:
        """断开连接等价于退出房间，但不再给自己发 room_left。"""
        alice, alice_sink = connect()
        bob, bob_sink = connect()
        await register(alice, "a")
        await register(bob, "b")
        pin = await create(alice, one_per_machine=False)
        await join(alice, pin, "Alice")
        await join(bob, pin, "Bob")

        coordinator.close_session(bob.session_id)

        assert alice_sink.last("user_left").data.nickname == "Bob"
        assert "room_left" not in bob_sink.names()
        assert coordinator.store.get_room(pin).online_count == 1

    @pytest.mark.asyncio
    async def test_closed_session_ignores_commands(self, connect, coordinator) -> None:
        session, sink = connect()
        coordinator.close_session(session.session_id)

        await register(session, "a")

        assert session.fingerprint is None
        assert sink.names() == []


# ── 删除房间 ──────────────────────────────────────────────────────────

class TestDeleteRoom:
    """测试只有创建者才能删除房间。"""

    @pytest.mark.asyncio
    async def test_non_creator_cannot_delete(self, connect, coordinator) -> None:
        owner, _ = connect()
        intruder, intruder_sink = connect()
        await register(owner, "owner")
        await register(intruder, "intruder")
        pin = await create(owner)
        intruder_sink.clear()

        await intruder.handle(cmd("delete_room", pin))

        assert intruder_sink.names() == ["error"]
        assert pin in coordinator.store

    @pytest.mark.asyncio
    async def test_creator_deletes_and_members_are_notified(self, connect, coordinator) -> None:
        owner, owner_sink = connect()
        member, member_sink = connect()
        await register(owner, "owner")
        await register(member, "member")
        pin = await create(owner, one_per_machine=False)
        await join(member, pin, "Bob")

        await owner.handle(cmd("delete_room", pin))

        assert member_sink.last("room_deleted").data == pin
        assert owner_sink.last("room_deleted_success").data == pin
        assert "rooms_update" in member_sink.names()[member_sink.names().index("room_deleted"):]
        assert pin not in coordinator.store
        assert coordinator.admin.creator_rooms("owner") == []
        assert member.state is SessionState.IDENTIFIED

    @pytest.mark.asyncio
    async def test_member_can_leave_after_deletion_without_error(self, connect) -> None:
        owner, _ = connect()
        member, member_sink = connect()
        await register(owner, "owner")
        await register(member, "member")
        pin = await create(owner, one_per_machine=False)
        await join(member, pin, "Bob")
        await owner.handle(cmd("delete_room", pin))
        member_sink.clear()

        await member.handle(cmd("leave_room"))

        assert member_sink.names() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_room(self, connect) -> None:
        session, sink = connect()
        await register(session, "owner")

        await session.handle(cmd("delete_room", "123456"))

        assert sink.names()[-1] == "room_not_found"


# ── 端到端场景 ────────────────────────────────────────────────────────

class TestEndToEnd:
    """完整走一遍：创建 → 设备冲突 → 加入 → 断开 → 清空 → 列表。"""

    @pytest.mark.asyncio
    async def test_team_room_scenario(self, connect, coordinator, clock) -> None:
        m1_first, m1_first_sink = connect()
        m1_second, m1_second_sink = connect()
        m2, m2_sink = connect()
        await register(m1_first, "m1")
        await register(m1_second, "m1")
        await register(m2, "m2")

        pin = await create(m1_first, name="Team", max_participants=2, one_per_machine=True)
        assert len(pin) == 6 and pin.isdigit()
        await join(m1_first, pin, "Alice")

        # 同一设备的第二个会话被拒绝
        await join(m1_second, pin, "Alice2")
        assert m1_second_sink.names()[-1] == "error"

        # m2 成功加入，双方都看到两名成员，其中一名是创建者
        await join(m2, pin, "Bob")
        for sink in (m1_first_sink, m2_sink):
            participants = sink.last("participants_update").data
            assert len(participants) == 2
            assert [p.is_creator for p in participants].count(True) == 1
            assert next(p for p in participants if p.is_creator).nickname == "Alice"

        room = coordinator.store.get_room(pin)

        # m2 断开：剩一人，不布置定时器
        coordinator.close_session(m2.session_id)
        assert room.online_count == 1
        assert room.expiry_handle is None

        # 最后一人退出：房间清空，布置 10 分钟定时器
        await m1_first.handle(cmd("leave_room"))
        assert room.is_empty
        assert room.expiry_handle is not None
        assert clock.pending[-1].when == clock.now + 600

        # 过期前 m1 查询列表，isCreator 为 True
        await m1_first.handle(cmd("get_rooms"))
        listed = m1_first_sink.last("rooms_list").data
        assert [(r.pin, r.is_creator) for r in listed] == [(pin, True)]

        # 同一设备的其他会话同样是创建者；已断开的会话不再响应
        await m1_second.handle(cmd("get_rooms"))
        await m2.handle(cmd("get_rooms"))
        assert m1_second_sink.last("rooms_list").data[0].is_creator is True
        assert m2_sink.of("rooms_list") == []

        m3, m3_sink = connect()
        await register(m3, "m3")
        await m3.handle(cmd("get_rooms"))
        assert m3_sink.last("rooms_list").data[0].is_creator is False

        # 空闲窗口到期后房间被删除，所有在线连接收到 rooms_update
        m1_second_sink.clear()
        clock.advance(600)
        assert pin not in coordinator.store
        assert m1_second_sink.names() == ["rooms_update"]
