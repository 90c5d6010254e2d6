"""
Tests for the client synchronization layer.

LoopbackTransport wires a SessionClient straight into an in-process
RealtimeGateway so joins, broadcasts and reconnects run end to end.
"""

import asyncio
import itertools
import json
import socket

import pytest
import websockets
from planning_poker.client import (
    BaseTransport, ConnectionStatus, LocalIdentityStore, SERVER_TIMEOUT_MESSAGE,
    SessionClient, StoredIdentity, WebSocketTransport
)
from planning_poker.connections import ConnectionTracker
from planning_poker.registry import SessionRegistry
from planning_poker.storage import MemoryStore
from planning_poker.ws.server import RealtimeGateway

_connection_ids = itertools.count(1)


class LoopbackSocket:
    def __init__(self, transport, connection_id):
        self.transport = transport
        self.connection_id = connection_id

    async def send_text(self, text):
        if self.transport.connection_id != self.connection_id:
            raise ConnectionError("socket closed")
        self.transport.client.handle_message(json.loads(text))


class LoopbackTransport(BaseTransport):
    def __init__(self, gateway):
        self.gateway = gateway
        self.client = None
        self.connection_id = None
        self.sent = []

    @property
    def connected(self):
        return self.connection_id is not None

    async def open(self):
        connection_id = f"conn-{next(_connection_ids)}"
        self.client.on_transport_connecting()
        self.connection_id = connection_id
        await self.gateway.connect(connection_id, LoopbackSocket(self, connection_id))
        self.client.on_transport_connected()

    async def drop(self, notify_server=True):
        connection_id = self.connection_id
        self.connection_id = None
        self.client.on_transport_disconnected()
        if notify_server:
            await self.gateway.disconnect(connection_id, 1006)

    async def send(self, message):
        if not self.connected:
            raise ConnectionError("not connected")
        self.sent.append(message)
        await self.gateway.handle_raw(self.connection_id, json.dumps(message))

    async def reconnect(self):
        await self.open()

    async def close(self):
        if self.connected:
            await self.drop()


class SilentTransport(BaseTransport):
    """Connected, but the server never answers."""

    def __init__(self):
        self.sent = []

    @property
    def connected(self):
        return True

    async def send(self, message):
        self.sent.append(message)

    async def reconnect(self):
        pass


@pytest.fixture
def gateway():
    return RealtimeGateway(SessionRegistry(MemoryStore()), ConnectionTracker())


async def open_client(gateway, identity_store=None, **kwargs):
    transport = LoopbackTransport(gateway)
    client = SessionClient(transport, identity_store, **kwargs)
    transport.client = client
    await transport.open()
    return client, transport


def participant_names(gateway, session_id):
    return [p.name for p in gateway.registry.get(session_id).participants.values()]


@pytest.mark.asyncio
async def test_create_session(gateway, tmp_path):
    store = LocalIdentityStore(tmp_path / "identity.json")
    client, transport = await open_client(gateway, store)
    assert client.connection_status == ConnectionStatus.CONNECTED
    assert client.connection_id == transport.connection_id

    assert await client.create_session("Alice", deck_type="tshirt")

    assert client.joined
    assert client.me["name"] == "Alice"
    assert client.session_view["deck_type"] == "tshirt"
    saved = store.load()
    assert saved.player_name == "Alice"
    assert saved.session_id == client.session_id
    assert saved.participant_id == transport.connection_id


@pytest.mark.asyncio
async def test_join_session_mirrors_broadcasts(gateway):
    alice, _ = await open_client(gateway)
    await alice.create_session("Alice")
    bob, _ = await open_client(gateway)

    assert await bob.join_session(alice.session_id, "Bob")

    for client in (alice, bob):
        assert [p["name"] for p in client.session_view["participants"]] == ["Alice", "Bob"]
    assert bob.me["name"] == "Bob"
    assert not bob.manual_join_required


@pytest.mark.asyncio
async def test_join_unknown_session_fails(gateway):
    client, _ = await open_client(gateway)

    assert not await client.join_session("missing1", "Alice")

    assert client.last_error_code == "SESSION_NOT_FOUND"
    assert not client.joined
    assert not client.join_pending


@pytest.mark.asyncio
async def test_join_times_out_without_reply():
    client = SessionClient(SilentTransport(), join_timeout=0.05)

    assert not await client.join_session("abc12345", "Alice")

    assert client.last_error == SERVER_TIMEOUT_MESSAGE
    assert not client.join_pending
    assert client.pending_join_deadline is None
    assert client.session_id is None


@pytest.mark.asyncio
async def test_duplicate_join_is_suppressed():
    transport = SilentTransport()
    client = SessionClient(transport)

    first = asyncio.create_task(client.join_session("abc12345", "Alice", timeout=0.2))
    await asyncio.sleep(0)
    assert client.join_pending

    assert not await client.join_session("abc12345", "Alice")
    assert not await client.create_session("Alice")
    assert len(transport.sent) == 1

    assert not await first


@pytest.mark.asyncio
async def test_error_reply_ends_pending_join():
    client = SessionClient(SilentTransport(), join_timeout=5)

    task = asyncio.create_task(client.join_session("abc12345", "Alice"))
    await asyncio.sleep(0)
    client.handle_message({"type": "error", "code": "SESSION_NOT_FOUND", "message": "Session not found."})

    assert not await asyncio.wait_for(task, 1)
    assert client.last_error == "Session not found."


@pytest.mark.asyncio
async def test_join_without_connection():
    client = SessionClient()
    assert not await client.join_session("abc12345", "Alice")
    assert client.last_error == "Not connected to server"


@pytest.mark.asyncio
async def test_auto_rejoin_after_reconnect(gateway):
    alice, transport = await open_client(gateway)
    await alice.create_session("Alice")
    session_id = alice.session_id
    old_connection = transport.connection_id

    await transport.drop()
    assert alice.connection_status == ConnectionStatus.DISCONNECTED
    assert alice.previous_connection_id == old_connection

    await transport.reconnect()
    assert await alice._reconnect_task

    assert alice.joined
    assert alice.session_id == session_id
    assert list(gateway.registry.get(session_id).participants) == [transport.connection_id]
    assert alice.previous_connection_id is None


@pytest.mark.asyncio
async def test_rejoin_replaces_half_open_connection(gateway):
    alice, transport = await open_client(gateway)
    await alice.create_session("Alice")
    old_connection = transport.connection_id

    # Server never noticed the drop, and the old socket has gone quiet since
    await transport.drop(notify_server=False)
    gateway.tracker.on_disconnect(old_connection)
    await transport.reconnect()
    await alice._reconnect_task

    assert transport.sent[-1]["previous_participant_id"] == old_connection
    assert participant_names(gateway, alice.session_id) == ["Alice"]


@pytest.mark.asyncio
async def test_restart_rejoins_from_stored_identity(gateway, tmp_path):
    store = LocalIdentityStore(tmp_path / "identity.json")
    first, first_transport = await open_client(gateway, store)
    await first.create_session("Alice", is_watcher=True)
    session_id = first.session_id
    await first_transport.close()

    second, second_transport = await open_client(gateway, LocalIdentityStore(tmp_path / "identity.json"))
    assert second.session_id == session_id
    assert await second._reconnect_task

    assert second.joined
    assert second.is_watcher
    assert participant_names(gateway, session_id) == ["Alice"]


@pytest.mark.asyncio
async def test_remembered_session_that_no_longer_exists(gateway, tmp_path):
    store = LocalIdentityStore(tmp_path / "identity.json")
    store.save(StoredIdentity(player_name="Alice", session_id="gone1234"))

    client, _ = await open_client(gateway, store)
    assert not await client._reconnect_task

    assert client.manual_join_required
    assert client.session_id is None
    assert store.load().session_id is None
    assert store.load().player_name == "Alice"


@pytest.mark.asyncio
async def test_auto_reconnect_gives_up_after_window():
    transport = SilentTransport()
    client = SessionClient(transport, join_timeout=0.05, auto_reconnect_timeout=0.2, retry_delay=0.01)
    client.session_id = "abc12345"
    client.participant_name = "Alice"

    assert not await client.auto_reconnect()

    assert client.manual_join_required
    assert client.session_id == "abc12345"
    assert len(transport.sent) >= 2
    assert all(m["type"] == "join-session" for m in transport.sent)


@pytest.mark.asyncio
async def test_start_auto_reconnect_is_single_flight():
    client = SessionClient(SilentTransport(), join_timeout=0.05, auto_reconnect_timeout=0.1, retry_delay=0.01)
    client.session_id = "abc12345"
    client.participant_name = "Alice"

    task = client.start_auto_reconnect()
    assert client.start_auto_reconnect() is task
    await task


@pytest.mark.asyncio
async def test_visibility_changes(gateway):
    client, transport = await open_client(gateway)
    await client.create_session("Alice")

    await client.on_visibility_change(False)
    await client.on_visibility_change(True)
    assert [m["type"] for m in transport.sent[-2:]] == ["background", "resume"]

    await transport.drop()
    await client.on_visibility_change(True)
    await client._reconnect_task

    assert client.connection_status == ConnectionStatus.CONNECTED
    assert client.joined
    assert participant_names(gateway, client.session_id) == ["Alice"]


def test_malformed_identity_is_discarded(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text(json.dumps({"player_name": "", "session_id": 42}))

    client = SessionClient(identity_store=LocalIdentityStore(path))

    assert client.participant_name is None
    assert client.session_id is None
    assert not path.exists()


@pytest.mark.asyncio
async def test_commands_need_a_session(gateway):
    client, transport = await open_client(gateway)
    assert not await client.cast_vote("5")
    assert client.last_error == "Not in a session"
    assert transport.sent == []


@pytest.mark.asyncio
async def test_rename_is_validated_locally(gateway, tmp_path):
    store = LocalIdentityStore(tmp_path / "identity.json")
    client, transport = await open_client(gateway, store)
    await client.create_session("Alice")
    sent = len(transport.sent)

    assert not await client.rename("   ")
    assert not await client.rename("x" * 51)
    assert len(transport.sent) == sent

    assert await client.rename("  Alicia ")
    assert client.participant_name == "Alicia"
    assert store.load().player_name == "Alicia"


@pytest.mark.asyncio
async def test_role_toggle_follows_server(gateway):
    client, _ = await open_client(gateway)
    await client.create_session("Alice")

    await client.toggle_role()
    assert client.is_watcher
    assert client.me["is_watcher"]


@pytest.mark.asyncio
async def test_round_with_consensus(gateway):
    alice, _ = await open_client(gateway)
    await alice.create_session("Alice")
    bob, _ = await open_client(gateway)
    await bob.join_session(alice.session_id, "Bob")

    await alice.cast_vote("8")
    await bob.cast_vote("8")
    assert bob.session_view["votes"] == {}
    assert bob.consensus is None

    await alice.reveal_votes()
    assert bob.consensus == "8"
    assert bob.statistics()["average"] == 8.0

    await bob.reset_round()
    assert alice.consensus is None
    assert alice.statistics() is None


@pytest.mark.asyncio
async def test_views_for_other_sessions_are_ignored(gateway):
    client, _ = await open_client(gateway)
    await client.create_session("Alice")
    view = client.session_view

    client.handle_message({"type": "vote-cast", "session": {"id": "other123", "participants": []}})
    assert client.session_view is view


@pytest.mark.asyncio
async def test_listeners_see_every_message(gateway):
    seen = []
    client, _ = await open_client(gateway)
    client.add_listener(lambda message: seen.append(message["type"]))

    await client.create_session("Alice")
    await client.ping()

    assert seen == ["session-created", "pong"]
    assert client.last_pong is not None


@pytest.mark.asyncio
async def test_leave_session_forgets_it(gateway, tmp_path):
    store = LocalIdentityStore(tmp_path / "identity.json")
    client, _ = await open_client(gateway, store)
    await client.create_session("Alice")
    session_id = client.session_id

    assert await client.leave_session()

    assert client.session_id is None
    assert not client.joined
    assert store.load().session_id is None
    assert gateway.registry.get(session_id).participants == {}


@pytest.mark.asyncio
async def test_websocket_transport_feeds_client():
    async def handler(ws, *args):
        await ws.send(json.dumps({"type": "connected", "connection_id": "srv-1"}))
        async for raw in ws:
            if json.loads(raw)["type"] == "ping":
                await ws.send(json.dumps({"type": "pong", "timestamp": 1.0}))

    async with websockets.serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        client = SessionClient()
        transport = WebSocketTransport(f"ws://127.0.0.1:{port}", client, heartbeat_interval=0.05)
        client.transport = transport
        runner = asyncio.create_task(transport.run())

        for _ in range(100):
            if client.last_pong is not None:
                break
            await asyncio.sleep(0.02)

        assert client.connection_id == "srv-1"
        assert client.connection_status == ConnectionStatus.CONNECTED
        assert client.last_pong is not None

        await transport.close()
        await asyncio.wait_for(runner, 2)

    assert client.connection_status == ConnectionStatus.DISCONNECTED
    assert client.connection_id is None


@pytest.mark.asyncio
async def test_websocket_transport_send_while_disconnected():
    transport = WebSocketTransport("ws://127.0.0.1:9", SessionClient())
    with pytest.raises(ConnectionError):
        await transport.send({"type": "ping"})


def test_websocket_transport_built_outside_a_loop_wakes_on_reconnect():
    with socket.socket() as spare:
        spare.bind(("127.0.0.1", 0))
        port = spare.getsockname()[1]

    attempts = []
    client = SessionClient()
    client.on_transport_connecting = lambda: attempts.append(len(attempts) + 1)
    transport = WebSocketTransport(f"ws://127.0.0.1:{port}", client, initial_backoff=30)

    async def drive():
        runner = asyncio.create_task(transport.run())
        for _ in range(100):
            if attempts:
                break
            await asyncio.sleep(0.02)
        await asyncio.sleep(0.1)

        # the backoff is 30s; only the wake-up can trigger a second attempt this soon
        await transport.reconnect()
        for _ in range(100):
            if len(attempts) >= 2:
                break
            await asyncio.sleep(0.02)

        await transport.close()
        await asyncio.wait_for(runner, 5)

    asyncio.run(drive())
    assert len(attempts) >= 2
    assert not transport.connected


@pytest.mark.asyncio
async def test_unrelated_error_leaves_pending_join_alone():
    client = SessionClient(SilentTransport(), join_timeout=5)

    task = asyncio.create_task(client.join_session("abc12345", "Alice"))
    await asyncio.sleep(0)
    client.handle_message({"type": "error", "code": "INVALID_NAME", "message": "Name must be between 1 and 50 characters"})
    await asyncio.sleep(0)
    assert client.join_pending
    assert not task.done()

    client.handle_message({"type": "error", "code": "INVALID_EVENT", "message": "Invalid event data"})
    assert not await asyncio.wait_for(task, 1)
    assert not client.join_pending
