import pytest

from conftest import make_connection


@pytest.mark.asyncio
async def test_broadcast_skips_excluded_connection(manager, project):
    alice = make_connection(project, "alice@x.io")
    bob = make_connection(project, "bob@x.io")
    await manager.join(alice)
    await manager.join(bob)

    delivered = await manager.broadcast(project["id"], "project-message", {"message": "hi"}, exclude=alice)

    assert delivered == 1
    assert alice.websocket.sent == []
    assert bob.websocket.sent == [{"event": "project-message", "data": {"message": "hi"}}]


@pytest.mark.asyncio
async def test_rooms_are_keyed_by_project(manager, fake_db):
    p1 = fake_db.add_project(name="one")
    p2 = fake_db.add_project(name="two")
    alice = make_connection(p1, "alice@x.io")
    bob = make_connection(p2, "bob@x.io")
    await manager.join(alice)
    await manager.join(bob)

    await manager.broadcast(p1["id"], "project-message", {"message": "only p1"})

    assert len(alice.websocket.sent) == 1
    assert bob.websocket.sent == []
    assert await manager.members(p1["id"]) == [alice]
    assert await manager.members(p2["id"]) == [bob]


@pytest.mark.asyncio
async def test_failed_send_drops_connection(manager, project):
    alice = make_connection(project, "alice@x.io")
    bob = make_connection(project, "bob@x.io")
    await manager.join(alice)
    await manager.join(bob)
    bob.websocket.broken = True

    delivered = await manager.broadcast(project["id"], "project-message", {"message": "hi"})

    assert delivered == 1
    assert await manager.members(project["id"]) == [alice]


@pytest.mark.asyncio
async def test_leave_is_idempotent(manager, project):
    alice = make_connection(project, "alice@x.io")
    await manager.join(alice)
    await manager.leave(alice)
    await manager.leave(alice)

    assert await manager.members(project["id"]) == []
    delivered = await manager.broadcast(project["id"], "project-message", {"message": "anyone?"})
    assert delivered == 0


@pytest.mark.asyncio
async def test_close_all_closes_every_socket(manager, project):
    conns = [make_connection(project, f"user{i}@x.io") for i in range(3)]
    for conn in conns:
        await manager.join(conn)

    await manager.close_all()

    assert all(conn.websocket.closed_with == 1001 for conn in conns)
    assert await manager.members(project["id"]) == []
