"""
Integration tests for the audit trail.
"""
import logging
from datetime import timedelta

from sqlalchemy import func, select

from vaultshare.app.core.context import ClientInfo
from vaultshare.app.core.timeutils import utcnow
from vaultshare.app.models.audit_event import AuditEvent
from vaultshare.app.models.enums import AuditAction, AuditStatus, TargetType
from vaultshare.app.services.audit import AuditActor, AuditService


async def test_event_records_actor_and_client(db, audit):
    actor = AuditActor(id=7, username="alice", role="premium")
    await audit.log(
        AuditAction.FILE_UPLOAD,
        AuditStatus.SUCCESS,
        actor=actor,
        target=42,
        target_type=TargetType.FILE,
        details={"filename": "a.txt"},
        client=ClientInfo(ip_address="10.0.0.1", user_agent="curl/8"),
    )

    events, total = await audit.query()
    assert total == 1
    event = events[0]
    assert event.actor_id == 7
    assert event.actor_username == "alice"
    assert event.target == "42"
    assert event.target_type is TargetType.FILE
    assert event.details == {"filename": "a.txt"}
    assert event.ip_address == "10.0.0.1"
    assert event.size_bytes > 0


async def test_missing_actor_is_anonymous(db, audit):
    await audit.log(AuditAction.LOGIN_FAILED, AuditStatus.FAILED)
    events, _ = await audit.query()
    assert events[0].actor_id is None
    assert events[0].actor_username == "anonymous"


async def test_retention_by_count_keeps_newest(db):
    audit = AuditService(max_events=3)
    for i in range(5):
        await audit.log(AuditAction.LOGOUT, AuditStatus.SUCCESS, details={"n": i})

    events, total = await audit.query()
    assert total == 3
    assert sorted(e.details["n"] for e in events) == [2, 3, 4]


async def test_retention_by_bytes(db):
    audit = AuditService(max_bytes=1000)
    for i in range(20):
        await audit.log(AuditAction.LOGOUT, AuditStatus.SUCCESS, details={"n": i, "pad": "x" * 50})

    stored = await db.scalar(select(func.sum(AuditEvent.size_bytes)))
    assert stored <= 1000

    events, total = await audit.query(limit=100)
    assert 0 < total < 20
    assert events[0].details["n"] == 19


async def test_retention_by_bytes_drops_only_the_oldest(db):
    audit = AuditService(max_bytes=1000)
    for i in range(20):
        await audit.log(AuditAction.LOGOUT, AuditStatus.SUCCESS, details={"n": i, "pad": "x" * 50})

    rows = (await db.execute(select(AuditEvent.details, AuditEvent.size_bytes))).all()
    kept = sorted(details["n"] for details, _ in rows)
    assert kept == list(range(20 - len(kept), 20))
    # the newest evicted event would not have fitted
    stored = sum(size for _, size in rows)
    assert stored + max(size for _, size in rows) > 1000


async def test_retention_below_bounds_keeps_everything(db):
    audit = AuditService(max_events=3, max_bytes=10_000)
    for i in range(3):
        await audit.log(AuditAction.LOGOUT, AuditStatus.SUCCESS, details={"n": i})

    _, total = await audit.query()
    assert total == 3


async def test_write_failure_is_swallowed(caplog):
    def broken_factory():
        raise RuntimeError("database unavailable")

    audit = AuditService(session_factory=broken_factory)
    with caplog.at_level(logging.ERROR, logger="vaultshare.app.services.audit"):
        await audit.log(AuditAction.FILE_DELETE, AuditStatus.SUCCESS)

    assert "Failed to write audit event FILE_DELETE/SUCCESS" in caplog.text


async def test_query_filters(db, audit):
    await audit.log(AuditAction.LOGIN_SUCCESS, AuditStatus.SUCCESS, actor=AuditActor(1, "Alice", "guest"))
    await audit.log(AuditAction.LOGIN_FAILED, AuditStatus.FAILED, actor=AuditActor(2, "bob", "guest"))
    await audit.log(AuditAction.LOGIN_FAILED, AuditStatus.DENIED, actor=AuditActor(1, "Alice", "guest"))

    _, total = await audit.query(action=AuditAction.LOGIN_FAILED)
    assert total == 2

    events, total = await audit.query(actor="ALI")
    assert total == 2
    assert {e.actor_username for e in events} == {"Alice"}

    _, total = await audit.query(action=AuditAction.LOGIN_FAILED, status=AuditStatus.DENIED)
    assert total == 1

    _, total = await audit.query(start=utcnow() + timedelta(minutes=1))
    assert total == 0


async def test_query_is_newest_first_and_paginated(db, audit):
    for i in range(5):
        await audit.log(AuditAction.LOGOUT, AuditStatus.SUCCESS, details={"n": i})

    first, total = await audit.query(page=1, limit=2)
    second, _ = await audit.query(page=2, limit=2)
    assert total == 5
    assert [e.details["n"] for e in first] == [4, 3]
    assert [e.details["n"] for e in second] == [2, 1]
