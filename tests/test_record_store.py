"""
Tests for the record stores and audit sinks.

The SQLAlchemy store runs against a file-backed SQLite database so that two
sweeps racing on the same incident use separate connections.
"""

import asyncio
from datetime import timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import AuditAction, NotificationType
from src.core import ConfigurationException, ResourceNotFoundException, StoreWriteException
from src.infrastructure.database import build_session_maker, create_tables
from src.workflow.application import EscalationService
from src.workflow.domain import AuditEntry, Change, EscalationPolicy
from src.workflow.infrastructure import (
    InMemoryAuditSink, InMemoryRecordStore, SQLAlchemyAuditSink,
    SQLAlchemyRecordStore, StaticPolicyProvider
)

from tests.conftest import NOW, RecordingAuditSink, RecordingNotificationSink, make_incident


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'itsm.db'}")
    await create_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def sql_store(session_maker) -> SQLAlchemyRecordStore:
    return SQLAlchemyRecordStore(session_maker)


@pytest.fixture(params=["memory", "sqlalchemy"])
def any_store(request):
    if request.param == "memory":
        return InMemoryRecordStore()
    return request.getfixturevalue("sql_store")


def sweeper(store, notifier, audit, policy=None) -> EscalationService:
    return EscalationService(
        record_store=store,
        notification_sink=notifier,
        audit_sink=audit,
        policy_provider=StaticPolicyProvider(policy or EscalationPolicy()),
        clock=lambda: NOW
    )


class TestRecordStoreContract:
    """Behaviour shared by every record store."""

    @pytest.mark.asyncio
    async def test_round_trip_keeps_utc_timestamps(self, any_store):
        incident = make_incident("INC-1", title="Printer on fire", age=timedelta(hours=3))
        await any_store.save_incident(incident)

        stored = await any_store.get_incident("INC-1")

        assert stored.title == "Printer on fire"
        assert stored.created_at == NOW - timedelta(hours=3)
        assert stored.created_at.tzinfo is not None
        assert stored.created_at.utcoffset() == timezone.utc.utcoffset(None)

    @pytest.mark.asyncio
    async def test_missing_incident_is_none(self, any_store):
        assert await any_store.get_incident("NOPE") is None

    @pytest.mark.asyncio
    async def test_active_listing_excludes_resolved_and_closed(self, any_store):
        for incident_id, status in [("A", "open"), ("B", "in_progress"), ("C", "resolved"), ("D", "closed")]:
            await any_store.save_incident(make_incident(incident_id, status=status))

        active = await any_store.list_active_incidents()

        assert sorted(incident.id for incident in active) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_update_is_visible_to_next_read(self, any_store):
        await any_store.save_incident(make_incident("INC-1"))

        updated = await any_store.update_incident("INC-1", {"status": "in_progress", "assignee": "kim"})
        reread = await any_store.get_incident("INC-1")

        assert updated.status == "in_progress"
        assert reread.status == "in_progress"
        assert reread.assignee == "kim"

    @pytest.mark.asyncio
    async def test_update_missing_incident(self, any_store):
        with pytest.raises(ResourceNotFoundException):
            await any_store.update_incident("NOPE", {"status": "closed"})

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, any_store):
        await any_store.save_incident(make_incident("INC-1"))

        with pytest.raises(StoreWriteException):
            await any_store.update_incident("INC-1", {"severity": "sev1"})

    @pytest.mark.asyncio
    async def test_escalation_is_compare_and_set(self, any_store):
        await any_store.save_incident(make_incident("INC-1"))

        first = await any_store.escalate_incident("INC-1", NOW)
        second = await any_store.escalate_incident("INC-1", NOW + timedelta(minutes=1))

        assert first is not None
        assert first.escalated is True
        assert first.escalated_at == NOW
        assert second is None
        assert (await any_store.get_incident("INC-1")).escalated_at == NOW

    @pytest.mark.asyncio
    async def test_escalating_missing_incident(self, any_store):
        assert await any_store.escalate_incident("NOPE", NOW) is None

    @pytest.mark.asyncio
    async def test_default_assignee_never_overwrites(self, any_store):
        await any_store.save_incident(make_incident("FREE"))
        await any_store.save_incident(make_incident("OWNED", assignee="alice"))

        free = await any_store.escalate_incident("FREE", NOW, "duty-manager")
        owned = await any_store.escalate_incident("OWNED", NOW, "duty-manager")

        assert free.assignee == "duty-manager"
        assert owned.assignee == "alice"

    @pytest.mark.asyncio
    async def test_release_restores_previous_state(self, any_store):
        await any_store.save_incident(make_incident("INC-1"))
        await any_store.escalate_incident("INC-1", NOW, "duty-manager")

        released = await any_store.release_escalation("INC-1", None)
        stored = await any_store.get_incident("INC-1")

        assert released is True
        assert stored.escalated is False
        assert stored.escalated_at is None
        assert stored.assignee is None
        assert await any_store.release_escalation("INC-1", None) is False

    @pytest.mark.asyncio
    async def test_change_requests(self, any_store):
        await any_store.save_change(Change(id="CHG-1", status="draft", title="Rotate certs"))

        updated = await any_store.update_change("CHG-1", {"status": "pending"})

        assert updated.status == "pending"
        assert (await any_store.get_change("CHG-1")).title == "Rotate certs"
        assert await any_store.get_change("CHG-2") is None

    @pytest.mark.asyncio
    async def test_racing_sweeps_escalate_once(self, any_store):
        """Two sweeps over the same store: one winner, one notification."""
        await any_store.save_incident(make_incident("INC-1", age=timedelta(hours=30)))
        first_notifier, second_notifier = RecordingNotificationSink(), RecordingNotificationSink()
        audit = RecordingAuditSink()

        reports = await asyncio.gather(
            sweeper(any_store, first_notifier, audit).run_sweep(),
            sweeper(any_store, second_notifier, audit).run_sweep(),
        )

        escalations = (
            first_notifier.of_type(NotificationType.ESCALATION)
            + second_notifier.of_type(NotificationType.ESCALATION)
        )
        assert len(escalations) == 1
        assert sum(len(report.escalated_ids) for report in reports) == 1
        assert len(audit.entries) == 1


class TestInMemoryRecordStore:

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = InMemoryRecordStore([make_incident("INC-1")])

        incident = await store.get_incident("INC-1")
        incident.status = "closed"

        assert (await store.get_incident("INC-1")).status == "open"

    @pytest.mark.asyncio
    async def test_seeded_records(self):
        store = InMemoryRecordStore(
            incidents=[make_incident("INC-1")],
            changes=[Change(id="CHG-1", status="approved")]
        )

        assert (await store.get_change("CHG-1")).status == "approved"
        assert len(await store.list_active_incidents()) == 1

    @pytest.mark.asyncio
    async def test_seeded_from_file(self, tmp_path):
        seed = tmp_path / "seed.yaml"
        seed.write_text(
            "incidents:\n"
            "  - id: INC-1\n"
            "    status: open\n"
            "    priority: low\n"
            "    createdAt: '2024-01-14T06:00:00Z'\n"
            "  - id: INC-2\n"
            "    status: resolved\n"
            "changes:\n"
            "  - id: CHG-1\n"
            "    title: Rotate certs\n"
        )

        store = InMemoryRecordStore.from_file(seed)

        incident = await store.get_incident("INC-1")
        change = await store.get_change("CHG-1")
        assert incident.created_at == NOW - timedelta(hours=30)
        assert [i.id for i in await store.list_active_incidents()] == ["INC-1"]
        assert change.status == "draft"
        assert change.title == "Rotate certs"

    @pytest.mark.parametrize("content", [
        "- not\n- a mapping\n",
        "incidents:\n  - status: open\n",
        "changes: [plain-string]\n",
        "incidents: {unclosed\n",
    ])
    def test_bad_seed_file(self, tmp_path, content):
        seed = tmp_path / "seed.yaml"
        seed.write_text(content)

        with pytest.raises(ConfigurationException):
            InMemoryRecordStore.from_file(seed)

    def test_missing_seed_file(self, tmp_path):
        with pytest.raises(ConfigurationException):
            InMemoryRecordStore.from_file(tmp_path / "absent.yaml")


class TestAuditSinks:

    @pytest.mark.asyncio
    async def test_sqlalchemy_audit_sink(self, session_maker):
        sink = SQLAlchemyAuditSink(session_maker)
        await sink.record(AuditEntry(AuditAction.ESCALATION, "INC-1", "Escalated incident INC-1", NOW))
        await sink.record(AuditEntry(AuditAction.ESCALATION, "INC-2", "Escalated incident INC-2", NOW))

        entries = await sink.list_entries("INC-1")

        assert len(entries) == 1
        assert entries[0].action == AuditAction.ESCALATION
        assert entries[0].detail == "Escalated incident INC-1"
        assert entries[0].timestamp == NOW
        assert len(await sink.list_entries()) == 2

    @pytest.mark.asyncio
    async def test_in_memory_audit_sink(self):
        sink = InMemoryAuditSink()
        await sink.record(AuditEntry(AuditAction.ESCALATION, "INC-1", "Escalated incident INC-1", NOW))

        assert [entry.target_id for entry in await sink.list_entries()] == ["INC-1"]
        assert await sink.list_entries("INC-9") == []
