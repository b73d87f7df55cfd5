"""Tests for RestoreMerger: newest-wins, non-destructive merge."""

import pytest

from crm_backup._utils import parse_timestamp
from crm_backup.backup.errors import PartialMergeError
from crm_backup.backup.merger import (
    CONFLICT_CHANGED_DURING_RESTORE,
    CONFLICT_LIVE_NEWER,
    CONFLICT_NO_TIMESTAMP,
    MergeAction,
    RestoreMerger,
)
from crm_backup.backup.models import MAX_CONFLICTS_PER_ENTITY
from crm_backup.base import DatasetUnavailableError
from tests.utils import FlakyStorage, by_id, make_record

T1 = "2024-01-01T00:00:00Z"
T2 = "2024-01-02T00:00:00Z"
T5 = "2024-01-05T00:00:00Z"


@pytest.fixture
def merger_factory(backup_config):
    def factory(storage):
        return RestoreMerger(storage, backup_config)
    return factory


def test_decide(backup_config, memory_storage):
    merger = RestoreMerger(memory_storage, backup_config)

    assert merger.decide(make_record("a", T1), None) == MergeAction.INSERT
    assert merger.decide(make_record("a", T2), make_record("a", T1)) == MergeAction.UPDATE
    assert merger.decide(make_record("a", T1), make_record("a", T1)) == MergeAction.SKIP
    assert merger.decide(make_record("a", T1), make_record("a", T2)) == MergeAction.SKIP
    assert merger.decide(make_record("a", None), make_record("a", T1)) == MergeAction.SKIP
    assert merger.decide(make_record("a", T2), make_record("a", None)) == MergeAction.SKIP


def test_plan_orders_dependencies_first(backup_config, memory_storage):
    merger = RestoreMerger(memory_storage, backup_config)
    payload = {"leadNotes": [], "customThing": [], "leads": [], "users": []}

    assert merger.plan(payload) == ["users", "leads", "leadNotes", "customThing"]


@pytest.mark.asyncio
async def test_scenario_live_newer_and_extra_records(memory_storage, merger_factory):
    """Live moved on after the backup: nothing is overwritten or deleted."""
    await memory_storage.upsert("leads", [make_record("A", T1, v=1), make_record("B", T1, v=1)])
    backup = await memory_storage.export_consistent()

    await memory_storage.upsert("leads", [make_record("A", T2, v=2), make_record("C", T2, v=1)])

    summary = await merger_factory(memory_storage).merge(backup)

    counts = summary["leads"]
    assert (counts.inserted, counts.updated, counts.skipped) == (0, 0, 2)
    # B is unchanged, only A is a conflict.
    assert counts.conflict_count == 1
    [conflict] = counts.conflicts
    assert conflict.id == "A"
    assert conflict.reason == CONFLICT_LIVE_NEWER
    assert conflict.backup_timestamp == parse_timestamp(T1)
    assert conflict.live_timestamp == parse_timestamp(T2)

    live = by_id(await memory_storage.export_consistent(), "leads")
    assert set(live) == {"A", "B", "C"}
    assert live["A"]["v"] == 2


@pytest.mark.asyncio
async def test_scenario_missing_record_is_inserted(memory_storage, merger_factory):
    await memory_storage.upsert("leads", [make_record("Y", T1)])
    backup = {"leads": [make_record("X", T5, stage="new")]}

    summary = await merger_factory(memory_storage).merge(backup)

    assert summary["leads"].inserted == 1
    assert summary["leads"].updated == 0
    assert await memory_storage.get_by_id("leads", "X") == make_record("X", T5, stage="new")


@pytest.mark.asyncio
async def test_backup_newer_overwrites(memory_storage, merger_factory):
    await memory_storage.upsert("leads", [make_record("A", T1, stage="old")])
    backup = {"leads": [make_record("A", T2, stage="restored")]}

    summary = await merger_factory(memory_storage).merge(backup)

    assert summary["leads"].updated == 1
    assert (await memory_storage.get_by_id("leads", "A"))["stage"] == "restored"


@pytest.mark.asyncio
async def test_merge_is_idempotent(seeded_storage, merger_factory):
    backup = await seeded_storage.export_consistent()
    await seeded_storage.upsert("leads", [make_record("l9", T5)])
    merger = merger_factory(seeded_storage)

    await merger.merge(backup)
    after_first = await seeded_storage.export_consistent()

    summary = await merger.merge(backup)
    after_second = await seeded_storage.export_consistent()

    assert after_first == after_second
    assert all(c.inserted == 0 and c.updated == 0 for c in summary.values())


@pytest.mark.asyncio
async def test_merge_never_deletes(seeded_storage, merger_factory):
    before = await seeded_storage.export_consistent()

    await merger_factory(seeded_storage).merge({"leads": [make_record("l1", T1)]})

    after = await seeded_storage.export_consistent()
    for entity, records in before.items():
        assert set(by_id(after, entity)) >= {r["id"] for r in records}


@pytest.mark.asyncio
async def test_merge_batches_large_entities(memory_storage, merger_factory):
    backup = {"leads": [make_record(f"l{i}", T1) for i in range(7)]}

    summary = await merger_factory(memory_storage).merge(backup)

    assert summary["leads"].inserted == 7
    assert await memory_storage.count("leads") == 7


@pytest.mark.asyncio
async def test_callbacks_report_each_entity(seeded_storage, merger_factory):
    backup = await seeded_storage.export_consistent()
    started, done = [], []

    async def on_start(entity, position, total):
        started.append((entity, position, total))

    async def on_done(entity, position, total, counts):
        done.append((entity, counts.skipped))

    await merger_factory(seeded_storage).merge(backup, on_start, on_done)

    assert started == [("users", 1, 3), ("leads", 2, 3), ("leadNotes", 3, 3)]
    assert done == [("users", 2), ("leads", 3), ("leadNotes", 1)]


@pytest.mark.asyncio
async def test_transient_apply_errors_are_retried(memory_storage, merger_factory):
    flaky = FlakyStorage(memory_storage, {"apply_batch": [DatasetUnavailableError("blip")]})
    backup = {"leads": [make_record("X", T1)]}

    summary = await merger_factory(flaky).merge(backup)

    assert summary["leads"].inserted == 1
    assert flaky.calls["apply_batch"] == 2


@pytest.mark.asyncio
async def test_failure_mid_entity_raises_partial_merge(memory_storage, backup_config):
    # Third apply_batch call fails every retry: users commits, leads fails after one batch.
    errors = [DatasetUnavailableError("down")] * backup_config.merge_retry_attempts
    flaky = FlakyStorage(memory_storage, {})
    backup = {
        "users": [make_record("u1", T1)],
        "leads": [make_record(f"l{i}", T1) for i in range(4)],
    }
    merger = RestoreMerger(flaky, backup_config)

    original = flaky.apply_batch
    calls = {"n": 0}

    async def apply_batch(entity, records, conditional=True):
        calls["n"] += 1
        if calls["n"] >= 3 and errors:
            raise errors.pop(0)
        return await original(entity, records, conditional)

    flaky.apply_batch = apply_batch

    with pytest.raises(PartialMergeError) as exc_info:
        await merger.merge(backup)

    error = exc_info.value
    assert error.entity == "leads"
    assert error.summary["users"].inserted == 1
    assert error.summary["leads"].inserted == 2
    assert isinstance(error.cause, DatasetUnavailableError)

    # Work before the failure stays merged.
    assert await memory_storage.count("users") == 1
    assert await memory_storage.count("leads") == 2


@pytest.mark.asyncio
async def test_live_write_between_read_and_apply_wins(memory_storage, backup_config):
    """A record updated by live traffic after the merger read it is not overwritten."""
    await memory_storage.upsert("leads", [make_record("A", T1, stage="old")])
    backup = {"leads": [make_record("A", T2, stage="backup")]}

    original_get = memory_storage.get_by_ids

    async def get_then_race(entity, ids):
        found = await original_get(entity, ids)
        await memory_storage.upsert("leads", [make_record("A", T5, stage="live")])
        return found

    memory_storage.get_by_ids = get_then_race

    summary = await RestoreMerger(memory_storage, backup_config).merge(backup)

    assert (summary["leads"].updated, summary["leads"].skipped) == (0, 1)
    assert summary["leads"].conflicts[0].reason == CONFLICT_CHANGED_DURING_RESTORE
    assert (await memory_storage.get_by_id("leads", "A"))["stage"] == "live"


def test_decide_with_unrepresentable_live_timestamp(backup_config, memory_storage):
    merger = RestoreMerger(memory_storage, backup_config)

    assert merger.decide(make_record("a", T1), make_record("a", 10 ** 20)) == MergeAction.SKIP
    assert merger.decide(make_record("a", T1), make_record("a", float("nan"))) == MergeAction.SKIP


@pytest.mark.asyncio
@pytest.mark.parametrize("live_updated", [10 ** 20, float("nan")])
async def test_unrepresentable_live_timestamp_is_skipped(memory_storage, merger_factory, live_updated):
    await memory_storage.upsert("leads", [make_record("A", live_updated, stage="live")])
    backup = {"leads": [make_record("A", T1, stage="backup"), make_record("B", T1)]}

    summary = await merger_factory(memory_storage).merge(backup)

    counts = summary["leads"]
    assert (counts.inserted, counts.updated, counts.skipped) == (1, 0, 1)
    assert [(c.id, c.reason) for c in counts.conflicts] == [("A", CONFLICT_NO_TIMESTAMP)]
    assert (await memory_storage.get_by_id("leads", "A"))["stage"] == "live"
    assert await memory_storage.get_by_id("leads", "B") == make_record("B", T1)


@pytest.mark.asyncio
async def test_missing_timestamp_is_reported(memory_storage, merger_factory):
    await memory_storage.upsert("leads", [make_record("A", None), make_record("B", T1)])
    backup = {"leads": [make_record("A", T2), make_record("B", None)]}

    summary = await merger_factory(memory_storage).merge(backup)

    counts = summary["leads"]
    assert counts.skipped == 2
    assert counts.conflict_count == 2
    assert {c.id: c.reason for c in counts.conflicts} == {"A": CONFLICT_NO_TIMESTAMP, "B": CONFLICT_NO_TIMESTAMP}
    assert counts.conflicts[0].live_timestamp is None


@pytest.mark.asyncio
async def test_conflict_list_is_bounded(memory_storage, merger_factory):
    total = MAX_CONFLICTS_PER_ENTITY + 5
    await memory_storage.upsert("leads", [make_record(f"l{i}", T5) for i in range(total)])
    backup = {"leads": [make_record(f"l{i}", T1) for i in range(total)]}

    summary = await merger_factory(memory_storage).merge(backup)

    assert summary["leads"].skipped == total
    assert summary["leads"].conflict_count == total
    assert len(summary["leads"].conflicts) == MAX_CONFLICTS_PER_ENTITY
