"""
Tests for the progress tracker's compare-and-swap writes.
"""
import asyncio
import random
import warnings
from unittest.mock import AsyncMock

import pytest

from campaign_payments.config import Settings
from campaign_payments.core.tracker import ProgressTracker
from campaign_payments.domain import (
    CampaignKind,
    CampaignNotFoundError,
    CampaignStateError,
    CampaignStatus,
    ItemOutcome,
    ItemStatus,
    TrackerContentionError,
    get_policy,
)
from campaign_payments.infrastructure import ConcurrencyError, InMemoryCampaignStore
from tests.factories import OWNER, START, ManualClock, bulk_request


async def _seed(store: InMemoryCampaignStore, settings: Settings, *amounts: int):
    record = get_policy(CampaignKind.BULK, settings).build(bulk_request(*amounts), OWNER, START)
    return await store.insert(record)


class TestProgressTracker:
    """Test suite for ProgressTracker."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_outcome_updates_item_and_counters(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100, 200)
        tracker = ProgressTracker(store, clock, test_settings)
        clock.advance(minutes=5)

        updated = await tracker.record_outcome(
            record.id, record.items[0].item_id, ItemOutcome.succeeded("pi_1", "tx_1")
        )

        item = updated.items[0]
        assert item.status == ItemStatus.SUCCEEDED
        assert item.gateway_reference == "pi_1"
        assert item.transaction_id == "tx_1"
        assert item.attempts == 1
        assert updated.success_count == 1
        assert updated.failure_count == 0
        assert updated.version == record.version + 1
        assert updated.updated_at == clock.now()
        assert updated.status == CampaignStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_outcome_persists_for_canceled_campaign(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100)
        tracker = ProgressTracker(store, clock, test_settings)

        def cancel(current):
            current.status = CampaignStatus.CANCELED
            return current

        await tracker.update(record.id, cancel)
        updated = await tracker.record_outcome(
            record.id, record.items[0].item_id, ItemOutcome.failed("declined")
        )

        assert updated.status == CampaignStatus.CANCELED
        assert updated.failure_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_campaign_and_item(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100)
        tracker = ProgressTracker(store, clock, test_settings)

        with pytest.raises(CampaignNotFoundError):
            await tracker.record_outcome("missing", "item", ItemOutcome.failed("x"))
        with pytest.raises(CampaignNotFoundError, match="Item"):
            await tracker.record_outcome(record.id, "missing", ItemOutcome.failed("x"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declining_mutator_writes_nothing(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100)
        tracker = ProgressTracker(store, clock, test_settings)
        writes = store.writes

        result = await tracker.update(record.id, lambda current: None)

        assert result is None
        assert store.writes == writes
        assert (await store.get(record.id)).version == record.version

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_errors_are_not_retried(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100)
        tracker = ProgressTracker(store, clock, test_settings)
        calls = []

        def refuse(current):
            calls.append(current.version)
            raise CampaignStateError("not now", current.id)

        with pytest.raises(CampaignStateError):
            await tracker.update(record.id, refuse)
        assert len(calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_conflict_is_retried_against_fresh_record(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100, 200)
        tracker = ProgressTracker(store, clock, test_settings)
        real_replace = store.replace
        conflicts = [ConcurrencyError(record.id, 0, 1)]

        async def conflict_once(updated, expected_version):
            if conflicts:
                raise conflicts.pop()
            return await real_replace(updated, expected_version)

        store.replace = AsyncMock(side_effect=conflict_once)

        updated = await tracker.record_outcome(
            record.id, record.items[1].item_id, ItemOutcome.failed("declined")
        )

        assert store.replace.await_count == 2
        assert updated.failure_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_contention_error(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        record = await _seed(store, test_settings, 100)
        settings = test_settings.model_copy(update={"tracker_max_attempts": 3})
        tracker = ProgressTracker(store, clock, settings)
        store.replace = AsyncMock(side_effect=ConcurrencyError(record.id, 0, 1))

        with pytest.raises(TrackerContentionError) as exc_info:
            await tracker.record_outcome(
                record.id, record.items[0].item_id, ItemOutcome.failed("x")
            )

        assert exc_info.value.attempts == 3
        assert store.replace.await_count == 3

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_outcomes_are_never_lost(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        """
        Every concurrent writer starts from the same version; only the CAS
        retry loop keeps all outcomes.
        """
        amounts = [100 + i for i in range(20)]
        record = await _seed(store, test_settings, *amounts)
        tracker = ProgressTracker(store, clock, test_settings)

        outcomes = [
            ItemOutcome.succeeded(f"pi_{i}") if i % 3 else ItemOutcome.failed("declined")
            for i in range(len(amounts))
        ]
        await asyncio.gather(
            *(
                tracker.record_outcome(record.id, item.item_id, outcome)
                for item, outcome in zip(record.items, outcomes)
            )
        )

        final = await store.get(record.id)
        assert store.conflicts > 0
        assert all(item.is_terminal for item in final.items)
        assert final.success_count == sum(1 for o in outcomes if o.status == ItemStatus.SUCCEEDED)
        assert final.failure_count == sum(1 for o in outcomes if o.status == ItemStatus.FAILED)
        assert final.total_amount == sum(amounts)

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_shuffled_concurrent_outcomes_match_sequential_run(
        self, clock: ManualClock, test_settings: Settings
    ) -> None:
        """
        Fifty outcomes landing in random order with random delays leave the
        same record as recording them one by one.
        """
        settings = test_settings.model_copy(update={"tracker_max_attempts": 200})
        amounts = [100 + i for i in range(50)]
        outcomes = [
            ItemOutcome.failed(f"declined {i}") if i % 7 == 0 else ItemOutcome.succeeded(f"pi_{i}")
            for i in range(len(amounts))
        ]

        sequential_store = InMemoryCampaignStore()
        sequential = await _seed(sequential_store, settings, *amounts)
        sequential_tracker = ProgressTracker(sequential_store, clock, settings)
        for item, outcome in zip(sequential.items, outcomes):
            await sequential_tracker.record_outcome(sequential.id, item.item_id, outcome)

        concurrent_store = InMemoryCampaignStore()
        concurrent = await _seed(concurrent_store, settings, *amounts)
        concurrent_tracker = ProgressTracker(concurrent_store, clock, settings)
        rng = random.Random(1234)
        order = list(range(len(amounts)))
        rng.shuffle(order)
        delays = {i: rng.uniform(0, 0.003) for i in order}

        async def land(index: int) -> None:
            await asyncio.sleep(delays[index])
            await concurrent_tracker.record_outcome(
                concurrent.id, concurrent.items[index].item_id, outcomes[index]
            )

        await asyncio.gather(*(land(i) for i in order))

        expected = await sequential_store.get(sequential.id)
        actual = await concurrent_store.get(concurrent.id)
        assert [
            (i.status, i.gateway_reference, i.error_message, i.attempts) for i in actual.items
        ] == [
            (i.status, i.gateway_reference, i.error_message, i.attempts) for i in expected.items
        ]
        assert actual.success_count == expected.success_count == 42
        assert actual.failure_count == expected.failure_count == 8
        assert actual.version == expected.version
        assert actual.total_amount == expected.total_amount

    @pytest.mark.unit
    def test_backoff_policy_builds_without_deprecation_warnings(
        self, store: InMemoryCampaignStore, clock: ManualClock, test_settings: Settings
    ) -> None:
        settings = test_settings.model_copy(
            update={"tracker_backoff_initial": 0.01, "tracker_backoff_max": 0.5}
        )
        tracker = ProgressTracker(store, clock, settings)

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            retrying = tracker._retrying()

        assert retrying.stop.max_attempt_number == settings.tracker_max_attempts
