"""
Tests for FIFO inventory allocation.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from partedeuro.core.exceptions import AllocationConflictError, OversellError
from partedeuro.services.inventory_service import (
    AllocationMode,
    InventoryService,
    PartAllocation,
    plan_allocation,
)
from tests.conftest import scalars_result

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def part(part_id, quantity, age_days=0):
    return SimpleNamespace(id=part_id, quantity=quantity, created_at=BASE_TIME + timedelta(days=age_days))


def update_result(rowcount=1):
    result = MagicMock()
    result.rowcount = rowcount
    return result


class TestPlanAllocation:
    def test_fifo_takes_oldest_first(self):
        parts = [part("newer", 5, age_days=2), part("older", 3, age_days=1)]
        plan = plan_allocation("L1", parts, 4)

        assert plan.allocations == [PartAllocation("older", 3), PartAllocation("newer", 1)]
        assert plan.is_complete

    def test_fifo_remaining_quantities(self):
        parts = [part("p1", 3, age_days=0), part("p2", 5, age_days=1)]
        plan = plan_allocation("L1", parts, 4)

        remaining = {p.id: p.quantity for p in parts}
        for allocation in plan.allocations:
            remaining[allocation.part_id] -= allocation.quantity

        assert remaining == {"p1": 0, "p2": 4}
        assert sum(remaining.values()) == 8 - 4

    def test_query_order_keeps_given_order(self):
        parts = [part("newer", 5, age_days=2), part("older", 3, age_days=1)]
        plan = plan_allocation("L1", parts, 4, AllocationMode.QUERY_ORDER)

        assert plan.allocations == [PartAllocation("newer", 4)]

    def test_empty_parts_skipped(self):
        parts = [part("empty", 0), part("stocked", 2, age_days=1)]
        plan = plan_allocation("L1", parts, 1)

        assert plan.allocations == [PartAllocation("stocked", 1)]

    def test_shortfall_reported(self):
        plan = plan_allocation("L1", [part("p1", 2)], 5)

        assert plan.allocated == 2
        assert plan.shortfall == 3
        assert not plan.is_complete


class TestInventoryService:
    @pytest.mark.asyncio
    async def test_allocates_and_decrements(self, mock_db):
        mock_db.execute.side_effect = [
            scalars_result([part("p1", 3), part("p2", 5, age_days=1)]),
            update_result(),
            update_result(),
        ]
        service = InventoryService(mock_db, oversell_policy="raise")

        applied = await service.allocate_item("L1", 4)

        assert applied.allocations == [PartAllocation("p1", 3), PartAllocation("p2", 1)]
        assert mock_db.execute.call_count == 3

    @pytest.mark.asyncio
    async def test_oversell_raises_before_any_decrement(self, mock_db):
        mock_db.execute.side_effect = [scalars_result([part("p1", 1)])]
        service = InventoryService(mock_db, oversell_policy="raise")

        with pytest.raises(OversellError) as exc_info:
            await service.allocate_item("L1", 3)

        assert exc_info.value.details["available_qty"] == 1
        assert mock_db.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_partial_policy_allocates_what_exists(self, mock_db):
        mock_db.execute.side_effect = [scalars_result([part("p1", 1)]), update_result()]
        service = InventoryService(mock_db, oversell_policy="partial")

        applied = await service.allocate_item("L1", 3)

        assert applied.allocated == 1
        assert applied.shortfall == 2

    @pytest.mark.asyncio
    async def test_conflict_replans_outstanding_quantity(self, mock_db):
        mock_db.execute.side_effect = [
            scalars_result([part("p1", 3), part("p2", 5, age_days=1)]),
            update_result(1),  # p1 -3
            update_result(0),  # p2 lost a race
            scalars_result([part("p2", 2, age_days=1)]),
            update_result(1),  # p2 -1
        ]
        service = InventoryService(mock_db, oversell_policy="raise")

        applied = await service.allocate_item("L1", 4)

        assert applied.allocations == [PartAllocation("p1", 3), PartAllocation("p2", 1)]
        assert applied.is_complete

    @pytest.mark.asyncio
    async def test_conflict_exhausts_attempts(self, mock_db):
        mock_db.execute.side_effect = [
            scalars_result([part("p1", 3)]), update_result(0),
            scalars_result([part("p1", 3)]), update_result(0),
        ]
        service = InventoryService(mock_db, oversell_policy="raise", max_attempts=2)

        with pytest.raises(AllocationConflictError):
            await service.allocate_item("L1", 2)

    @pytest.mark.asyncio
    async def test_allocate_order_covers_every_item(self, mock_db):
        mock_db.execute.side_effect = [
            scalars_result([part("a1", 2)]), update_result(),
            scalars_result([part("b1", 1)]), update_result(),
        ]
        service = InventoryService(mock_db, oversell_policy="raise")
        items = [SimpleNamespace(listing_id="A", quantity=2), SimpleNamespace(listing_id="B", quantity=1)]

        plans = await service.allocate_order(items, AllocationMode.QUERY_ORDER)

        assert [p.listing_id for p in plans] == ["A", "B"]
        assert all(p.is_complete for p in plans)


class TestStatements:
    """Compile the statements sent to the session and check their shape."""

    @staticmethod
    def compiled(statement) -> str:
        from sqlalchemy.dialects import postgresql

        return str(statement.compile(dialect=postgresql.dialect()))

    @pytest.mark.asyncio
    async def test_fifo_load_locks_and_orders_by_age(self, mock_db):
        mock_db.execute.return_value = scalars_result([])

        await InventoryService(mock_db).load_parts("L1", AllocationMode.FIFO)

        sql = self.compiled(mock_db.execute.call_args.args[0])
        assert "FOR UPDATE" in sql
        assert "ORDER BY parts.created_at ASC, parts.id ASC" in sql
        assert "parts.quantity >" in sql

    @pytest.mark.asyncio
    async def test_query_order_load_has_no_ordering(self, mock_db):
        mock_db.execute.return_value = scalars_result([])

        await InventoryService(mock_db).load_parts("L1", AllocationMode.QUERY_ORDER)

        assert "ORDER BY" not in self.compiled(mock_db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_decrement_is_conditional(self, mock_db):
        mock_db.execute.return_value = update_result()

        assert await InventoryService(mock_db)._decrement(PartAllocation("p1", 2)) is True

        sql = self.compiled(mock_db.execute.call_args.args[0])
        assert sql.startswith("UPDATE parts SET quantity=(parts.quantity -")
        assert "parts.quantity >=" in sql
