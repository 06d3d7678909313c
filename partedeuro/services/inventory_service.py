"""
Inventory allocation for paid orders.

Each order item consumes stock from the Part rows backing its listing:

- FIFO (checkout settlement): oldest part first, by created_at
- QUERY_ORDER (admin cash orders): parts in whatever order the database returns

Planning is pure (plan_allocation); applying uses a conditional decrement
(UPDATE ... WHERE quantity >= n) so a part never goes negative even when two
settlements race. A lost race re-reads the parts and re-plans only the
quantity still outstanding.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.core.config import settings
from partedeuro.core.exceptions import AllocationConflictError, OversellError
from partedeuro.models.listing import Part, listing_parts
from partedeuro.models.order import OrderItem

logger = logging.getLogger(__name__)


class AllocationMode(str, enum.Enum):
    FIFO = "fifo"
    QUERY_ORDER = "query_order"


@dataclass
class PartAllocation:
    part_id: str
    quantity: int

    def to_dict(self) -> Dict[str, object]:
        return {"part_id": self.part_id, "quantity": self.quantity}


@dataclass
class AllocationPlan:
    listing_id: str
    requested: int
    allocations: List[PartAllocation] = field(default_factory=list)

    @property
    def allocated(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def shortfall(self) -> int:
        return self.requested - self.allocated

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "listing_id": self.listing_id,
            "requested": self.requested,
            "allocated": self.allocated,
            "shortfall": self.shortfall,
            "allocations": [a.to_dict() for a in self.allocations],
        }


def order_parts(parts: Sequence[Part], mode: AllocationMode) -> List[Part]:
    if mode == AllocationMode.FIFO:
        return sorted(parts, key=lambda p: (p.created_at, p.id))
    return list(parts)


def plan_allocation(
    listing_id: str,
    parts: Sequence[Part],
    quantity: int,
    mode: AllocationMode = AllocationMode.FIFO,
) -> AllocationPlan:
    """
    Walk the parts taking min(part.quantity, remaining) from each.

    Stops when the quantity is covered or the parts run out; the plan's
    shortfall is whatever could not be covered.
    """
    plan = AllocationPlan(listing_id=listing_id, requested=quantity)
    remaining = quantity
    for part in order_parts(parts, mode):
        if remaining <= 0:
            break
        take = min(part.quantity or 0, remaining)
        if take <= 0:
            continue
        plan.allocations.append(PartAllocation(part_id=part.id, quantity=take))
        remaining -= take
    return plan


class InventoryService:
    """Applies allocation plans inside the caller's transaction."""

    def __init__(
        self,
        db: AsyncSession,
        oversell_policy: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.oversell_policy = (oversell_policy or settings.OVERSELL_POLICY).lower()
        self.max_attempts = max_attempts or settings.ALLOCATION_MAX_ATTEMPTS

    async def load_parts(self, listing_id: str, mode: AllocationMode) -> List[Part]:
        stmt = (
            select(Part)
            .join(listing_parts, listing_parts.c.part_id == Part.id)
            .where(listing_parts.c.listing_id == listing_id)
            .where(Part.quantity > 0)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if mode == AllocationMode.FIFO:
            stmt = stmt.order_by(Part.created_at.asc(), Part.id.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _decrement(self, allocation: PartAllocation) -> bool:
        result = await self.db.execute(
            update(Part)
            .where(Part.id == allocation.part_id)
            .where(Part.quantity >= allocation.quantity)
            .values(quantity=Part.quantity - allocation.quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def allocate_item(
        self,
        listing_id: str,
        quantity: int,
        mode: AllocationMode = AllocationMode.FIFO,
    ) -> AllocationPlan:
        """
        Allocate one order item.

        Raises:
            OversellError: Parts cannot cover the quantity and the policy is "raise"
            AllocationConflictError: Concurrent decrements kept winning
        """
        applied = AllocationPlan(listing_id=listing_id, requested=quantity)

        for attempt in range(1, self.max_attempts + 1):
            outstanding = quantity - applied.allocated
            parts = await self.load_parts(listing_id, mode)
            plan = plan_allocation(listing_id, parts, outstanding, mode)

            if not plan.is_complete and self.oversell_policy == "raise":
                available = applied.allocated + plan.allocated
                logger.error(
                    f"Oversell on listing {listing_id}: requested {quantity}, available {available}"
                )
                raise OversellError(
                    f"Not enough stock to allocate listing {listing_id}",
                    listing_id=listing_id,
                    requested_qty=quantity,
                    available_qty=available,
                )

            conflict = False
            for allocation in plan.allocations:
                if await self._decrement(allocation):
                    applied.allocations.append(allocation)
                else:
                    logger.warning(
                        f"Allocation conflict on part {allocation.part_id} "
                        f"(listing {listing_id}, attempt {attempt}); re-planning"
                    )
                    conflict = True
                    break

            if not conflict:
                if not applied.is_complete:
                    logger.warning(
                        f"Partial allocation for listing {listing_id}: "
                        f"{applied.allocated}/{quantity}, shortfall flagged for review"
                    )
                return applied

        raise AllocationConflictError(
            f"Could not allocate listing {listing_id} after {self.max_attempts} attempts",
            details=applied.to_dict(),
        )

    async def allocate_order(
        self,
        items: Sequence[OrderItem],
        mode: AllocationMode = AllocationMode.FIFO,
    ) -> List[AllocationPlan]:
        """Allocate every item; the caller commits or rolls back as a unit."""
        plans = []
        for item in items:
            plans.append(await self.allocate_item(item.listing_id, item.quantity, mode))
        return plans
