# src/pgnode/services/quota.py

import asyncio
import logging
from typing import Dict, Iterable, Union
from pgnode.models import ServicePlan
from pgnode.services.exceptions import InvalidPlanError, DiskFullError

logger = logging.getLogger(__name__)

class QuotaAccountant:
    """
    The node-wide storage counter.
    available_storage == capacity - sum(allotment of every live tenant)
    """

    def __init__(self, capacity_bytes: int, allotments: Dict[ServicePlan, int]):
        self.capacity_bytes = capacity_bytes
        self.allotments = dict(allotments)
        self._available = capacity_bytes
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "QuotaAccountant":
        return cls(
            capacity_bytes=settings.AVAILABLE_STORAGE_BYTES,
            allotments={ServicePlan.FREE: settings.MAX_DB_SIZE_BYTES},
        )

    @property
    def available_storage(self) -> int:
        return self._available

    def parse_plan(self, plan: Union[str, ServicePlan]) -> ServicePlan:
        try:
            parsed = ServicePlan(plan)
        except ValueError:
            raise InvalidPlanError(plan)
        if parsed not in self.allotments:
            raise InvalidPlanError(plan)
        return parsed

    def storage_for_service(self, plan: Union[str, ServicePlan]) -> int:
        return self.allotments[self.parse_plan(plan)]

    async def initialize(self, plans: Iterable[Union[str, ServicePlan]]) -> int:
        """Recomputes the counter from the plans of the tenants already in the ledger."""
        async with self._lock:
            used = sum(self.storage_for_service(plan) for plan in plans)
            self._available = self.capacity_bytes - used
            if self._available < 0:
                logger.warning(f"[Quota] Node is over-committed: {used} bytes allotted, capacity {self.capacity_bytes}")
            return self._available

    async def reserve(self, plan: Union[str, ServicePlan]) -> int:
        storage = self.storage_for_service(plan)
        async with self._lock:
            if self._available < storage:
                raise DiskFullError()
            self._available -= storage
            return self._available

    async def release(self, plan: Union[str, ServicePlan]) -> int:
        storage = self.storage_for_service(plan)
        async with self._lock:
            self._available += storage
            return self._available
