# src/pgnode/services/ledger_service.py

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from pgnode.dao.ledger_dao import TenantDatabaseDao, BoundUserDao
from pgnode.models import TenantDatabase, BoundUser, ServicePlan
from pgnode.services.credentials import Binding
from pgnode.services.exceptions import LocalDbError

logger = logging.getLogger(__name__)

class LedgerService:
    """
    The local record of tenant databases and their bound users.
    Every call runs in its own session and transaction; any persistence
    failure surfaces as LocalDbError and leaves nothing half-written.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(f"[Ledger] Could not save entry: {e}")
            raise LocalDbError(str(e)) from e

    # --- 读 ---

    async def get_tenant(self, name: str) -> Optional[TenantDatabase]:
        async with self._unit_of_work() as session:
            return await TenantDatabaseDao(session).get_by_name(name)

    async def list_tenants(self) -> List[TenantDatabase]:
        async with self._unit_of_work() as session:
            return await TenantDatabaseDao(session).list_all()

    async def get_bound_user(self, tenant_name: str, user: str) -> Optional[BoundUser]:
        async with self._unit_of_work() as session:
            return await BoundUserDao(session).get_for_tenant(tenant_name, user)

    async def list_bound_users(self, tenant_name: str) -> List[BoundUser]:
        async with self._unit_of_work() as session:
            return await BoundUserDao(session).list_for_tenant(tenant_name)

    # --- 写 ---

    async def create_tenant(self, name: str, plan: ServicePlan, binding: Binding) -> TenantDatabase:
        """Default user + tenant in a single transaction."""
        async with self._unit_of_work() as session:
            user = await BoundUserDao(session).add(self._to_bound_user(name, binding), auto_flush=False)
            tenant = TenantDatabase(name=name, plan=plan, quota_exceeded=False, bound_users=[user])
            await TenantDatabaseDao(session).add(tenant)
            return tenant

    async def add_bound_user(self, tenant_name: str, binding: Binding) -> BoundUser:
        async with self._unit_of_work() as session:
            return await BoundUserDao(session).add(self._to_bound_user(tenant_name, binding))

    async def set_quota_exceeded(self, name: str, quota_exceeded: bool) -> bool:
        async with self._unit_of_work() as session:
            updated = await TenantDatabaseDao(session).update_where({"name": name}, {"quota_exceeded": quota_exceeded})
            return updated > 0

    async def delete_bound_user(self, tenant_name: str, user: str) -> bool:
        async with self._unit_of_work() as session:
            deleted = await BoundUserDao(session).delete_where({"tenant_name": tenant_name, "user": user})
            return deleted > 0

    async def delete_tenant(self, name: str) -> bool:
        async with self._unit_of_work() as session:
            await BoundUserDao(session).delete_for_tenant(name)
            deleted = await TenantDatabaseDao(session).delete_where({"name": name})
            return deleted > 0

    @staticmethod
    def _to_bound_user(tenant_name: str, binding: Binding) -> BoundUser:
        return BoundUser(
            user=binding.user,
            password=binding.password,
            sys_user=binding.sys_user,
            sys_password=binding.sys_password,
            default_user=binding.default_user,
            tenant_name=tenant_name,
        )
