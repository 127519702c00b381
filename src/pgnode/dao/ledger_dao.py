# src/pgnode/dao/ledger_dao.py

from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from pgnode.dao.base_dao import BaseDao
from pgnode.models import TenantDatabase, BoundUser

class TenantDatabaseDao(BaseDao[TenantDatabase]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TenantDatabase, db_session)

    async def get_by_name(self, name: str) -> Optional[TenantDatabase]:
        """Finds a tenant with its bound users preloaded."""
        return await self.get_one(where={"name": name}, withs=["bound_users"])

    async def list_all(self) -> List[TenantDatabase]:
        return await self.get_list(withs=["bound_users"], order=[TenantDatabase.name])

class BoundUserDao(BaseDao[BoundUser]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(BoundUser, db_session)

    async def get_for_tenant(self, tenant_name: str, user: str) -> Optional[BoundUser]:
        return await self.get_one(where={"tenant_name": tenant_name, "user": user})

    async def list_for_tenant(self, tenant_name: str) -> List[BoundUser]:
        return await self.get_list(where={"tenant_name": tenant_name}, order=[BoundUser.user])

    async def delete_for_tenant(self, tenant_name: str) -> int:
        return await self.delete_where({"tenant_name": tenant_name})
