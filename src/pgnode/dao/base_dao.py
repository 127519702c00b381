# src/pgnode/dao/base_dao.py

from typing import Type, TypeVar, Generic, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, select, update, delete
from sqlalchemy.orm import selectinload, joinedload
from sqlalchemy.sql.selectable import Select
from pgnode.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

class BaseDao(Generic[ModelType]):
    """
    通用的异步 DAO。
    事务边界由调用方 (service 层) 负责, DAO 只 flush 不 commit。
    """
    def __init__(self, model_class: Type[ModelType], db_session: AsyncSession):
        self.model: Type[ModelType] = model_class
        self.db_session: AsyncSession = db_session

    # ==============================================================================
    # 1. 对象方法 (Object Methods)
    # ==============================================================================

    async def get_list(
        self,
        where: Optional[dict | list] = None,
        withs: Optional[list] = None,
        order: Optional[list] = None,
    ) -> list[ModelType]:
        stmt = self._quick_query(where=where, withs=withs, order=order)
        executed = await self.db_session.execute(stmt)
        return list(executed.scalars().all())

    async def get_one(
        self,
        where: Optional[dict | list] = None,
        withs: Optional[list] = None,
    ) -> Optional[ModelType]:
        stmt = self._quick_query(where=where, withs=withs)
        executed = await self.db_session.execute(stmt)
        return executed.scalars().first()

    async def add(self, instance: ModelType, auto_flush: bool = True) -> ModelType:
        self.db_session.add(instance)
        if auto_flush:
            await self.db_session.flush()
        return instance

    # ==============================================================================
    # 2. 批量方法 (Bulk Methods)
    # ==============================================================================

    async def update_where(self, where: dict | list, values: dict) -> int:
        if not where or not values:
            return 0
        stmt = update(self.model).where(*self._where_format(where)).values(values)
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    async def delete_where(self, where: dict | list) -> int:
        if not where:
            return 0
        stmt = delete(self.model).where(*self._where_format(where))
        executed = await self.db_session.execute(stmt)
        return executed.rowcount

    # ==============================================================================
    # 3. 查询构建辅助方法 (Query Building Helpers)
    # ==============================================================================

    def _quick_query(
        self,
        where: Optional[dict | list] = None,
        withs: Optional[list] = None,
        order: Optional[list] = None,
    ) -> Select:
        stmt = select(self.model)
        if where is not None:
            stmt = stmt.where(*self._where_format(where))
        if withs:
            stmt = stmt.options(*[self._build_loader_option(config) for config in withs])
        if order is not None:
            stmt = stmt.order_by(*order)
        return stmt

    def _build_loader_option(self, config: str | dict) -> Any:
        """'bound_users' 或 {"name": "bound_users", "loader": "joinedload"}"""
        if isinstance(config, str):
            return selectinload(getattr(self.model, config))
        if isinstance(config, dict):
            name = config.get("name")
            if not name:
                raise ValueError("Relation 'name' is required in withs configuration.")
            loader_func = {"selectinload": selectinload, "joinedload": joinedload}.get(config.get("loader", "selectinload"))
            if not loader_func:
                raise ValueError(f"Invalid loader specified: {config.get('loader')}")
            return loader_func(getattr(self.model, name))
        raise TypeError("Unsupported 'withs' configuration type. Must be str or dict.")

    def _where_format(self, conditions: dict | list) -> list:
        if not conditions:
            return []
        if isinstance(conditions, dict):
            processed = [getattr(self.model, field) == value for field, value in conditions.items()]
        else:
            # 列表中直接是 SQLAlchemy 表达式
            processed = list(conditions)
        if len(processed) > 1:
            processed = [and_(*processed)]
        return processed
