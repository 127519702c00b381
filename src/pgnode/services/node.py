# src/pgnode/services/node.py

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncEngine
from pgnode.core.config import Settings
from pgnode.db.init_db import upgrade_ledger_schema
from pgnode.db.session import create_ledger_engine, create_session_factory
from pgnode.services.consistency_checker import ConsistencyChecker, AuditReport
from pgnode.services.ledger_service import LedgerService
from pgnode.services.postgres.gateway import PostgresGateway
from pgnode.services.provisioning_service import ProvisioningService
from pgnode.services.quota import QuotaAccountant
from pgnode.services.session_policeman import SessionPoliceman
from pgnode.services.storage_quota import StorageQuotaEnforcer

logger = logging.getLogger(__name__)

class ServiceNode(ABC):
    """
    The capability contract invoked by the orchestrator.
    Inputs and outputs are plain dicts.
    """

    @abstractmethod
    async def announcement(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def provision(self, plan: str, credential: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def unprovision(self, name: str, credentials: Optional[List[Dict[str, Any]]] = None) -> bool:
        ...

    @abstractmethod
    async def bind(
        self,
        name: str,
        bind_opts: Optional[Dict[str, Any]] = None,
        credential: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def unbind(self, credential: Dict[str, Any]) -> bool:
        ...

FatalHandler = Callable[[Exception], Awaitable[None]]

class PostgresqlNode(ServiceNode):
    """
    Wires gateway, ledger, quota, engine and the background jobs together.
    ``start`` must be awaited inside a running event loop before any operation.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: Optional[PostgresGateway] = None,
        ledger_engine: Optional[AsyncEngine] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        on_fatal: Optional[FatalHandler] = None,
        run_migrations: bool = True,
    ):
        self.settings = settings
        self.gateway = gateway or PostgresGateway.from_settings(settings)
        self.ledger_engine = ledger_engine or create_ledger_engine(settings.LOCAL_DB_URL)
        self.ledger = LedgerService(create_session_factory(self.ledger_engine))
        self.quota = QuotaAccountant.from_settings(settings)
        self.engine = ProvisioningService(
            gateway=self.gateway,
            ledger=self.ledger,
            quota=self.quota,
            hostname=settings.NODE_HOSTNAME or settings.PG_HOST,
            port=settings.PG_PORT,
        )
        self.checker = ConsistencyChecker(self.gateway, self.ledger)
        self.storage_quota = StorageQuotaEnforcer(self.gateway, self.ledger, settings.MAX_DB_SIZE_BYTES)
        self.policeman = SessionPoliceman(
            self.gateway,
            max_long_query=settings.MAX_LONG_QUERY,
            max_long_tx=settings.MAX_LONG_TX,
            on_fatal=on_fatal,
        )
        self.scheduler = scheduler or AsyncIOScheduler()
        self.run_migrations = run_migrations
        self.last_audit: Optional[AuditReport] = None

    async def start(self) -> None:
        if self.settings.BASE_DIR:
            Path(self.settings.BASE_DIR).mkdir(parents=True, exist_ok=True)

        await self.gateway.start()
        if self.run_migrations:
            await upgrade_ledger_schema(self.settings.LOCAL_DB_URL)

        tenants = await self.ledger.list_tenants()
        available = await self.quota.initialize(tenant.plan for tenant in tenants)
        logger.info(f"[Node] {len(tenants)} tenant databases in ledger, available storage {available} bytes")

        self.last_audit = await self.checker.check()

        self.policeman.register(
            self.scheduler,
            keep_alive_interval=self.settings.KEEP_ALIVE_INTERVAL,
            long_query_interval=self.settings.LONG_QUERY_INTERVAL,
            long_tx_interval=self.settings.LONG_TX_INTERVAL,
        )
        if self.settings.ENFORCE_STORAGE_QUOTA:
            self.scheduler.add_job(
                self.storage_quota.enforce,
                trigger=IntervalTrigger(seconds=self.settings.STORAGE_QUOTA_INTERVAL),
                id="pg_enforce_storage_quota",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info("[Node] PostgreSQL node started.")

    async def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.gateway.close()
        await self.ledger_engine.dispose()
        logger.info("[Node] PostgreSQL node stopped.")

    # --- capability contract ---

    async def announcement(self) -> Dict[str, Any]:
        return {"available_storage": self.quota.available_storage}

    async def provision(self, plan: str, credential: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.engine.provision(plan, credential)

    async def unprovision(self, name: str, credentials: Optional[List[Dict[str, Any]]] = None) -> bool:
        return await self.engine.unprovision(name, credentials)

    async def bind(
        self,
        name: str,
        bind_opts: Optional[Dict[str, Any]] = None,
        credential: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self.engine.bind(name, bind_opts, credential)

    async def unbind(self, credential: Dict[str, Any]) -> bool:
        return await self.engine.unbind(credential)
