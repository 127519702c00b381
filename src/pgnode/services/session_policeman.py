# src/pgnode/services/session_policeman.py

import logging
from typing import Awaitable, Callable, Iterable, List, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from pgnode.services.exceptions import ConnectionUnrecoverableError
from pgnode.services.postgres.gateway import BackendSession, PostgresGateway

logger = logging.getLogger(__name__)

def select_long_queries(sessions: Iterable[BackendSession], admin_user: str, max_seconds: float) -> List[BackendSession]:
    """Active (non-idle) queries running for at least max_seconds, never the admin's own."""
    return [
        s for s in sessions
        if s.user is not None
        and s.user != admin_user
        and not s.idle
        and s.query_elapsed is not None
        and s.query_elapsed >= max_seconds
    ]

def select_long_transactions(sessions: Iterable[BackendSession], admin_user: str, max_seconds: float) -> List[BackendSession]:
    return [
        s for s in sessions
        if s.user is not None
        and s.user != admin_user
        and s.xact_elapsed is not None
        and s.xact_elapsed >= max_seconds
    ]

class SessionPoliceman:
    """
    Periodic guards against the shared server:
    keep-alive, long-query killer and long-transaction killer.
    """

    def __init__(
        self,
        gateway: PostgresGateway,
        max_long_query: float,
        max_long_tx: float,
        on_fatal: Optional[Callable[[Exception], Awaitable[None]]] = None,
    ):
        self.gateway = gateway
        self.max_long_query = max_long_query
        self.max_long_tx = max_long_tx
        self.on_fatal = on_fatal

    async def keep_alive(self) -> None:
        try:
            await self.gateway.keep_alive()
        except ConnectionUnrecoverableError as e:
            logger.critical(f"[Policeman] {e.message}; shutting the node down.")
            if self.on_fatal is not None:
                await self.on_fatal(e)
            else:
                raise

    async def kill_long_queries(self) -> List[int]:
        try:
            sessions = await self.gateway.list_sessions()
            victims = select_long_queries(sessions, self.gateway.admin_user, self.max_long_query)
            for victim in victims:
                await self.gateway.terminate_backend(victim.pid)
                logger.info(
                    f"[Policeman] Killed long query: pid:{victim.pid} user:{victim.user} db:{victim.database} "
                    f"time:{int(victim.query_elapsed)}s info:{victim.query}"
                )
        except SQLAlchemyError as e:
            logger.warning(f"[Policeman] PostgreSQL error: {e}")
            return []
        return [victim.pid for victim in victims]

    async def kill_long_transactions(self) -> List[int]:
        try:
            sessions = await self.gateway.list_sessions()
            victims = select_long_transactions(sessions, self.gateway.admin_user, self.max_long_tx)
            for victim in victims:
                await self.gateway.terminate_backend(victim.pid)
                logger.info(
                    f"[Policeman] Killed long transaction: pid:{victim.pid} user:{victim.user} db:{victim.database} "
                    f"active_time:{int(victim.xact_elapsed)}s"
                )
        except SQLAlchemyError as e:
            logger.warning(f"[Policeman] PostgreSQL error: {e}")
            return []
        return [victim.pid for victim in victims]

    def register(
        self,
        scheduler: AsyncIOScheduler,
        keep_alive_interval: float,
        long_query_interval: float,
        long_tx_interval: float,
    ) -> None:
        jobs = (
            ("pg_keep_alive", self.keep_alive, keep_alive_interval),
            ("pg_kill_long_queries", self.kill_long_queries, long_query_interval),
            ("pg_kill_long_transactions", self.kill_long_transactions, long_tx_interval),
        )
        for job_id, func, interval in jobs:
            scheduler.add_job(
                func,
                trigger=IntervalTrigger(seconds=interval),
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
