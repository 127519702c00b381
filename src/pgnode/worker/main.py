# src/pgnode/worker/main.py

import logging
from arq.connections import RedisSettings
from pgnode.core.config import settings
from pgnode.core.logging import configure_logging
from pgnode.db.session import create_ledger_engine, create_session_factory
from pgnode.services.ledger_service import LedgerService
from pgnode.services.postgres.gateway import PostgresGateway

logger = logging.getLogger(__name__)

TASK_FUNCTIONS = []
CRON_JOBS = []

def get_redis_settings():
    """统一的 Redis 配置获取函数"""
    return RedisSettings(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        password=settings.REDIS_PASSWORD,
        database=settings.REDIS_DB
    )

async def startup(ctx):
    """Worker 进程启动时, 建立自己的管理连接和账本会话工厂。"""
    configure_logging(settings.LOG_LEVEL)
    gateway = PostgresGateway.from_settings(settings)
    await gateway.start()
    ctx['gateway'] = gateway
    ctx['ledger_engine'] = create_ledger_engine(settings.LOCAL_DB_URL)
    ctx['ledger'] = LedgerService(create_session_factory(ctx['ledger_engine']))
    logger.info("ARQ Worker started up, gateway and ledger are ready.")

async def shutdown(ctx):
    """Worker 进程关闭时，清理资源。"""
    await ctx['gateway'].close()
    await ctx['ledger_engine'].dispose()
    logger.info("ARQ Worker shut down, connections closed.")

class WorkerSettings:
    """ARQ Worker 的主配置。"""
    functions = TASK_FUNCTIONS
    cron_jobs = CRON_JOBS
    on_startup = startup
    on_shutdown = shutdown
    # 从 settings.py 中读取 Redis 配置
    redis_settings = get_redis_settings()
