# src/pgnode/worker/tasks/audit.py

import logging
from pgnode.services.consistency_checker import ConsistencyChecker

logger = logging.getLogger(__name__)

async def run_consistency_audit_task(ctx: dict) -> dict:
    """
    ARQ 定时任务: 账本与 pg_database.datacl 的一致性审计。
    只记录日志, 不做任何修复。
    """
    try:
        checker = ConsistencyChecker(ctx['gateway'], ctx['ledger'])
        report = await checker.check()
    except Exception:
        logger.exception("FATAL in task run_consistency_audit_task")
        raise # 仍然重新抛出，让 ARQ 知道任务失败了

    summary = {
        "consistent": report.consistent,
        "missing_grants": len(report.missing_grants),
        "missing_databases": len(report.missing_databases),
        "unknown_grantees": len(report.unknown_grantees),
    }
    logger.info(f"Consistency audit finished: {summary}")
    return summary
