# src/pgnode/worker/tasks/__init__.py

from arq import cron
# 1. 导入并导出这个子域的所有公开任务
from .audit import run_consistency_audit_task
# 2. 导入注册中心
from ..main import TASK_FUNCTIONS, CRON_JOBS

# 3. 将自己注册进去
TASK_FUNCTIONS.extend([
    run_consistency_audit_task,
])

# 每小时整点运行一次一致性审计
CRON_JOBS.append(cron(run_consistency_audit_task, minute=0))
