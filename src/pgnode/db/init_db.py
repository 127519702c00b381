# src/pgnode/db/init_db.py

import asyncio
import logging
from pathlib import Path
from typing import Optional
from alembic import command
from alembic.config import Config
from sqlalchemy.engine import make_url

logger = logging.getLogger(__name__)

# 仓库根目录下的 alembic/
DEFAULT_SCRIPT_LOCATION = Path(__file__).resolve().parents[3] / "alembic"

def to_sync_url(database_url: str) -> str:
    """alembic 使用同步驱动运行迁移。"""
    url = make_url(database_url)
    driver = url.drivername.split("+", 1)[0]
    return url.set(drivername=driver).render_as_string(hide_password=False)

def build_alembic_config(database_url: str, script_location: Optional[Path] = None) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(script_location or DEFAULT_SCRIPT_LOCATION))
    cfg.set_main_option("sqlalchemy.url", to_sync_url(database_url))
    return cfg

def ensure_parent_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

async def upgrade_ledger_schema(database_url: str, script_location: Optional[Path] = None) -> None:
    """
    把账本 schema 升级到最新版本 (alembic upgrade head)。
    迁移是同步的, 放到线程里执行以免阻塞事件循环。
    """
    ensure_parent_dir(database_url)
    cfg = build_alembic_config(database_url, script_location)
    logger.info("Applying ledger migrations on %s", make_url(database_url).render_as_string(hide_password=True))
    await asyncio.to_thread(command.upgrade, cfg, "head")
