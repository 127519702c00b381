# src/pgnode/core/config.py

from dotenv import load_dotenv
load_dotenv(".env")
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field, model_validator
from typing import Optional

MB = 1024 * 1024

class Settings(BaseSettings):
    # model_config 会自动加载 .env 文件
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # 应用配置
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # --- 管理连接 (administrative connection) ---
    PG_HOST: str = "localhost"
    PG_PORT: int = 5432
    PG_USER: str = "postgres"
    PG_PASSWORD: str = ""
    PG_DATABASE: str = "postgres"

    PG_CONNECT_ATTEMPTS: int = Field(5, ge=1)
    PG_CONNECT_RETRY_DELAY: float = Field(2.0, ge=0)

    # 返回给客户端的 hostname, 为空时使用 PG_HOST
    NODE_HOSTNAME: Optional[str] = None

    # --- 容量与策略 ---
    # 以 MB 为单位配置, 内部统一换算为字节
    MAX_DB_SIZE: int = Field(20, gt=0, description="Per-tenant allotment of the free plan, in MB.")
    AVAILABLE_STORAGE: int = Field(1024, ge=0, description="Total capacity of this node, in MB.")
    MAX_LONG_QUERY: int = Field(3, gt=0, description="Seconds before an active query is killed.")
    MAX_LONG_TX: int = Field(30, gt=0, description="Seconds before an open transaction is killed.")

    KEEP_ALIVE_INTERVAL: float = 15
    LONG_QUERY_INTERVAL: float = 1
    STORAGE_QUOTA_INTERVAL: float = 1
    ENFORCE_STORAGE_QUOTA: bool = True

    # --- 本地账本 (ledger) ---
    BASE_DIR: Optional[str] = None
    LOCAL_DB: str = "pgnode_ledger.db"

    # Redis (arq worker)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    @model_validator(mode='after')
    def check_intervals(self) -> 'Settings':
        if self.MAX_LONG_TX < 2:
            raise ValueError("MAX_LONG_TX must be at least 2 seconds (the killer runs every MAX_LONG_TX/2).")
        return self

    @computed_field
    @property
    def MAX_DB_SIZE_BYTES(self) -> int:
        return self.MAX_DB_SIZE * MB

    @computed_field
    @property
    def AVAILABLE_STORAGE_BYTES(self) -> int:
        return self.AVAILABLE_STORAGE * MB

    @computed_field
    @property
    def LONG_TX_INTERVAL(self) -> float:
        return self.MAX_LONG_TX / 2

    @computed_field
    @property
    def LOCAL_DB_URL(self) -> str:
        # LOCAL_DB 可以是完整的 SQLAlchemy URL, 也可以是 sqlite 文件路径
        if "://" in self.LOCAL_DB:
            return self.LOCAL_DB
        return f"sqlite+aiosqlite:///{self.LOCAL_DB}"

settings = Settings()
