# src/pgnode/services/postgres/gateway.py

import asyncio
import base64
import hashlib
import hmac
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncConnection
from sqlalchemy.pool import NullPool
from pgnode.services.exceptions import ConnectionUnrecoverableError, OperationFailedError
from pgnode.services.postgres import privileges
from pgnode.services.postgres.identifiers import quote_identifier, password_literal, validate_password

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r"PostgreSQL (\d+)(?:\.(\d+))?")

# 9.2 之前 pg_stat_activity 的列名是 procpid / current_query
ACTIVITY_SQL = """
SELECT pid, usename, datname, query, state,
       EXTRACT(EPOCH FROM (now() - query_start)) AS query_elapsed,
       EXTRACT(EPOCH FROM (now() - xact_start)) AS xact_elapsed
FROM pg_stat_activity
WHERE pid <> pg_backend_pid()
"""

LEGACY_ACTIVITY_SQL = """
SELECT procpid AS pid, usename, datname, current_query AS query,
       CASE WHEN current_query = '<IDLE>' THEN 'idle' ELSE 'active' END AS state,
       EXTRACT(EPOCH FROM (now() - query_start)) AS query_elapsed,
       EXTRACT(EPOCH FROM (now() - xact_start)) AS xact_elapsed
FROM pg_stat_activity
WHERE procpid <> pg_backend_pid()
"""

def parse_version(banner: str) -> Tuple[int, int]:
    """'PostgreSQL 9.1.24 on x86_64...' -> (9, 1); 'PostgreSQL 16.2 ...' -> (16, 2)"""
    match = VERSION_RE.search(banner or "")
    if not match:
        raise ValueError(f"Unrecognized server version: {banner!r}")
    return int(match.group(1)), int(match.group(2) or 0)

def uses_legacy_activity_columns(version: Tuple[int, int]) -> bool:
    return version < (9, 2)

def parse_datacl(datacl: Optional[str]) -> List[str]:
    """
    '{=Tc/postgres,postgres=CTc/postgres,u1=c/postgres}' -> ['postgres', 'u1']
    The entry with an empty grantee is PUBLIC and is skipped.
    """
    if not datacl:
        return []
    grantees = []
    for item in datacl.strip("{}").split(","):
        grantee = item.split("=")[0].strip('"')
        if grantee:
            grantees.append(grantee)
    return grantees

def verify_scram_sha_256(verifier: str, password: str) -> bool:
    """Checks a password against a 'SCRAM-SHA-256$<iter>:<salt>$<StoredKey>:<ServerKey>' verifier."""
    try:
        method, iteration_salt, keys = verifier.split("$")
        iterations, salt = iteration_salt.split(":")
        stored_key, _server_key = keys.split(":")
    except ValueError:
        return False
    if method != "SCRAM-SHA-256":
        return False
    salted = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), base64.b64decode(salt), int(iterations))
    client_key = hmac.new(salted, b"Client Key", hashlib.sha256).digest()
    return hmac.compare_digest(hashlib.sha256(client_key).digest(), base64.b64decode(stored_key))

@dataclass
class BackendSession:
    pid: int
    user: Optional[str]
    database: Optional[str]
    query: Optional[str]
    state: Optional[str]
    query_elapsed: Optional[float]
    xact_elapsed: Optional[float]

    @property
    def idle(self) -> bool:
        return self.state == "idle"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BackendSession":
        def seconds(value):
            return float(value) if value is not None else None
        return cls(
            pid=int(row["pid"]),
            user=row.get("usename"),
            database=row.get("datname"),
            query=row.get("query"),
            state=row.get("state"),
            query_elapsed=seconds(row.get("query_elapsed")),
            xact_elapsed=seconds(row.get("xact_elapsed")),
        )

class DatabaseHandle:
    """
    One live connection to one database.
    AUTOCOMMIT is required: CREATE/DROP DATABASE cannot run inside a transaction.
    """
    def __init__(self, engine: AsyncEngine, connection: AsyncConnection, database: str):
        self.engine = engine
        self.connection = connection
        self.database = database

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        result = await self.connection.execute(text(sql), params or {})
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings().all()]

    async def close(self) -> None:
        try:
            await self.connection.close()
        except SQLAlchemyError as e:
            logger.warning(f"[Gateway] Error while closing connection to {self.database}: {e}")
        finally:
            await self.engine.dispose()

async def open_database_handle(url: URL) -> DatabaseHandle:
    engine = create_async_engine(url, poolclass=NullPool, isolation_level="AUTOCOMMIT")
    try:
        connection = await engine.connect()
    except Exception:
        await engine.dispose()
        raise
    return DatabaseHandle(engine, connection, url.database)

HandleFactory = Callable[[URL], Awaitable[DatabaseHandle]]

class PostgresGateway:
    """
    Owns the administrative connection to the shared PostgreSQL server.

    The held connection can be swapped by ``keep_alive`` at any await point,
    so every statement goes through ``execute``, which takes the lock and
    re-reads ``self._connection``. Work inside a tenant database uses a
    short-lived connection from ``tenant_connection``.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
        connect_attempts: int = 5,
        retry_delay: float = 2.0,
        handle_factory: Optional[HandleFactory] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.database = database
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self._handle_factory = handle_factory or open_database_handle
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._connection: Optional[DatabaseHandle] = None
        self.version: Tuple[int, int] = (0, 0)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "PostgresGateway":
        return cls(
            host=settings.PG_HOST,
            port=settings.PG_PORT,
            user=settings.PG_USER,
            password=settings.PG_PASSWORD,
            database=settings.PG_DATABASE,
            connect_attempts=settings.PG_CONNECT_ATTEMPTS,
            retry_delay=settings.PG_CONNECT_RETRY_DELAY,
            **kwargs,
        )

    @property
    def admin_user(self) -> str:
        return self.user

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def url_for(self, database: str) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=database,
        )

    # ==============================================================================
    # 连接生命周期
    # ==============================================================================

    async def connect(self, database: Optional[str] = None) -> DatabaseHandle:
        database = database or self.database
        last_error: Optional[Exception] = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                return await self._handle_factory(self.url_for(database))
            except (SQLAlchemyError, OSError) as e:
                last_error = e
                logger.error(f"[Gateway] PostgreSQL connection attempt {attempt}/{self.connect_attempts} to {database} failed: {e}")
                if attempt < self.connect_attempts:
                    await self._sleep(self.retry_delay)
        logger.critical(f"[Gateway] Could not connect to PostgreSQL {self.host}:{self.port}/{database}, giving up.")
        raise ConnectionUnrecoverableError(f"{self.host}:{self.port}/{database}: {last_error}")

    async def start(self) -> None:
        handle = await self.connect()
        async with self._lock:
            self._connection = handle
        self.version = await self.detect_version(handle)
        logger.info(f"[Gateway] Connected to PostgreSQL {self.version[0]}.{self.version[1]} at {self.host}:{self.port}")

    async def close(self) -> None:
        async with self._lock:
            handle, self._connection = self._connection, None
        if handle is not None:
            await handle.close()

    @staticmethod
    async def detect_version(conn: DatabaseHandle) -> Tuple[int, int]:
        rows = await conn.execute("SELECT version()")
        return parse_version(rows[0]["version"])

    async def keep_alive(self) -> None:
        """
        Liveness check. On failure the connection is re-established with the
        same retry policy and swapped in; ConnectionUnrecoverableError escapes.
        """
        async with self._lock:
            if self._connection is not None:
                try:
                    await self._connection.execute("SELECT current_timestamp")
                    return
                except (SQLAlchemyError, OSError) as e:
                    logger.warning(f"[Gateway] PostgreSQL connection lost: {e}")
            stale = self._connection
            self._connection = await self.connect()
            # 服务器可能在断线期间被升级
            try:
                self.version = await self.detect_version(self._connection)
            except (SQLAlchemyError, ValueError) as e:
                logger.warning(f"[Gateway] Could not re-detect server version, keeping {self.version}: {e}")
        if stale is not None:
            await stale.close()
        logger.info(f"[Gateway] PostgreSQL connection re-established ({self.version[0]}.{self.version[1]}).")

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self._lock:
            if self._connection is None:
                raise ConnectionUnrecoverableError("administrative connection is not open")
            return await self._connection.execute(sql, params)

    @asynccontextmanager
    async def tenant_connection(self, database: str) -> AsyncIterator[DatabaseHandle]:
        handle = await self.connect(database)
        try:
            yield handle
        finally:
            await handle.close()

    # ==============================================================================
    # 数据库与角色 (DDL)
    # ==============================================================================

    async def create_database(self, name: str) -> None:
        await self.execute(f"CREATE DATABASE {quote_identifier(name)}")

    async def revoke_public_access(self, name: str) -> None:
        await self.execute(f"REVOKE ALL ON DATABASE {quote_identifier(name)} FROM PUBLIC")

    async def drop_database(self, name: str, if_exists: bool = False) -> None:
        clause = "IF EXISTS " if if_exists else ""
        await self.execute(f"DROP DATABASE {clause}{quote_identifier(name)}")

    async def role_exists(self, role: str) -> bool:
        rows = await self.execute("SELECT 1 FROM pg_roles WHERE rolname = :role", {"role": role})
        return bool(rows)

    async def create_login_role(self, role: str, password: str) -> None:
        validate_password(password)
        await self.execute(f"CREATE ROLE {quote_identifier(role)} LOGIN PASSWORD {password_literal(password)}")

    async def drop_role(self, role: str, if_exists: bool = True) -> None:
        clause = "IF EXISTS " if if_exists else ""
        await self.execute(f"DROP ROLE {clause}{quote_identifier(role)}")

    # ==============================================================================
    # 租户库内的授权 (需要连接到租户库)
    # ==============================================================================

    async def grant_access(self, database: str, roles: List[str], restricted: bool = False) -> None:
        """
        CONNECT for the roles, then either the baseline object grants or, for a
        restricted (quota exceeded) tenant, an immediate revoke. Failures of the
        second step are logged only: a fresh database has no objects yet.
        """
        async with self.tenant_connection(database) as conn:
            await privileges.grant_connect(conn, database, roles)
            try:
                if restricted:
                    await privileges.revoke_object_privileges(conn, self.version, roles)
                else:
                    await privileges.grant_baseline(conn, self.version)
            except SQLAlchemyError as e:
                logger.error(f"[Gateway] Could not initialize user privileges on {database}: {e}")

    async def revoke_connect(self, database: str, roles: List[str]) -> None:
        await privileges.revoke_connect(self, database, roles)

    async def grant_baseline(self, database: str) -> None:
        async with self.tenant_connection(database) as conn:
            await privileges.grant_baseline(conn, self.version)

    async def revoke_object_privileges(self, database: str, grantees: List[str]) -> None:
        async with self.tenant_connection(database) as conn:
            await privileges.revoke_object_privileges(conn, self.version, grantees)

    async def drop_bound_roles(self, database: str, roles: List[str]) -> None:
        """
        Role teardown inside the tenant database. Only the final DROP ROLE
        is allowed to fail the call (as OperationFailedError).
        """
        logger.info(f"[Gateway] Delete roles {', '.join(roles)} of database {database}")
        async with self.tenant_connection(database) as conn:
            pid_column = "procpid" if uses_legacy_activity_columns(self.version) else "pid"
            for role in roles:
                try:
                    await conn.execute(
                        f"SELECT pg_terminate_backend({pid_column}) FROM pg_stat_activity WHERE usename = :role",
                        {"role": role},
                    )
                except SQLAlchemyError as e:
                    logger.warning(f"[Gateway] Could not terminate sessions of {role}: {e}")
            await privileges.release_role_dependencies(conn, self.version, database, roles)
            for role in roles:
                try:
                    await conn.execute(f"DROP ROLE {quote_identifier(role)}")
                except SQLAlchemyError as e:
                    raise OperationFailedError(f"DROP ROLE {role}: {e}") from e

    # ==============================================================================
    # 目录查询 (catalog)
    # ==============================================================================

    async def verify_credential(self, user: str, password: str) -> bool:
        """
        Re-authenticates a credential against pg_authid. md5 verifiers are
        compared on the server; SCRAM verifiers (the default since 14) are
        checked locally against the stored key.
        """
        rows = await self.execute(
            "SELECT count(*) AS matches FROM pg_authid WHERE rolname = :user "
            "AND rolpassword = 'md5' || md5(CAST(:password AS text) || CAST(:salt AS text))",
            {"user": user, "password": password, "salt": user},
        )
        if rows and rows[0]["matches"] > 0:
            return True
        rows = await self.execute("SELECT rolpassword FROM pg_authid WHERE rolname = :user", {"user": user})
        verifier = rows[0]["rolpassword"] if rows else None
        return bool(verifier) and verify_scram_sha_256(verifier, password)

    async def list_sessions(self) -> List[BackendSession]:
        sql = LEGACY_ACTIVITY_SQL if uses_legacy_activity_columns(self.version) else ACTIVITY_SQL
        return [BackendSession.from_row(row) for row in await self.execute(sql)]

    async def terminate_backend(self, pid: int) -> bool:
        rows = await self.execute("SELECT pg_terminate_backend(:pid) AS terminated", {"pid": pid})
        return bool(rows and rows[0]["terminated"])

    async def terminate_database_sessions(self, database: str) -> int:
        pid_column = "procpid" if uses_legacy_activity_columns(self.version) else "pid"
        rows = await self.execute(
            f"SELECT pg_terminate_backend({pid_column}) AS terminated FROM pg_stat_activity "
            f"WHERE datname = :database AND {pid_column} <> pg_backend_pid()",
            {"database": database},
        )
        return sum(1 for row in rows if row["terminated"])

    async def database_acls(self) -> Dict[str, List[str]]:
        rows = await self.execute("SELECT datname, datacl::text AS datacl FROM pg_database")
        return {row["datname"]: parse_datacl(row["datacl"]) for row in rows}

    async def database_sizes(self) -> Dict[str, int]:
        rows = await self.execute(
            "SELECT datname, pg_database_size(datname) AS size FROM pg_database WHERE NOT datistemplate"
        )
        return {row["datname"]: int(row["size"]) for row in rows}
