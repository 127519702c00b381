# tests/conftest.py

from typing import AsyncGenerator, Callable, Dict, List, Optional, Set
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine
from unittest.mock import AsyncMock
from pgnode.db.base import Base
from pgnode.db.session import create_ledger_engine, create_session_factory
from pgnode.models import ServicePlan
import pgnode.models  # noqa: F401
from pgnode.services.exceptions import OperationFailedError
from pgnode.services.ledger_service import LedgerService
from pgnode.services.node import ServiceNode
from pgnode.services.postgres.gateway import BackendSession
from pgnode.services.provisioning_service import ProvisioningService
from pgnode.services.quota import QuotaAccountant

MB = 1024 * 1024
ALLOTMENT = 20 * MB
ADMIN_USER = "postgres"

def sql_error(message: str = "boom") -> OperationalError:
    """A driver-level failure as SQLAlchemy would surface it."""
    return OperationalError(message, {}, Exception(message))

# ==============================================================================
# 1. 内存中的 PostgreSQL 替身
# ==============================================================================

class FakeGateway:
    """
    Keeps databases, roles, ACLs and sessions in dicts and mirrors the
    PostgresGateway surface the services use. ``fail_on[op]`` makes the
    named operation raise the given exception.
    """

    def __init__(self, admin_user: str = ADMIN_USER):
        self.admin_user = admin_user
        self.version = (16, 2)
        self.databases: Dict[str, Set[str]] = {ADMIN_USER: set()}
        self.roles: Dict[str, str] = {admin_user: "secret"}
        self.sessions: List[BackendSession] = []
        self.terminated: List[int] = []
        self.sizes: Dict[str, int] = {}
        self.baseline: Set[str] = set()
        self.revoked: Dict[str, Set[str]] = {}
        self.fail_on: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.started = False
        self.keep_alive_calls = 0

    def _call(self, op: str) -> None:
        self.calls.append(op)
        error = self.fail_on.get(op)
        if error is not None:
            raise error

    async def start(self):
        self._call("start")
        self.started = True

    async def close(self):
        self.started = False

    async def keep_alive(self):
        self._call("keep_alive")
        self.keep_alive_calls += 1

    async def create_database(self, name: str):
        self._call("create_database")
        if name in self.databases:
            raise sql_error(f'database "{name}" already exists')
        self.databases[name] = set()

    async def revoke_public_access(self, name: str):
        self._call("revoke_public_access")

    async def drop_database(self, name: str, if_exists: bool = False):
        self._call("drop_database")
        if name not in self.databases:
            if if_exists:
                return
            raise sql_error(f'database "{name}" does not exist')
        del self.databases[name]
        self.sizes.pop(name, None)

    async def role_exists(self, role: str) -> bool:
        self._call("role_exists")
        return role in self.roles

    async def create_login_role(self, role: str, password: str):
        self._call("create_login_role")
        if role in self.roles:
            raise sql_error(f'role "{role}" already exists')
        self.roles[role] = password

    async def drop_role(self, role: str, if_exists: bool = True):
        self._call("drop_role")
        if role not in self.roles and not if_exists:
            raise sql_error(f'role "{role}" does not exist')
        self.roles.pop(role, None)

    async def grant_access(self, database: str, roles: List[str], restricted: bool = False):
        self._call("grant_access")
        if database not in self.databases:
            raise sql_error(f'database "{database}" does not exist')
        self.databases[database].update(roles)
        if restricted:
            self.revoked.setdefault(database, set()).update(roles)
        else:
            self.baseline.add(database)

    async def revoke_connect(self, database: str, roles: List[str]):
        self._call("revoke_connect")
        self.databases.get(database, set()).difference_update(roles)

    async def grant_baseline(self, database: str):
        self._call("grant_baseline")
        self.baseline.add(database)
        self.revoked.pop(database, None)

    async def revoke_object_privileges(self, database: str, grantees: List[str]):
        self._call("revoke_object_privileges")
        self.baseline.discard(database)
        self.revoked.setdefault(database, set()).update(grantees)

    async def drop_bound_roles(self, database: str, roles: List[str]):
        self._call("drop_bound_roles")
        for role in roles:
            self.databases.get(database, set()).discard(role)
            if role not in self.roles:
                raise OperationFailedError(f"DROP ROLE {role}: does not exist")
            del self.roles[role]

    async def verify_credential(self, user: str, password: str) -> bool:
        self._call("verify_credential")
        return self.roles.get(user) == password

    async def list_sessions(self) -> List[BackendSession]:
        self._call("list_sessions")
        return list(self.sessions)

    async def terminate_backend(self, pid: int) -> bool:
        self._call("terminate_backend")
        self.terminated.append(pid)
        self.sessions = [s for s in self.sessions if s.pid != pid]
        return True

    async def terminate_database_sessions(self, database: str) -> int:
        self._call("terminate_database_sessions")
        victims = [s.pid for s in self.sessions if s.database == database]
        for pid in victims:
            await self.terminate_backend(pid)
        return len(victims)

    async def database_acls(self) -> Dict[str, List[str]]:
        self._call("database_acls")
        return {name: sorted(grantees | {self.admin_user}) for name, grantees in self.databases.items()}

    async def database_sizes(self) -> Dict[str, int]:
        self._call("database_sizes")
        return {name: self.sizes.get(name, 8 * MB) for name in self.databases}

class RecordingHandle:
    """Stands in for DatabaseHandle: records SQL, answers through a responder."""

    def __init__(self, database: str, responder: Optional[Callable] = None, fail: Optional[Callable[[str], bool]] = None):
        self.database = database
        self.responder = responder
        self.fail = fail
        self.statements: List[str] = []
        self.params: List[Optional[dict]] = []
        self.closed = False

    async def execute(self, sql, params=None):
        self.statements.append(sql)
        self.params.append(params)
        if self.fail and self.fail(sql):
            raise sql_error("server closed the connection unexpectedly")
        return self.responder(sql, params) if self.responder else []

    async def close(self):
        self.closed = True

def make_session(
    pid: int,
    user: Optional[str] = "u_app",
    state: Optional[str] = "active",
    query_elapsed: Optional[float] = None,
    xact_elapsed: Optional[float] = None,
    database: str = "d_app",
) -> BackendSession:
    return BackendSession(
        pid=pid,
        user=user,
        database=database,
        query="SELECT pg_sleep(600)",
        state=state,
        query_elapsed=query_elapsed,
        xact_elapsed=xact_elapsed,
    )

# ==============================================================================
# 2. 账本 / 配额 / 引擎 Fixtures
# ==============================================================================

@pytest.fixture
def ledger_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"

@pytest.fixture
async def ledger_engine(ledger_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """每个测试一个全新的 SQLite 文件"""
    engine = create_ledger_engine(ledger_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
def ledger(ledger_engine: AsyncEngine) -> LedgerService:
    return LedgerService(create_session_factory(ledger_engine))

@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture
def quota() -> QuotaAccountant:
    """两个 free 配额的节点"""
    return QuotaAccountant(capacity_bytes=2 * ALLOTMENT, allotments={ServicePlan.FREE: ALLOTMENT})

@pytest.fixture
def provisioning(fake_gateway: FakeGateway, ledger: LedgerService, quota: QuotaAccountant) -> ProvisioningService:
    return ProvisioningService(
        gateway=fake_gateway,
        ledger=ledger,
        quota=quota,
        hostname="10.0.0.5",
        port=5432,
    )

# ==============================================================================
# 3. API Fixtures
# ==============================================================================

@pytest.fixture
def node_mock() -> AsyncMock:
    return AsyncMock(spec=ServiceNode)

@pytest.fixture
async def client(node_mock: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """
    不经过 lifespan: 直接把 mock 节点挂到 app.state 上。
    """
    from pgnode.main import app
    app.state.node = node_mock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    del app.state.node
