# tests/services/test_ledger_service.py

import pytest
from pgnode.models import ServicePlan
from pgnode.services.credentials import Binding
from pgnode.services.exceptions import LocalDbError

pytestmark = pytest.mark.asyncio

def make_binding(user: str, default_user: bool = False) -> Binding:
    return Binding(user=user, password=f"p{user}", sys_user=f"s{user}", sys_password=f"sp{user}", default_user=default_user)

async def test_create_and_get_tenant(ledger):
    await ledger.create_tenant("d1", ServicePlan.FREE, make_binding("u1", default_user=True))

    tenant = await ledger.get_tenant("d1")
    assert tenant.plan == ServicePlan.FREE
    assert tenant.quota_exceeded is False
    assert tenant.default_user.user == "u1"
    assert tenant.default_user.sys_password == "spu1"

async def test_get_unknown_tenant_returns_none(ledger):
    assert await ledger.get_tenant("nope") is None
    assert await ledger.get_bound_user("nope", "u1") is None

async def test_create_tenant_is_atomic(ledger):
    await ledger.create_tenant("d1", ServicePlan.FREE, make_binding("u1", default_user=True))

    # 用户主键冲突: 租户行也不能留下
    with pytest.raises(LocalDbError):
        await ledger.create_tenant("d2", ServicePlan.FREE, make_binding("u1", default_user=True))

    assert await ledger.get_tenant("d2") is None
    assert [t.name for t in await ledger.list_tenants()] == ["d1"]

async def test_bound_user_lifecycle(ledger):
    await ledger.create_tenant("d1", ServicePlan.FREE, make_binding("u1", default_user=True))
    await ledger.add_bound_user("d1", make_binding("u3"))
    await ledger.add_bound_user("d1", make_binding("u2"))

    assert [u.user for u in await ledger.list_bound_users("d1")] == ["u1", "u2", "u3"]

    assert await ledger.delete_bound_user("d1", "u2") is True
    assert await ledger.delete_bound_user("d1", "u2") is False
    assert [u.user for u in (await ledger.get_tenant("d1")).bound_users] == ["u1", "u3"]

async def test_add_bound_user_to_unknown_tenant_fails(ledger):
    with pytest.raises(LocalDbError):
        await ledger.add_bound_user("ghost", make_binding("u9"))

async def test_set_quota_exceeded(ledger):
    await ledger.create_tenant("d1", ServicePlan.FREE, make_binding("u1", default_user=True))

    assert await ledger.set_quota_exceeded("d1", True) is True
    assert (await ledger.get_tenant("d1")).quota_exceeded is True
    assert await ledger.set_quota_exceeded("ghost", True) is False

async def test_delete_tenant_removes_bound_users(ledger):
    await ledger.create_tenant("d1", ServicePlan.FREE, make_binding("u1", default_user=True))
    await ledger.add_bound_user("d1", make_binding("u2"))

    assert await ledger.delete_tenant("d1") is True

    assert await ledger.get_tenant("d1") is None
    assert await ledger.list_bound_users("d1") == []
    assert await ledger.delete_tenant("d1") is False
