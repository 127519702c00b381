# tests/services/test_storage_quota.py

import pytest
from pgnode.services.postgres.identifiers import PUBLIC
from pgnode.services.storage_quota import StorageQuotaEnforcer
from tests.conftest import ALLOTMENT, MB, sql_error

pytestmark = pytest.mark.asyncio

@pytest.fixture
def enforcer(fake_gateway, ledger) -> StorageQuotaEnforcer:
    return StorageQuotaEnforcer(fake_gateway, ledger, max_db_size_bytes=ALLOTMENT)

async def test_over_quota_revokes_and_sets_flag(enforcer, provisioning, fake_gateway, ledger):
    credential = await provisioning.provision("free")
    name = credential["name"]
    fake_gateway.sizes[name] = ALLOTMENT + 1

    changes = await enforcer.enforce()

    assert changes == {"revoked": [name], "restored": []}
    tenant = await ledger.get_tenant(name)
    assert tenant.quota_exceeded is True
    default = tenant.default_user
    assert fake_gateway.revoked[name] == {PUBLIC, default.user, default.sys_user}
    assert name not in fake_gateway.baseline

async def test_size_equal_to_limit_is_not_over(enforcer, provisioning, fake_gateway, ledger):
    name = (await provisioning.provision("free"))["name"]
    fake_gateway.sizes[name] = ALLOTMENT

    assert await enforcer.enforce() == {"revoked": [], "restored": []}
    assert (await ledger.get_tenant(name)).quota_exceeded is False

async def test_flagged_tenant_is_not_revoked_twice(enforcer, provisioning, fake_gateway):
    name = (await provisioning.provision("free"))["name"]
    fake_gateway.sizes[name] = 2 * ALLOTMENT

    await enforcer.enforce()
    fake_gateway.calls.clear()
    changes = await enforcer.enforce()

    assert changes == {"revoked": [], "restored": []}
    assert "revoke_object_privileges" not in fake_gateway.calls

async def test_back_under_quota_restores_baseline(enforcer, provisioning, fake_gateway, ledger):
    name = (await provisioning.provision("free"))["name"]
    fake_gateway.sizes[name] = 2 * ALLOTMENT
    await enforcer.enforce()

    fake_gateway.sizes[name] = 4 * MB
    changes = await enforcer.enforce()

    assert changes == {"revoked": [], "restored": [name]}
    assert (await ledger.get_tenant(name)).quota_exceeded is False
    assert name in fake_gateway.baseline
    assert name not in fake_gateway.revoked

async def test_bind_on_flagged_tenant_is_restricted(enforcer, provisioning, fake_gateway):
    name = (await provisioning.provision("free"))["name"]
    fake_gateway.sizes[name] = 2 * ALLOTMENT
    await enforcer.enforce()

    credential = await provisioning.bind(name)

    assert credential["user"] in fake_gateway.revoked[name]

async def test_tenant_missing_from_sizes_is_skipped(enforcer, provisioning, fake_gateway, ledger):
    name = (await provisioning.provision("free"))["name"]
    del fake_gateway.databases[name]

    assert await enforcer.enforce() == {"revoked": [], "restored": []}
    assert (await ledger.get_tenant(name)).quota_exceeded is False

async def test_sql_error_skips_the_cycle(enforcer, provisioning, fake_gateway):
    await provisioning.provision("free")
    fake_gateway.fail_on["database_sizes"] = sql_error()

    assert await enforcer.enforce() == {"revoked": [], "restored": []}
