# src/pgnode/services/storage_quota.py

import logging
from typing import Dict, List
from sqlalchemy.exc import SQLAlchemyError
from pgnode.services.exceptions import ServiceException
from pgnode.services.ledger_service import LedgerService
from pgnode.services.postgres.gateway import PostgresGateway
from pgnode.services.postgres.identifiers import PUBLIC

logger = logging.getLogger(__name__)

class StorageQuotaEnforcer:
    """
    Flips TenantDatabase.quota_exceeded from the live database sizes.

    Over the limit: object privileges are revoked from PUBLIC and every
    bound role, leaving connect-only access. Back under the limit: the
    baseline grants are restored. This is the only writer of the flag.
    """

    def __init__(self, gateway: PostgresGateway, ledger: LedgerService, max_db_size_bytes: int):
        self.gateway = gateway
        self.ledger = ledger
        self.max_db_size_bytes = max_db_size_bytes

    async def enforce(self) -> Dict[str, List[str]]:
        changes: Dict[str, List[str]] = {"revoked": [], "restored": []}
        try:
            sizes = await self.gateway.database_sizes()
            for tenant in await self.ledger.list_tenants():
                size = sizes.get(tenant.name)
                if size is None:
                    continue
                over = size > self.max_db_size_bytes
                if over and not tenant.quota_exceeded:
                    grantees = [PUBLIC]
                    for bound_user in tenant.bound_users:
                        grantees.extend([bound_user.user, bound_user.sys_user])
                    await self.gateway.revoke_object_privileges(tenant.name, grantees)
                    await self.ledger.set_quota_exceeded(tenant.name, True)
                    changes["revoked"].append(tenant.name)
                    logger.info(f"[StorageQuota] {tenant.name} is over quota ({size} > {self.max_db_size_bytes} bytes), privileges revoked.")
                elif not over and tenant.quota_exceeded:
                    await self.gateway.grant_baseline(tenant.name)
                    await self.ledger.set_quota_exceeded(tenant.name, False)
                    changes["restored"].append(tenant.name)
                    logger.info(f"[StorageQuota] {tenant.name} is back under quota ({size} bytes), privileges restored.")
        except SQLAlchemyError as e:
            logger.warning(f"[StorageQuota] PostgreSQL error: {e}")
        except ServiceException as e:
            logger.error(f"[StorageQuota] Skipping cycle: {e.message}")
        return changes
