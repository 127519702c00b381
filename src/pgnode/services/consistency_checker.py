# src/pgnode/services/consistency_checker.py

import logging
from dataclasses import dataclass, field
from typing import List, Tuple
from pgnode.services.ledger_service import LedgerService
from pgnode.services.postgres.gateway import PostgresGateway

logger = logging.getLogger(__name__)

@dataclass
class AuditReport:
    # (database, role) pairs the ledger knows about but the ACL does not
    missing_grants: List[Tuple[str, str]] = field(default_factory=list)
    missing_databases: List[str] = field(default_factory=list)
    # (database, role) pairs with an ACL entry but no BoundUser
    unknown_grantees: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not (self.missing_grants or self.missing_databases or self.unknown_grantees)

class ConsistencyChecker:
    """
    Read-only audit of the ledger against pg_database.datacl.
    Findings are logged as warnings; nothing is repaired.
    """

    def __init__(self, gateway: PostgresGateway, ledger: LedgerService):
        self.gateway = gateway
        self.ledger = ledger

    async def check(self) -> AuditReport:
        report = AuditReport()
        acls = await self.gateway.database_acls()
        admin_user = self.gateway.admin_user

        for tenant in await self.ledger.list_tenants():
            db = tenant.name
            if db not in acls:
                report.missing_databases.append(db)
                logger.warning(f"[Consistency] Node database inconsistent!!! db <{db}> not in PostgreSQL.")
                continue

            grantees = set(acls[db])
            known = set()
            for bound_user in tenant.bound_users:
                known.update((bound_user.user, bound_user.sys_user))
                for role in (bound_user.user, bound_user.sys_user):
                    if role not in grantees:
                        report.missing_grants.append((db, role))
                        logger.warning(f"[Consistency] Node database inconsistent!!! db:user <{db}:{role}> not in PostgreSQL.")

            for role in sorted(grantees - known - {admin_user}):
                report.unknown_grantees.append((db, role))
                logger.warning(f"[Consistency] Role <{role}> has a grant on <{db}> but is not bound in the ledger.")

        if report.consistent:
            logger.info("[Consistency] Ledger is consistent with PostgreSQL.")
        return report
