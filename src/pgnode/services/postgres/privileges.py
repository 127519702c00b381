# src/pgnode/services/postgres/privileges.py

"""
GRANT / REVOKE sequences that run *inside* a tenant database.

Every function takes a connection handle (anything with an async
``execute(sql, params=None)`` returning a list of row dicts) and the
server version tuple. PostgreSQL >= 9 gets the bulk
``... ON ALL TABLES IN SCHEMA public`` syntax; older servers get one
statement per relation enumerated from the catalog.
"""

import logging
from typing import Iterable, List, Tuple
from sqlalchemy.exc import SQLAlchemyError
from pgnode.services.postgres.identifiers import quote_identifier, quote_grantee, quote_catalog_name

logger = logging.getLogger(__name__)

OBJECT_KINDS = ("TABLES", "SEQUENCES", "FUNCTIONS")

LIST_PUBLIC_TABLES = "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
LIST_PUBLIC_SEQUENCES = (
    "SELECT c.relname FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace "
    "WHERE c.relkind = 'S' AND n.nspname = 'public'"
)

def supports_bulk_grants(version: Tuple[int, int]) -> bool:
    return version[0] >= 9

async def _legacy_relation_statements(conn, template_table: str, template_sequence: str) -> List[str]:
    statements = []
    for row in await conn.execute(LIST_PUBLIC_TABLES):
        statements.append(template_table % quote_catalog_name(row["tablename"]))
    for row in await conn.execute(LIST_PUBLIC_SEQUENCES):
        statements.append(template_sequence % quote_catalog_name(row["relname"]))
    return statements

async def grant_connect(conn, database: str, roles: Iterable[str]) -> None:
    for role in roles:
        await conn.execute(f"GRANT CONNECT ON DATABASE {quote_identifier(database)} TO {quote_grantee(role)}")

async def revoke_connect(conn, database: str, roles: Iterable[str]) -> None:
    for role in roles:
        await conn.execute(f"REVOKE CONNECT ON DATABASE {quote_identifier(database)} FROM {quote_grantee(role)}")

async def grant_baseline(conn, version: Tuple[int, int]) -> None:
    """create on schema public + all object privileges, granted to PUBLIC."""
    await conn.execute("GRANT CREATE ON SCHEMA public TO PUBLIC")
    if supports_bulk_grants(version):
        for kind in OBJECT_KINDS:
            await conn.execute(f"GRANT ALL ON ALL {kind} IN SCHEMA public TO PUBLIC")
        return
    for statement in await _legacy_relation_statements(
        conn, "GRANT ALL ON %s TO PUBLIC", "GRANT ALL ON SEQUENCE %s TO PUBLIC"
    ):
        await conn.execute(statement)

async def revoke_object_privileges(conn, version: Tuple[int, int], grantees: Iterable[str]) -> None:
    """
    Leaves the grantees with CONNECT only: object privileges in schema
    public and CREATE on the schema are revoked.
    """
    for grantee in grantees:
        target = quote_grantee(grantee)
        await conn.execute(f"REVOKE CREATE ON SCHEMA public FROM {target}")
        if supports_bulk_grants(version):
            for kind in OBJECT_KINDS:
                await conn.execute(f"REVOKE ALL ON ALL {kind} IN SCHEMA public FROM {target} CASCADE")
            continue
        for statement in await _legacy_relation_statements(
            conn,
            f"REVOKE ALL ON %s FROM {target} CASCADE",
            f"REVOKE ALL ON SEQUENCE %s FROM {target} CASCADE",
        ):
            await conn.execute(statement)

async def _best_effort(conn, statement: str, params: dict | None = None) -> None:
    try:
        await conn.execute(statement, params)
    except SQLAlchemyError as e:
        logger.warning(f"[Privileges] Could not revoke user dependencies ({statement}): {e}")

async def release_role_dependencies(conn, version: Tuple[int, int], database: str, roles: List[str]) -> None:
    """
    Everything that must happen before DROP ROLE can succeed.
    Each statement is best effort: a failure is logged and the next one runs.
    """
    quoted = [quote_identifier(role) for role in roles]
    for role in quoted:
        await _best_effort(conn, f"DROP OWNED BY {role}")

    for role in quoted:
        if supports_bulk_grants(version):
            for kind in OBJECT_KINDS:
                await _best_effort(conn, f"REVOKE ALL ON ALL {kind} IN SCHEMA public FROM {role} CASCADE")
        else:
            try:
                statements = await _legacy_relation_statements(
                    conn,
                    f"REVOKE ALL ON %s FROM {role} CASCADE",
                    f"REVOKE ALL ON SEQUENCE %s FROM {role} CASCADE",
                )
            except SQLAlchemyError as e:
                logger.warning(f"[Privileges] Could not list relations of {database}: {e}")
                statements = []
            for statement in statements:
                await _best_effort(conn, statement)

    for role in quoted:
        await _best_effort(conn, f"REVOKE ALL ON DATABASE {quote_identifier(database)} FROM {role} CASCADE")
        await _best_effort(conn, f"REVOKE ALL ON SCHEMA public FROM {role} CASCADE")
