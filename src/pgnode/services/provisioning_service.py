# src/pgnode/services/provisioning_service.py

import logging
import time
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from pgnode.models import ServicePlan
from pgnode.services.credentials import Binding, new_binding, new_database_name, gen_credential
from pgnode.services.exceptions import (
    ServiceException, ConfigNotFoundError, CredentialNotFoundError,
    OperationFailedError, InvalidIdentifierError
)
from pgnode.services.ledger_service import LedgerService
from pgnode.services.postgres.gateway import PostgresGateway
from pgnode.services.postgres.identifiers import validate_identifier, validate_password
from pgnode.services.quota import QuotaAccountant

logger = logging.getLogger(__name__)

class ProvisioningService:
    """
    Multi-step create/destroy of tenant databases and their roles.
    Each operation either returns its result or raises exactly one
    ServiceException after rolling back the server-side effects it made.
    """

    def __init__(
        self,
        gateway: PostgresGateway,
        ledger: LedgerService,
        quota: QuotaAccountant,
        hostname: str,
        port: int,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.quota = quota
        self.hostname = hostname
        self.port = port

    # ==============================================================================
    # provision / unprovision
    # ==============================================================================

    async def provision(self, plan: Any, credential: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        service_plan = self.quota.parse_plan(plan)
        name = new_database_name(credential)
        binding = new_binding(credential, default_user=True)

        logger.info(f"[Provision] Creating database {name} (plan={service_plan.value})")
        start = time.monotonic()
        database_created = False
        reserved = False
        created_roles: List[str] = []
        try:
            await self.gateway.create_database(name)
            database_created = True
            await self.gateway.revoke_public_access(name)
            await self._create_database_user(name, binding, False, created_roles)
            await self.quota.reserve(service_plan)
            reserved = True
            await self.ledger.create_tenant(name, service_plan, binding)
        except Exception as e:
            logger.error(f"[Provision] Could not provision {name}: {e}")
            if reserved:
                await self.quota.release(service_plan)
            if database_created:
                await self._drop_database_best_effort(name, created_roles)
            if isinstance(e, SQLAlchemyError):
                raise OperationFailedError(f"provision {name}: {e}") from e
            raise

        logger.info(f"[Provision] Done creating {name}. Took {time.monotonic() - start:.2f}s.")
        return gen_credential(name, self.hostname, self.port, binding.user, binding.password)

    async def unprovision(self, name: Optional[str], credentials: Optional[List[Dict[str, Any]]] = None) -> bool:
        logger.info(f"[Unprovision] Database {name}, bindings: {len(credentials or [])}")
        tenant = await self.ledger.get_tenant(name) if name else None
        if tenant is None:
            raise ConfigNotFoundError(name)

        # 逐个解绑, 忽略 not found 等错误: 租户无论如何都要被删除
        for credential in credentials or []:
            try:
                await self.unbind(credential)
            except ServiceException as e:
                logger.warning(f"[Unprovision] Ignoring unbind failure for {name}: {e.message}")

        tenant = await self.ledger.get_tenant(name) or tenant
        default_user = tenant.default_user

        try:
            await self.gateway.terminate_database_sessions(name)
        except SQLAlchemyError as e:
            logger.warning(f"[Unprovision] Could not kill sessions of {name}: {e}")

        # IF EXISTS: 上一次 unprovision 可能已删库但没能删账本
        try:
            await self.gateway.drop_database(name, if_exists=True)
        except SQLAlchemyError as e:
            logger.error(f"[Unprovision] Could not delete database {name}: {e}")
            raise OperationFailedError(f"DROP DATABASE {name}: {e}") from e

        if default_user is not None:
            for role in (default_user.user, default_user.sys_user):
                try:
                    await self.gateway.drop_role(role, if_exists=True)
                except SQLAlchemyError as e:
                    logger.error(f"[Unprovision] Could not drop role {role}: {e}")

        # 先删账本再归还配额, 账本失败时重试不会重复归还
        await self.ledger.delete_tenant(name)
        await self.quota.release(tenant.plan)
        logger.info(f"[Unprovision] Successfully fulfilled unprovision request: {name}")
        return True

    # ==============================================================================
    # bind / unbind
    # ==============================================================================

    async def bind(
        self,
        name: Optional[str],
        bind_opts: Optional[Dict[str, Any]] = None,
        credential: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        logger.info(f"[Bind] Bind service for db: {name}, bind_opts = {bind_opts}")
        tenant = await self.ledger.get_tenant(name) if name else None
        if tenant is None:
            raise ConfigNotFoundError(name)

        binding = new_binding(credential, default_user=False)
        created_roles: List[str] = []
        reused_roles: List[str] = []
        try:
            await self._create_database_user(name, binding, tenant.quota_exceeded, created_roles, reused_roles)
            await self.ledger.add_bound_user(name, binding)
        except Exception as e:
            logger.error(f"[Bind] Could not bind {binding.user} to {name}: {e}")
            if created_roles:
                try:
                    await self.gateway.drop_bound_roles(name, created_roles)
                except (ServiceException, SQLAlchemyError) as cleanup_error:
                    logger.error(f"[Bind] Could not drop roles {created_roles}: {cleanup_error}")
            # 已存在的角色不删除, 只收回本次授予的 CONNECT; 已绑定在该库上的角色保持不动
            bound = {role for u in tenant.bound_users for role in (u.user, u.sys_user)}
            foreign_roles = [role for role in reused_roles if role not in bound]
            if foreign_roles:
                try:
                    await self.gateway.revoke_connect(name, foreign_roles)
                except (ServiceException, SQLAlchemyError) as cleanup_error:
                    logger.error(f"[Bind] Could not revoke CONNECT from {foreign_roles}: {cleanup_error}")
            if isinstance(e, SQLAlchemyError):
                raise OperationFailedError(f"bind {name}: {e}") from e
            raise

        return gen_credential(name, self.hostname, self.port, binding.user, binding.password)

    async def unbind(self, credential: Optional[Dict[str, Any]]) -> bool:
        if not credential:
            raise CredentialNotFoundError("empty credential")
        name, user, password = (credential.get(key) for key in ("name", "user", "password"))
        logger.info(f"[Unbind] Unbind user {user} from {name}")

        tenant = await self.ledger.get_tenant(name) if name else None
        if tenant is None:
            raise ConfigNotFoundError(name)

        # 删除之前先校验凭证, 防止畸形凭证误删正常账号
        try:
            validate_identifier(user, "user")
            validate_password(password)
        except InvalidIdentifierError:
            raise CredentialNotFoundError(f"{name}/{user}")
        try:
            authenticated = await self.gateway.verify_credential(user, password)
        except SQLAlchemyError as e:
            raise OperationFailedError(f"verify credential {user}: {e}") from e
        if not authenticated:
            raise CredentialNotFoundError(f"{name}/{user}")

        bound_user = next((u for u in tenant.bound_users if u.user == user), None)
        if bound_user is None:
            logger.warning(f"[Unbind] Node database inconsistent!!! user <{user}> not in local database.")
            return True

        await self.gateway.drop_bound_roles(name, [bound_user.user, bound_user.sys_user])
        if not await self.ledger.delete_bound_user(name, user):
            logger.warning(f"[Unbind] Bound user {user} of {name} was already gone from the ledger.")
        return True

    # ==============================================================================
    # 内部步骤
    # ==============================================================================

    async def _create_database_user(
        self,
        name: str,
        binding: Binding,
        quota_exceeded: bool,
        created_roles: List[str],
        reused_roles: Optional[List[str]] = None,
    ) -> None:
        """
        Creates the login role (unless it already exists) and its sys role,
        then grants access. Roles actually created are appended to
        ``created_roles`` so the caller can roll them back; a pre-existing
        login role goes to ``reused_roles``.
        """
        logger.info(f"[Provision] Creating credentials {binding.user} for database {name}")
        if await self.gateway.role_exists(binding.user):
            logger.warning(f"[Provision] Role: {binding.user} already exists")
            if reused_roles is not None:
                reused_roles.append(binding.user)
        else:
            await self.gateway.create_login_role(binding.user, binding.password)
            created_roles.append(binding.user)
        await self.gateway.create_login_role(binding.sys_user, binding.sys_password)
        created_roles.append(binding.sys_user)
        await self.gateway.grant_access(name, [binding.sys_user, binding.user], restricted=quota_exceeded)

    async def _drop_database_best_effort(self, name: str, roles: List[str]) -> None:
        try:
            await self.gateway.drop_database(name)
        except (ServiceException, SQLAlchemyError) as e:
            logger.error(f"[Provision] Rollback could not drop database {name}: {e}")
        for role in roles:
            try:
                await self.gateway.drop_role(role, if_exists=True)
            except (ServiceException, SQLAlchemyError) as e:
                logger.error(f"[Provision] Rollback could not drop role {role}: {e}")
