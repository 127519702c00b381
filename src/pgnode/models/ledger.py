# src/pgnode/models/ledger.py

import enum
from sqlalchemy import Column, String, Boolean, Enum as SAEnum, ForeignKey
from sqlalchemy.orm import relationship
from pgnode.db.base import Base

class ServicePlan(str, enum.Enum):
    FREE = "free"

class TenantDatabase(Base):
    """
    A PostgreSQL database owned by this node.
    A row exists iff the database exists on the server.
    """
    __tablename__ = 'pg_tenant_databases'

    name = Column(String(63), primary_key=True, comment="数据库名, 同时也是服务器上的 database 名")
    plan = Column(
        SAEnum(ServicePlan, name="service_plan", native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    quota_exceeded = Column(Boolean, nullable=False, default=False)

    bound_users = relationship(
        "BoundUser",
        back_populates="tenant",
        cascade="all, delete-orphan",
        order_by="BoundUser.user"
    )

    @property
    def default_user(self) -> "BoundUser | None":
        return next((u for u in self.bound_users if u.default_user), None)

    def __repr__(self) -> str:
        return f"<TenantDatabase name={self.name!r} plan={self.plan} quota_exceeded={self.quota_exceeded}>"

class BoundUser(Base):
    """A login role (plus its sys role) bound to one tenant database."""
    __tablename__ = 'pg_bound_users'

    user = Column(String(63), primary_key=True)
    password = Column(String(128), nullable=False)
    sys_user = Column(String(63), nullable=False)
    sys_password = Column(String(128), nullable=False)
    default_user = Column(Boolean, nullable=False, default=False, comment="provision 时创建的用户, unprovision 时据此删除角色")
    tenant_name = Column(
        String(63),
        ForeignKey('pg_tenant_databases.name', ondelete='CASCADE'),
        nullable=False,
        index=True
    )

    tenant = relationship("TenantDatabase", back_populates="bound_users")

    def __repr__(self) -> str:
        # 不输出密码
        return f"<BoundUser user={self.user!r} sys_user={self.sys_user!r} tenant={self.tenant_name!r} default={self.default_user}>"
