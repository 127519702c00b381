"""create ledger tables

Revision ID: 0001_create_ledger
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_create_ledger'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'pg_tenant_databases',
        sa.Column('name', sa.String(length=63), nullable=False),
        sa.Column('plan', sa.Enum('free', name='service_plan', native_enum=False), nullable=False),
        sa.Column('quota_exceeded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('name', name=op.f('pk_pg_tenant_databases')),
    )
    op.create_table(
        'pg_bound_users',
        sa.Column('user', sa.String(length=63), nullable=False),
        sa.Column('password', sa.String(length=128), nullable=False),
        sa.Column('sys_user', sa.String(length=63), nullable=False),
        sa.Column('sys_password', sa.String(length=128), nullable=False),
        sa.Column('default_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tenant_name', sa.String(length=63), nullable=False),
        sa.ForeignKeyConstraint(
            ['tenant_name'], ['pg_tenant_databases.name'],
            name=op.f('fk_pg_bound_users_tenant_name_pg_tenant_databases'),
            ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('user', name=op.f('pk_pg_bound_users')),
    )
    with op.batch_alter_table('pg_bound_users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pg_bound_users_tenant_name'), ['tenant_name'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table('pg_bound_users', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_pg_bound_users_tenant_name'))
    op.drop_table('pg_bound_users')
    op.drop_table('pg_tenant_databases')
