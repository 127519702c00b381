# src/pgnode/models/__init__.py

from .ledger import (
    ServicePlan,
    TenantDatabase,
    BoundUser
)
