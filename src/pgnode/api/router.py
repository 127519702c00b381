# src/pgnode/api/router.py

from fastapi import APIRouter
from pgnode.api.v1 import node

# The main router for API v1
router = APIRouter(prefix="/api/v1")

router.include_router(
    node.router,
    prefix="/node",
    tags=["Node - PostgreSQL"]
)
