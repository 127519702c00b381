# src/pgnode/api/dependencies.py

from fastapi import Depends, Request
from pgnode.services.node import ServiceNode

async def get_node(request: Request) -> ServiceNode:
    """lifespan 中创建并启动的节点实例"""
    return request.app.state.node

NodeDep = Depends(get_node)
