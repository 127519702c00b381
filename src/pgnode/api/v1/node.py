# src/pgnode/api/v1/node.py

from fastapi import APIRouter
from pgnode.api.dependencies import NodeDep
from pgnode.schemas.common import JsonResponse
from pgnode.schemas.node_schemas import (
    AnnouncementRead, CredentialRead,
    ProvisionRequest, UnprovisionRequest, BindRequest, UnbindRequest
)
from pgnode.services.node import ServiceNode

router = APIRouter()

# ServiceException 由 main.py 中的全局异常处理器映射为对应的 HTTP 状态码

@router.get("/announcement", response_model=JsonResponse[AnnouncementRead], summary="Advertise remaining capacity")
async def announcement(node: ServiceNode = NodeDep):
    return JsonResponse(data=await node.announcement())

@router.post("/provision", response_model=JsonResponse[CredentialRead], summary="Create a tenant database")
async def provision(request: ProvisionRequest, node: ServiceNode = NodeDep):
    credential = request.credential.to_dict() if request.credential else None
    return JsonResponse(data=await node.provision(request.plan, credential))

@router.post("/unprovision", response_model=JsonResponse[bool], summary="Destroy a tenant database")
async def unprovision(request: UnprovisionRequest, node: ServiceNode = NodeDep):
    credentials = [c.to_dict() for c in request.credentials]
    return JsonResponse(data=await node.unprovision(request.name, credentials))

@router.post("/bind", response_model=JsonResponse[CredentialRead], summary="Create a new credential on a tenant database")
async def bind(request: BindRequest, node: ServiceNode = NodeDep):
    credential = request.credential.to_dict() if request.credential else None
    return JsonResponse(data=await node.bind(request.name, request.bind_opts, credential))

@router.post("/unbind", response_model=JsonResponse[bool], summary="Remove a credential")
async def unbind(request: UnbindRequest, node: ServiceNode = NodeDep):
    return JsonResponse(data=await node.unbind(request.credential.to_dict()))
