"""
服务名索引维护与查询的 FastAPI 路由定义。
外部 watch 层在配置资源变更时调用这些端点。
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from . import services
from .core import ServiceNameIndex
from .schemas import AuthorizationConfiguration, ConfigurationKind, IndexedConfiguration

router = APIRouter(prefix="/index", tags=["Service Name Index"])


@router.put("/configurations", response_model=IndexedConfiguration)
async def upsert_configuration(
    configuration: AuthorizationConfiguration,
    index: ServiceNameIndex = Depends(services.get_index),
) -> IndexedConfiguration:
    """
    配置资源被创建或更新。
    """
    return services.upsert_configuration_service(index, configuration)


@router.delete("/configurations/{kind}/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_configuration(
    kind: ConfigurationKind,
    name: str,
    index: ServiceNameIndex = Depends(services.get_index),
) -> Response:
    """
    配置资源被删除。
    """
    if not services.remove_configuration_service(index, kind, name):
        raise HTTPException(status_code=404, detail=f"配置不存在: {kind.value}/{name}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/resync")
async def resync(
    configurations: List[AuthorizationConfiguration],
    index: ServiceNameIndex = Depends(services.get_index),
) -> dict:
    """
    用完整的配置列表替换索引内容。
    """
    return {"configurations": services.resync_service(index, configurations)}


@router.get("/services/{namespace}/{name}", response_model=List[str])
async def lookup_configurations_for_service(
    namespace: str,
    name: str,
    index: ServiceNameIndex = Depends(services.get_index),
) -> List[str]:
    return services.lookup_service(index, namespace, name)
