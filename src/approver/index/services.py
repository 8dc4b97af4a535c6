"""
服务名索引的业务逻辑层，供路由层与审批引擎调用。
进程内只有一个索引实例，由外部 watch 层通过路由写入。
"""

from typing import List

from .core import ServiceNameIndex
from .schemas import (
    AuthorizationConfiguration,
    ConfigurationKind,
    IndexedConfiguration,
    configuration_identity,
)

service_index = ServiceNameIndex()


def get_index() -> ServiceNameIndex:
    return service_index


def upsert_configuration_service(
    index: ServiceNameIndex, configuration: AuthorizationConfiguration
) -> IndexedConfiguration:
    return index.on_configuration_changed(configuration)


def remove_configuration_service(index: ServiceNameIndex, kind: ConfigurationKind, name: str) -> bool:
    """
    移除配置。
    :return: 配置是否存在。
    """
    return index.on_configuration_removed(configuration_identity(kind, name))


def resync_service(index: ServiceNameIndex, configurations: List[AuthorizationConfiguration]) -> int:
    return index.resync(configurations)


def lookup_service(index: ServiceNameIndex, namespace: str, name: str) -> List[str]:
    """查询引用了 namespace/name 服务的配置标识，按字典序返回。"""
    return sorted(index.lookup_configurations_for_service(namespace, name))
