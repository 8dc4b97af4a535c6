"""
服务名索引：从 ServiceReference 到引用它的配置资源集合的派生映射。

索引由外部 watch 层通过 on_configuration_changed / on_configuration_removed /
resync 维护，授权器只读访问。写操作在锁内构建新快照后整体替换，
读操作直接读取当前快照，不加锁。

除服务名外，索引还按字段注册了其他提取函数（与 controller-runtime 的
FieldIndexer 类似），目前包括显式授权的用户名/用户组。
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, FrozenSet, Iterable, List

from loguru import logger

from .schemas import (
    AUTHORIZED_GROUPS_ANNOTATION,
    AUTHORIZED_USERNAMES_ANNOTATION,
    AuthorizationConfiguration,
    IndexedConfiguration,
)

# 查询引用了给定服务 (namespace/name) 的配置
SERVICE_NAME_KEY = ".synthetic.serviceName"
# 查询在注解中显式授权了给定用户 (user:<name>) 或用户组 (group:<name>) 的配置
AUTHORIZED_PRINCIPAL_KEY = ".synthetic.authorizedPrincipal"

IndexerFunc = Callable[[AuthorizationConfiguration], List[str]]

_EMPTY: FrozenSet[str] = frozenset()


def user_key(username: str) -> str:
    return f"user:{username}"


def group_key(group: str) -> str:
    return f"group:{group}"


def _split_annotation(value: str | None) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def service_name_indexer(configuration: AuthorizationConfiguration) -> List[str]:
    """提取配置中所有 webhook 指向的服务键，跳过仅使用 URL 的 webhook。"""
    service_names = []
    for webhook in configuration.webhooks:
        if webhook.client_config.service is None:
            continue
        service_names.append(webhook.client_config.service.key)
    return service_names


def authorized_principal_indexer(configuration: AuthorizationConfiguration) -> List[str]:
    annotations = configuration.annotations
    principals = [user_key(u) for u in _split_annotation(annotations.get(AUTHORIZED_USERNAMES_ANNOTATION))]
    principals += [group_key(g) for g in _split_annotation(annotations.get(AUTHORIZED_GROUPS_ANNOTATION))]
    return principals


DEFAULT_INDEXERS: Dict[str, IndexerFunc] = {
    SERVICE_NAME_KEY: service_name_indexer,
    AUTHORIZED_PRINCIPAL_KEY: authorized_principal_indexer,
}


class ServiceNameIndex:
    """
    按字段组织的配置索引。

    快照结构为 {字段: {值: frozenset(配置标识)}}，每次写入都会生成新的快照对象，
    因此读者看到的始终是某一时刻完整一致的映射。
    """

    def __init__(self, indexers: Dict[str, IndexerFunc] | None = None):
        self._indexers: Dict[str, IndexerFunc] = dict(indexers or DEFAULT_INDEXERS)
        self._lock = threading.Lock()
        self._snapshot: Dict[str, Dict[str, FrozenSet[str]]] = {f: {} for f in self._indexers}
        # 每个配置写入过的 {字段: [值]}，用于更新/删除时撤销旧条目
        self._keys_by_identity: Dict[str, Dict[str, List[str]]] = {}

    def __len__(self) -> int:
        return len(self._keys_by_identity)

    @property
    def fields(self) -> List[str]:
        return list(self._indexers)

    def _copy_snapshot(self) -> Dict[str, Dict[str, FrozenSet[str]]]:
        return {field: dict(mapping) for field, mapping in self._snapshot.items()}

    @staticmethod
    def _remove(snapshot, identity: str, keys: Dict[str, List[str]]) -> None:
        for field, values in keys.items():
            mapping = snapshot[field]
            for value in values:
                remaining = mapping.get(value, _EMPTY) - {identity}
                if remaining:
                    mapping[value] = remaining
                else:
                    mapping.pop(value, None)

    def _add(self, snapshot, configuration: AuthorizationConfiguration) -> Dict[str, List[str]]:
        identity = configuration.identity
        keys: Dict[str, List[str]] = {}
        for field, indexer in self._indexers.items():
            values = sorted(set(indexer(configuration)))
            mapping = snapshot[field]
            for value in values:
                mapping[value] = mapping.get(value, _EMPTY) | {identity}
            keys[field] = values
        return keys

    def on_configuration_changed(self, configuration: AuthorizationConfiguration) -> IndexedConfiguration:
        """
        新增或更新一个配置的索引条目（按配置标识覆盖）。
        :param configuration: 变更后的配置资源。
        :return: 该配置当前写入索引的键。
        """
        identity = configuration.identity
        with self._lock:
            snapshot = self._copy_snapshot()
            previous = self._keys_by_identity.get(identity)
            if previous is not None:
                self._remove(snapshot, identity, previous)
            keys = self._add(snapshot, configuration)
            self._keys_by_identity[identity] = keys
            self._snapshot = snapshot

        logger.debug(f"索引已更新: {identity} -> {keys}")
        return IndexedConfiguration(
            identity=identity,
            services=keys.get(SERVICE_NAME_KEY, []),
            principals=keys.get(AUTHORIZED_PRINCIPAL_KEY, []),
        )

    def on_configuration_removed(self, identity: str) -> bool:
        """
        移除一个配置的所有索引条目。
        :return: 配置此前存在于索引中时返回 True。
        """
        with self._lock:
            previous = self._keys_by_identity.pop(identity, None)
            if previous is None:
                return False
            snapshot = self._copy_snapshot()
            self._remove(snapshot, identity, previous)
            self._snapshot = snapshot

        logger.debug(f"索引已移除: {identity}")
        return True

    def resync(self, configurations: Iterable[AuthorizationConfiguration]) -> int:
        """
        用一组完整的配置原子地替换整个索引（外部 watch 层重新 list 之后调用）。
        :return: 重建后索引中的配置数量。
        """
        snapshot: Dict[str, Dict[str, FrozenSet[str]]] = {f: {} for f in self._indexers}
        keys_by_identity: Dict[str, Dict[str, List[str]]] = {}
        for configuration in configurations:
            identity = configuration.identity
            if identity in keys_by_identity:
                self._remove(snapshot, identity, keys_by_identity[identity])
            keys_by_identity[identity] = self._add(snapshot, configuration)

        with self._lock:
            self._snapshot = snapshot
            self._keys_by_identity = keys_by_identity

        logger.info(f"索引已重建，共 {len(keys_by_identity)} 个配置")
        return len(keys_by_identity)

    def lookup(self, field: str, value: str) -> FrozenSet[str]:
        """
        按字段查询配置标识集合。
        :raises KeyError: 字段未注册。
        """
        snapshot = self._snapshot
        if field not in snapshot:
            raise KeyError(f"未注册的索引字段: {field}")
        return snapshot[field].get(value, _EMPTY)

    def lookup_configurations_for_service(self, namespace: str, name: str) -> FrozenSet[str]:
        return self.lookup(SERVICE_NAME_KEY, f"{namespace}/{name}")
