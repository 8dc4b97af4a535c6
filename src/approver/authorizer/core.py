"""
授权器：判断某个用户是否有权为给定标识（主机名）申请证书。

所有实现遵循同一契约 is_authorized(user_info, identifier) -> bool：
- 返回 True/False 表示明确的允许/拒绝
- 无法判断时抛出 AuthorizationError（调用方应重试，不能视为拒绝）

实现之间可互换，由 AuthorizerFactory 按配置值创建。
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Tuple

from loguru import logger

from ..csr.schemas import UserInfo
from ..index.core import AUTHORIZED_PRINCIPAL_KEY, ServiceNameIndex, group_key, user_key


class AuthorizationError(RuntimeError):
    """授权结果无法确定（例如后端存储或索引不可用）。"""


class AuthorizerKind(str, Enum):
    ALWAYS_ALLOW = "always-allow"
    NAMED_PRINCIPAL = "named-principal"
    SERVICE_ENDPOINT = "service-endpoint"


class UserAuthorizer(ABC):
    """判断用户是否有权为某个标识（例如主机名）申请证书。"""

    kind: AuthorizerKind

    @abstractmethod
    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        """
        :param user_info: 发起请求的用户身份。
        :param identifier: 单个请求的标识（CN 或 DNS 名称）。
        :return: 是否授权。
        :raises AuthorizationError: 无法确定授权结果。
        """
        pass


class AlwaysAllowAuthorizer(UserAuthorizer):
    """总是允许，用于宽松或测试部署。"""

    kind = AuthorizerKind.ALWAYS_ALLOW

    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        return True


def extract_service_namespace_name(hostname: str) -> Tuple[str, str]:
    """
    从 <service>.<namespace>.<suffix> 形式的主机名中解析服务引用，
    suffix 本身可以包含点，例如 svc.ns.cluster.local。
    :return: (namespace, name)
    :raises ValueError: 主机名格式不符。
    """
    parts = hostname.split(".", 2)
    if len(parts) != 3:
        raise ValueError(f"invalid service hostname format: {hostname!r}")
    if parts[0] == "" or parts[1] == "":
        raise ValueError(f"invalid service hostname {hostname!r}")
    return parts[1], parts[0]


class NamedPrincipalAuthorizer(UserAuthorizer):
    """
    根据服务名索引授权：当有任一配置资源的 webhook 指向主机名对应的服务时允许。

    此外，配置资源可以通过以下注解显式授权用户（逗号分隔）：
    - webhooks.cert-manager.io/authorized-usernames
    - webhooks.cert-manager.io/authorized-groups
    用户名或任一用户组出现在任一配置的允许列表中时同样允许，与服务名匹配无关。
    """

    kind = AuthorizerKind.NAMED_PRINCIPAL

    def __init__(self, index: ServiceNameIndex):
        self.index = index

    def _principal_keys(self, user_info: UserInfo) -> List[str]:
        keys = [user_key(user_info.username)] if user_info.username else []
        keys += [group_key(g) for g in user_info.groups if g]
        return keys

    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        try:
            namespace, name = extract_service_namespace_name(identifier)
        except ValueError as e:
            logger.debug(f"标识不是服务主机名，不予授权: {e}")
            return False

        try:
            configurations = self.index.lookup_configurations_for_service(namespace, name)
            if configurations:
                logger.debug(f"{identifier} 由配置 {sorted(configurations)} 引用，允许")
                return True

            for key in self._principal_keys(user_info):
                if self.index.lookup(AUTHORIZED_PRINCIPAL_KEY, key):
                    logger.debug(f"{key} 位于配置的显式授权列表中，允许 {identifier}")
                    return True
        except KeyError as e:
            raise AuthorizationError(f"查询索引失败: {e}") from e

        return False


class ServiceEndpointAuthorizer(UserAuthorizer):
    """
    预期校验请求者绑定的 ServiceAccount 与目标服务的 endpoint 是否匹配。
    该校验尚未实现，当前总是允许。
    """

    kind = AuthorizerKind.SERVICE_ENDPOINT

    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        return True


class AuthorizerFactory:
    """按配置值创建授权器"""

    @staticmethod
    def create_authorizer(kind: AuthorizerKind | str, index: ServiceNameIndex | None = None) -> UserAuthorizer:
        try:
            kind = AuthorizerKind(kind)
        except ValueError:
            raise ValueError(f"Unsupported authorizer type: {kind}") from None

        if kind == AuthorizerKind.ALWAYS_ALLOW:
            return AlwaysAllowAuthorizer()

        elif kind == AuthorizerKind.NAMED_PRINCIPAL:
            if index is None:
                raise ValueError("named-principal authorizer requires a service name index")
            return NamedPrincipalAuthorizer(index)

        else:
            return ServiceEndpointAuthorizer()

    @staticmethod
    def get_supported_authorizers() -> List[str]:
        return [k.value for k in AuthorizerKind]
