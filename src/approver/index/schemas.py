"""
授权配置资源与服务引用的数据模型。

公开接口：
- ServiceReference: (namespace, name) 服务引用
- ConfigurationKind: 可携带 webhook 服务引用的资源类型
- AuthorizationConfiguration: 声明可代为申请证书的服务的配置资源
- IndexedConfiguration: 某个配置写入索引的键集合
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

AUTHORIZED_USERNAMES_ANNOTATION = "webhooks.cert-manager.io/authorized-usernames"
AUTHORIZED_GROUPS_ANNOTATION = "webhooks.cert-manager.io/authorized-groups"


class ServiceReference(BaseModel):
    namespace: str
    name: str

    @property
    def key(self) -> str:
        """索引使用的字符串键：namespace/name。"""
        return f"{self.namespace}/{self.name}"


class ConfigurationKind(str, Enum):
    VALIDATING_WEBHOOK = "ValidatingWebhookConfiguration"
    MUTATING_WEBHOOK = "MutatingWebhookConfiguration"
    CUSTOM_RESOURCE_DEFINITION = "CustomResourceDefinition"


class WebhookClientConfig(BaseModel):
    # 仅使用 URL 的 webhook 没有 service
    service: Optional[ServiceReference] = None
    url: Optional[str] = None


class Webhook(BaseModel):
    name: str = ""
    client_config: WebhookClientConfig = Field(default_factory=WebhookClientConfig)


class AuthorizationConfiguration(BaseModel):
    """
    外部拥有的配置资源。通过 webhooks[].client_config.service 声明其有权
    代为申请证书的服务；通过注解声明显式授权的用户名与用户组。
    """

    kind: ConfigurationKind = ConfigurationKind.VALIDATING_WEBHOOK
    name: str
    annotations: Dict[str, str] = Field(default_factory=dict)
    webhooks: List[Webhook] = Field(default_factory=list)

    @property
    def identity(self) -> str:
        return configuration_identity(self.kind, self.name)


class IndexedConfiguration(BaseModel):
    identity: str
    services: List[str] = Field(default_factory=list)
    principals: List[str] = Field(default_factory=list)


def configuration_identity(kind: ConfigurationKind | str, name: str) -> str:
    kind_value = kind.value if isinstance(kind, ConfigurationKind) else kind
    return f"{kind_value}/{name}"
