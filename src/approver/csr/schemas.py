"""
证书签名请求 (CSR) 相关的数据模型定义。

公开接口：
- KeyUsage: Kubernetes CSR 中允许出现的密钥用途
- ConditionType / DecisionState: 审批条件类型与派生的决策状态
- UserInfo: 发起请求的身份（不可变）
- CertificateSigningRequestCondition: 审批条件
- CertificateRequest: 外部拥有的 CSR 记录（核心只读）
- ParsedRequest: 解码后的 CSR 内容（仅在一次决策内存在）
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class KeyUsage(str, Enum):
    SIGNING = "signing"
    DIGITAL_SIGNATURE = "digital signature"
    CONTENT_COMMITMENT = "content commitment"
    KEY_ENCIPHERMENT = "key encipherment"
    KEY_AGREEMENT = "key agreement"
    DATA_ENCIPHERMENT = "data encipherment"
    CERT_SIGN = "cert sign"
    CRL_SIGN = "crl sign"
    ENCIPHER_ONLY = "encipher only"
    DECIPHER_ONLY = "decipher only"
    ANY = "any"
    SERVER_AUTH = "server auth"
    CLIENT_AUTH = "client auth"
    CODE_SIGNING = "code signing"
    EMAIL_PROTECTION = "email protection"
    SMIME = "s/mime"
    IPSEC_END_SYSTEM = "ipsec end system"
    IPSEC_TUNNEL = "ipsec tunnel"
    IPSEC_USER = "ipsec user"
    TIMESTAMPING = "timestamping"
    OCSP_SIGNING = "ocsp signing"
    MICROSOFT_SGC = "microsoft sgc"
    NETSCAPE_SGC = "netscape sgc"


class ConditionType(str, Enum):
    APPROVED = "Approved"
    DENIED = "Denied"
    FAILED = "Failed"


class DecisionState(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    DENIED = "Denied"


class UserInfo(BaseModel):
    """
    发起 CSR 的用户身份。创建后不可修改。
    """

    model_config = ConfigDict(frozen=True)

    username: str = ""
    uid: str = ""
    groups: Tuple[str, ...] = ()
    extra: Mapping[str, Tuple[str, ...]] = Field(default_factory=lambda: MappingProxyType({}))

    @field_validator("extra", mode="after")
    @classmethod
    def freeze_extra(cls, value: Mapping[str, Tuple[str, ...]]) -> Mapping[str, Tuple[str, ...]]:
        """extra 以只读映射保存，授权器无法原地修改。"""
        return MappingProxyType(dict(value))


class CertificateSigningRequestCondition(BaseModel):
    type: ConditionType
    status: str = "True"
    reason: str = ""
    message: str = ""
    last_update_time: Optional[datetime] = None


class CertificateSigningRequestStatus(BaseModel):
    conditions: List[CertificateSigningRequestCondition] = Field(default_factory=list)


class CertificateRequest(BaseModel):
    """
    外部拥有的 CSR 记录。
    request 字段为 Base64 编码的 PEM（与 Kubernetes CSR 的 JSON 表示一致）。
    """

    name: str
    signer_name: Optional[str] = None
    request: str
    usages: List[KeyUsage] = Field(default_factory=list)
    username: str = ""
    uid: str = ""
    groups: List[str] = Field(default_factory=list)
    extra: Dict[str, List[str]] = Field(default_factory=dict)
    status: CertificateSigningRequestStatus = Field(
        default_factory=CertificateSigningRequestStatus
    )

    def user_info(self) -> UserInfo:
        """从请求中提取发起者身份。"""
        return UserInfo(
            username=self.username,
            uid=self.uid,
            groups=tuple(self.groups),
            extra={k: tuple(v) for k, v in self.extra.items()},
        )

    @property
    def decision_state(self) -> DecisionState:
        """根据条件列表派生当前的决策状态。Approved 优先于 Denied。"""
        types = {c.type for c in self.status.conditions}
        if ConditionType.APPROVED in types:
            return DecisionState.APPROVED
        if ConditionType.DENIED in types:
            return DecisionState.DENIED
        return DecisionState.PENDING


class ParsedRequest(BaseModel):
    """
    从 PEM 中解码出的 CSR 内容，只在一次决策过程中使用。
    """

    common_name: str = ""
    dns_names: List[str] = Field(default_factory=list)
    ip_addresses: List[str] = Field(default_factory=list)
    email_addresses: List[str] = Field(default_factory=list)
    uris: List[str] = Field(default_factory=list)
