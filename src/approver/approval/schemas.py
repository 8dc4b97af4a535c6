"""
审批决策的数据模型。

核心只计算决策，不写存储；由外部驱动方根据 action 将条件写回 CSR 资源。
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..csr.schemas import CertificateSigningRequestCondition


class DecisionAction(str, Enum):
    NOOP = "noop"
    APPROVE = "approve"
    ERROR = "error"


class DecisionReason(str, Enum):
    ALREADY_DECIDED = "AlreadyDecided"
    SIGNER_NAME_MISSING = "SignerNameMissing"
    UNRECOGNISED_SIGNER = "UnrecognisedSigner"
    PARSE_FAILED = "ParseFailed"
    INVALID_PARAMETERS = "InvalidParameters"
    NOT_AUTHORIZED = "NotAuthorized"
    AUTHORIZATION_ERROR = "AuthorizationError"
    AUTO_APPROVED = "AutoApproved"


class ApprovalDecision(BaseModel):
    """一次评估的结果：NoOp | Approve | Error。"""

    action: DecisionAction
    reason: DecisionReason
    message: str = ""
    signer_name: Optional[str] = None
    condition: Optional[CertificateSigningRequestCondition] = Field(
        default=None, description="action 为 approve 时需追加到 CSR 的条件"
    )
    retryable: bool = Field(default=False, description="是否应由驱动方重新入队")
