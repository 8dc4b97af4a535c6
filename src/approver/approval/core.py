"""
授权编排与审批决策引擎。

公开接口：
- extract_identifiers: 提取请求的候选标识集合（CN ∪ DNS 名称，去重并排序）
- user_authorized_for_request: 对每个标识依次调用授权器，全部通过才允许
- ApprovalEngine: 将校验与授权组合为 Pending -> Approved 的单向状态转换
- apply_decision: 返回追加了审批条件的 CSR 副本（不做持久化）
"""

from datetime import datetime, timezone
from typing import Callable, List

from loguru import logger

from ..authorizer.core import AuthorizationError, UserAuthorizer
from ..csr.core import CSRParseError, decode_csr, decode_request_field, validation_problems
from ..csr.schemas import (
    CertificateRequest,
    CertificateSigningRequestCondition,
    ConditionType,
    DecisionState,
    ParsedRequest,
    UserInfo,
)
from .schemas import ApprovalDecision, DecisionAction, DecisionReason

DEFAULT_APPROVAL_REASON = "AutoApproved"
DEFAULT_APPROVAL_MESSAGE = "Automatically approved by webhook-operator"


def extract_identifiers(parsed: ParsedRequest) -> List[str]:
    """
    请求希望绑定到证书上的所有标识：非空 CN 与全部 DNS 名称的并集，去重后按字典序排列。
    """
    identifiers = set(parsed.dns_names)
    if parsed.common_name:
        identifiers.add(parsed.common_name)
    return sorted(identifiers)


def user_authorized_for_request(
    authorizer: UserAuthorizer, user_info: UserInfo, parsed: ParsedRequest
) -> bool:
    """
    检查请求者是否有权为请求中的每一个标识申请证书。
    - 标识集合为空时拒绝
    - 按 extract_identifiers 的顺序逐个调用授权器，遇到第一个拒绝即返回
    :raises AuthorizationError: 授权器抛出的异常原样向上传递。
    """
    identifiers = extract_identifiers(parsed)
    if not identifiers:
        logger.info("请求未包含任何 CN 或 DNS 名称，拒绝")
        return False

    for identifier in identifiers:
        if not authorizer.is_authorized(user_info, identifier):
            logger.debug(f"用户 {user_info.username!r} 无权申请 {identifier!r}")
            return False

    return True


class ApprovalEngine:
    """
    对单个签发者名称生效的自动审批引擎。

    决策顺序：
    1. 已 Approved/Denied 的请求直接跳过
    2. 签发者名称缺失或不匹配时跳过
    3. 解析或校验失败时跳过（保持 Pending，不拒绝）
    4. 授权出错时返回可重试的错误结果
    5. 授权拒绝时跳过（保持 Pending）
    6. 授权通过时返回 Approve 及要追加的条件
    """

    def __init__(
        self,
        signer_name: str,
        authorizer: UserAuthorizer,
        approval_reason: str = DEFAULT_APPROVAL_REASON,
        approval_message: str = DEFAULT_APPROVAL_MESSAGE,
        clock: Callable[[], datetime] | None = None,
    ):
        self.signer_name = signer_name
        self.authorizer = authorizer
        self.approval_reason = approval_reason
        self.approval_message = approval_message
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _noop(self, reason: DecisionReason, message: str) -> ApprovalDecision:
        return ApprovalDecision(
            action=DecisionAction.NOOP,
            reason=reason,
            message=message,
            signer_name=self.signer_name,
        )

    def evaluate(self, csr: CertificateRequest) -> ApprovalDecision:
        """
        评估一个 CSR 记录并返回决策，不修改传入的记录。
        :param csr: 外部驱动方提供的 CSR 记录。
        :return: ApprovalDecision。
        """
        # 已决策的请求直接跳过
        state = csr.decision_state
        if state != DecisionState.PENDING:
            return self._noop(DecisionReason.ALREADY_DECIDED, f"request is already {state.value}")

        if csr.signer_name is None:
            logger.info(
                f"[{csr.name}] spec.signerName field not set on CSR resource, "
                "this indicates the Kubernetes apiserver version is not 1.18+"
            )
            return self._noop(DecisionReason.SIGNER_NAME_MISSING, "signerName not set")

        if csr.signer_name != self.signer_name:
            logger.debug(f"[{csr.name}] 未识别的 signerName，忽略: {csr.signer_name}")
            return self._noop(DecisionReason.UNRECOGNISED_SIGNER, f"signerName {csr.signer_name!r} is not handled")

        try:
            parsed = decode_csr(decode_request_field(csr.request))
        except CSRParseError as e:
            logger.warning(f"[{csr.name}] 解析 spec.request 失败: {e}")
            return self._noop(DecisionReason.PARSE_FAILED, str(e))

        problems = validation_problems(csr.usages, parsed)
        if problems:
            for problem in problems:
                logger.warning(f"[{csr.name}] {problem}")
            return self._noop(DecisionReason.INVALID_PARAMETERS, "; ".join(problems))

        try:
            allowed = user_authorized_for_request(self.authorizer, csr.user_info(), parsed)
        except AuthorizationError as e:
            logger.error(f"[{csr.name}] 检查请求用户的授权状态失败: {e}")
            return ApprovalDecision(
                action=DecisionAction.ERROR,
                reason=DecisionReason.AUTHORIZATION_ERROR,
                message=str(e),
                signer_name=self.signer_name,
                retryable=True,
            )

        if not allowed:
            logger.info(f"[{csr.name}] 用户 {csr.username!r} 无权为请求的名称申请证书")
            return self._noop(DecisionReason.NOT_AUTHORIZED, "user not authorized to request certificates for names")

        logger.info(f"[{csr.name}] 自动审批通过")
        return ApprovalDecision(
            action=DecisionAction.APPROVE,
            reason=DecisionReason.AUTO_APPROVED,
            message=self.approval_message,
            signer_name=self.signer_name,
            condition=CertificateSigningRequestCondition(
                type=ConditionType.APPROVED,
                reason=self.approval_reason,
                message=self.approval_message,
                last_update_time=self._clock(),
            ),
        )


def apply_decision(csr: CertificateRequest, decision: ApprovalDecision) -> CertificateRequest:
    """
    返回应用决策后的 CSR 副本：仅 approve 会追加条件，其余情况原样返回副本。
    已决策的请求不会再次追加条件。
    """
    updated = csr.model_copy(deep=True)
    if decision.action != DecisionAction.APPROVE or decision.condition is None:
        return updated
    if updated.decision_state != DecisionState.PENDING:
        return updated
    updated.status.conditions.append(decision.condition.model_copy())
    return updated
