"""
审批服务的业务逻辑层。
此模块根据配置组装审批引擎，提供更清晰的接口供路由层调用。
"""

from functools import lru_cache

from loguru import logger

from ..authorizer.core import AuthorizerFactory
from ..config import config
from ..csr.schemas import CertificateRequest
from ..index.services import get_index
from .core import ApprovalEngine
from .schemas import ApprovalDecision


@lru_cache(maxsize=1)
def get_engine() -> ApprovalEngine:
    """
    按进程配置创建唯一的审批引擎。
    授权器类型与签发者名称在启动时确定，运行期间不变。
    """
    authorizer = AuthorizerFactory.create_authorizer(config.authorizer, get_index())
    logger.info(f"审批引擎已创建: signer_name={config.signer_name}, authorizer={authorizer.kind.value}")
    return ApprovalEngine(
        signer_name=config.signer_name,
        authorizer=authorizer,
        approval_reason=config.approval_reason,
        approval_message=config.approval_message,
    )


def evaluate_service(engine: ApprovalEngine, csr: CertificateRequest) -> ApprovalDecision:
    """
    评估一个 CSR 记录。
    :param engine: 审批引擎。
    :param csr: 外部驱动方提供的 CSR 记录。
    :return: 审批决策；是否写回由驱动方决定。
    """
    return engine.evaluate(csr)
