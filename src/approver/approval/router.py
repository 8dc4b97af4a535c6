"""
CSR 审批服务的 FastAPI 路由定义。
"""

from fastapi import APIRouter, Depends, HTTPException

from . import services
from .core import ApprovalEngine
from .schemas import ApprovalDecision, DecisionAction
from ..csr.schemas import CertificateRequest

router = APIRouter(prefix="/approval", tags=["Approval"])


@router.post("/evaluate", response_model=ApprovalDecision)
async def evaluate(
    csr: CertificateRequest,
    engine: ApprovalEngine = Depends(services.get_engine),
) -> ApprovalDecision:
    """
    评估一个 CSR 记录，返回 noop 或 approve 决策。
    授权结果无法确定时返回 503，驱动方应稍后重试。
    """
    decision = services.evaluate_service(engine, csr)
    if decision.action == DecisionAction.ERROR:
        raise HTTPException(status_code=503, detail=f"授权检查失败: {decision.message}")
    return decision
