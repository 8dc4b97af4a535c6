"""
测试 approval/core.py 模块：标识提取、授权编排与审批决策引擎。
"""

import base64
import ipaddress
from datetime import datetime, timezone
from typing import List, Sequence
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from src.approver.approval.core import (
    ApprovalEngine,
    apply_decision,
    extract_identifiers,
    user_authorized_for_request,
)
from src.approver.approval.schemas import DecisionAction, DecisionReason
from src.approver.authorizer.core import (
    AlwaysAllowAuthorizer,
    AuthorizationError,
    NamedPrincipalAuthorizer,
    UserAuthorizer,
)
from src.approver.csr.schemas import (
    CertificateRequest,
    ConditionType,
    DecisionState,
    ParsedRequest,
    UserInfo,
)
from src.approver.index.core import ServiceNameIndex
from src.approver.index.schemas import AuthorizationConfiguration

SIGNER = "cert-manager.io/webhook-serving"
SERVING_USAGES = ["digital signature", "key encipherment", "server auth"]
FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class RecordingAuthorizer(UserAuthorizer):
    """记录调用顺序，拒绝 denied 中的标识"""

    def __init__(self, denied: Sequence[str] = ()):
        self.denied = set(denied)
        self.calls: List[str] = []

    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        self.calls.append(identifier)
        return identifier not in self.denied


class FailingAuthorizer(UserAuthorizer):
    def is_authorized(self, user_info: UserInfo, identifier: str) -> bool:
        raise AuthorizationError("backing store unavailable")


def _make_csr_b64(common_name: str = "", dns_names: Sequence[str] = (), ips: Sequence[str] = ()) -> str:
    """生成 CSR 并返回 Base64 编码的 PEM。"""
    private_key = ec.generate_private_key(ec.SECP256R1())
    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)] if common_name else []
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attrs))
    sans = [x509.DNSName(d) for d in dns_names]
    sans += [x509.IPAddress(ipaddress.ip_address(i)) for i in ips]
    if sans:
        builder = builder.add_extension(x509.SubjectAlternativeName(sans), critical=False)
    pem = builder.sign(private_key, hashes.SHA256()).public_bytes(serialization.Encoding.PEM)
    return base64.b64encode(pem).decode("utf-8")


def _csr(**kwargs) -> CertificateRequest:
    data = {
        "name": "csr-1",
        "signer_name": SIGNER,
        "request": _make_csr_b64(dns_names=["svc1.ns1.cluster.local"]),
        "usages": SERVING_USAGES,
        "username": "system:serviceaccount:ns1:sa1",
        "groups": ["system:serviceaccounts"],
    }
    data.update(kwargs)
    return CertificateRequest(**data)


def _engine(authorizer: UserAuthorizer) -> ApprovalEngine:
    return ApprovalEngine(signer_name=SIGNER, authorizer=authorizer, clock=lambda: FIXED_NOW)


@pytest.fixture
def index():
    index = ServiceNameIndex()
    index.on_configuration_changed(
        AuthorizationConfiguration(
            name="cfg-1",
            webhooks=[{"client_config": {"service": {"namespace": "ns1", "name": "svc1"}}}],
        )
    )
    return index


# ---------- 标识提取 ----------


def test_extract_identifiers_deduplicates_and_sorts():
    parsed = ParsedRequest(common_name="a.b.c", dns_names=["x.y.z", "a.b.c"])
    assert extract_identifiers(parsed) == ["a.b.c", "x.y.z"]


def test_extract_identifiers_skips_empty_common_name():
    assert extract_identifiers(ParsedRequest(dns_names=["b.b.b", "a.a.a"])) == ["a.a.a", "b.b.b"]
    assert extract_identifiers(ParsedRequest()) == []


# ---------- 授权编排 ----------


def test_empty_identifier_set_is_denied():
    authorizer = MagicMock(spec=UserAuthorizer)
    assert user_authorized_for_request(authorizer, UserInfo(), ParsedRequest()) is False
    authorizer.is_authorized.assert_not_called()


def test_all_identifiers_must_be_authorized():
    authorizer = RecordingAuthorizer()
    parsed = ParsedRequest(common_name="a.svc.cluster", dns_names=["b.svc.cluster"])

    assert user_authorized_for_request(authorizer, UserInfo(), parsed) is True
    assert authorizer.calls == ["a.svc.cluster", "b.svc.cluster"]


def test_first_denial_short_circuits():
    """任一标识被拒绝则整个请求被拒绝，且之后的标识不再检查"""
    authorizer = RecordingAuthorizer(denied=["bad.svc.cluster"])
    parsed = ParsedRequest(dns_names=["ok.svc.cluster", "bad.svc.cluster"])

    assert user_authorized_for_request(authorizer, UserInfo(), parsed) is False
    # 按字典序 bad.svc.cluster 在前
    assert authorizer.calls == ["bad.svc.cluster"]

    authorizer = RecordingAuthorizer(denied=["b.svc.cluster"])
    parsed = ParsedRequest(dns_names=["c.svc.cluster", "b.svc.cluster", "a.svc.cluster"])
    assert user_authorized_for_request(authorizer, UserInfo(), parsed) is False
    assert authorizer.calls == ["a.svc.cluster", "b.svc.cluster"]


def test_authorization_error_propagates_unchanged():
    parsed = ParsedRequest(dns_names=["svc1.ns1.svc"])
    with pytest.raises(AuthorizationError, match="backing store unavailable"):
        user_authorized_for_request(FailingAuthorizer(), UserInfo(), parsed)


# ---------- 审批引擎 ----------


def test_end_to_end_approval(index):
    """索引中存在指向 ns1/svc1 的配置时审批通过"""
    csr = _csr()
    decision = _engine(NamedPrincipalAuthorizer(index)).evaluate(csr)

    assert decision.action == DecisionAction.APPROVE
    assert decision.reason == DecisionReason.AUTO_APPROVED
    assert decision.signer_name == SIGNER
    assert decision.retryable is False
    assert decision.condition.type == ConditionType.APPROVED
    assert decision.condition.reason == "AutoApproved"
    assert decision.condition.message == "Automatically approved by webhook-operator"
    assert decision.condition.last_update_time == FIXED_NOW

    # 评估本身不修改输入记录
    assert csr.decision_state == DecisionState.PENDING

    approved = apply_decision(csr, decision)
    assert approved.decision_state == DecisionState.APPROVED
    assert len(approved.status.conditions) == 1


def test_end_to_end_without_index_entry_stays_pending():
    csr = _csr()
    decision = _engine(NamedPrincipalAuthorizer(ServiceNameIndex())).evaluate(csr)

    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.NOT_AUTHORIZED
    assert decision.condition is None
    assert apply_decision(csr, decision).decision_state == DecisionState.PENDING


@pytest.mark.parametrize("condition_type", ["Approved", "Denied"])
def test_decided_request_is_never_reevaluated(condition_type):
    """已决策的请求不会再次调用授权器"""
    authorizer = MagicMock(spec=UserAuthorizer)
    csr = _csr(status={"conditions": [{"type": condition_type}]})

    decision = _engine(authorizer).evaluate(csr)

    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.ALREADY_DECIDED
    authorizer.is_authorized.assert_not_called()


def test_reprocessing_approved_request_is_noop(index):
    engine = _engine(NamedPrincipalAuthorizer(index))
    csr = apply_decision(_csr(), engine.evaluate(_csr()))

    decision = engine.evaluate(csr)

    assert decision.reason == DecisionReason.ALREADY_DECIDED
    assert len(apply_decision(csr, decision).status.conditions) == 1


def test_missing_signer_name_is_ignored():
    authorizer = MagicMock(spec=UserAuthorizer)
    decision = _engine(authorizer).evaluate(_csr(signer_name=None))

    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.SIGNER_NAME_MISSING
    authorizer.is_authorized.assert_not_called()


def test_other_signer_is_ignored():
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(_csr(signer_name="kubernetes.io/kube-apiserver-client"))
    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.UNRECOGNISED_SIGNER


@pytest.mark.parametrize(
    "request_field",
    [
        "not base64!!",
        base64.b64encode(b"not a pem block").decode(),
        base64.b64encode(
            b"-----BEGIN CERTIFICATE REQUEST-----\nAAAA\n-----END CERTIFICATE REQUEST-----\n"
        ).decode(),
    ],
)
def test_parse_failure_leaves_request_pending(request_field):
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(_csr(request=request_field))
    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.PARSE_FAILED
    assert decision.retryable is False


def _make_duplicate_san_csr_b64() -> str:
    """生成含两个 SAN 扩展的 CSR：先添加 IssuerAlternativeName，再把 OID 改写为 2.5.29.17。"""
    private_key = ec.generate_private_key(ec.SECP256R1())
    names = [x509.DNSName("svc1.ns1.cluster.local")]
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([]))
        .add_extension(x509.SubjectAlternativeName(names), critical=False)
        .add_extension(x509.IssuerAlternativeName(names), critical=False)
        .sign(private_key, hashes.SHA256())
    )
    der = csr.public_bytes(serialization.Encoding.DER).replace(
        b"\x06\x03\x55\x1d\x12", b"\x06\x03\x55\x1d\x11"
    )
    body = base64.b64encode(der).decode("ascii")
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    pem = "-----BEGIN CERTIFICATE REQUEST-----\n" + "\n".join(lines) + "\n-----END CERTIFICATE REQUEST-----\n"
    return base64.b64encode(pem.encode("ascii")).decode("utf-8")


def test_duplicate_san_extension_is_parse_failure():
    """重复扩展不能让引擎抛出异常，请求保持 Pending"""
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(_csr(request=_make_duplicate_san_csr_b64()))
    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.PARSE_FAILED
    assert decision.retryable is False


def test_ip_san_is_never_approved():
    csr = _csr(request=_make_csr_b64(dns_names=["svc1.ns1.svc"], ips=["10.0.0.1"]))
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(csr)

    assert decision.action == DecisionAction.NOOP
    assert decision.reason == DecisionReason.INVALID_PARAMETERS


@pytest.mark.parametrize(
    "usages",
    [
        ["digital signature", "key encipherment"],
        ["digital signature", "key encipherment", "server auth", "client auth"],
    ],
)
def test_invalid_usages_are_never_approved(usages):
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(_csr(usages=usages))
    assert decision.reason == DecisionReason.INVALID_PARAMETERS


def test_request_without_identifiers_is_not_approved():
    csr = _csr(request=_make_csr_b64())
    decision = _engine(AlwaysAllowAuthorizer()).evaluate(csr)
    assert decision.reason == DecisionReason.NOT_AUTHORIZED


def test_authorization_error_is_retryable():
    decision = _engine(FailingAuthorizer()).evaluate(_csr())

    assert decision.action == DecisionAction.ERROR
    assert decision.reason == DecisionReason.AUTHORIZATION_ERROR
    assert decision.retryable is True
    assert "backing store unavailable" in decision.message
    assert decision.condition is None


def test_identity_is_passed_to_authorizer():
    authorizer = MagicMock(spec=UserAuthorizer)
    authorizer.is_authorized.return_value = True
    csr = _csr(
        request=_make_csr_b64(common_name="svc1.ns1.svc", dns_names=["svc1.ns1.svc"]),
        uid="uid-1",
        extra={"scopes": ["x"]},
    )

    decision = _engine(authorizer).evaluate(csr)

    assert decision.action == DecisionAction.APPROVE
    authorizer.is_authorized.assert_called_once_with(
        UserInfo(
            username="system:serviceaccount:ns1:sa1",
            uid="uid-1",
            groups=["system:serviceaccounts"],
            extra={"scopes": ["x"]},
        ),
        "svc1.ns1.svc",
    )


def test_custom_approval_reason_and_message():
    engine = ApprovalEngine(
        signer_name=SIGNER,
        authorizer=AlwaysAllowAuthorizer(),
        approval_reason="Custom",
        approval_message="approved by test",
    )
    decision = engine.evaluate(_csr())

    assert decision.condition.reason == "Custom"
    assert decision.condition.message == "approved by test"
    assert decision.condition.last_update_time is not None
