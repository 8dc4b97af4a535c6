"""
CSR 解码与 webhook-serving 签发者的结构校验。

公开接口：
- CSRParseError: PEM 或 CSR 结构无法解析
- decode_request_field: 解码 CSR 记录中 Base64 编码的 request 字段
- decode_csr: 将 PEM 字节解码为 ParsedRequest
- validation_problems: 列出请求违反签发者策略的原因
- is_webhook_serving_csr: 校验谓词（纯函数，不记录日志）
"""

import base64
import binascii
import re
from typing import Iterable, List

from cryptography import x509
from cryptography.x509.oid import NameOID

from .schemas import KeyUsage, ParsedRequest

CSR_PEM_TYPE = "CERTIFICATE REQUEST"

# webhook-serving 签发者唯一接受的用途集合（按集合比较，与顺序无关）
WEBHOOK_SERVING_USAGES = frozenset(
    {
        KeyUsage.DIGITAL_SIGNATURE,
        KeyUsage.KEY_ENCIPHERMENT,
        KeyUsage.SERVER_AUTH,
    }
)

_PEM_BLOCK_RE = re.compile(r"-----BEGIN ([^\r\n-]+)-----[\s\S]*?-----END \1-----")


class CSRParseError(ValueError):
    """PEM 数据或其中的 CSR 结构无效。"""


def decode_request_field(request_b64: str) -> bytes:
    """
    解码 CSR 记录中的 request 字段。
    :param request_b64: Base64 编码的 PEM。
    :return: PEM 原始字节。
    :raises CSRParseError: Base64 无效。
    """
    try:
        return base64.b64decode(request_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CSRParseError(f"request 字段不是有效的 Base64: {e}") from e


def _single_pem_block(data: bytes) -> str:
    try:
        text = data.decode("ascii")
    except UnicodeDecodeError as e:
        raise CSRParseError("PEM 数据包含非 ASCII 字符") from e

    blocks = list(_PEM_BLOCK_RE.finditer(text))
    if not blocks:
        raise CSRParseError("未找到 PEM 数据块")
    if len(blocks) > 1:
        raise CSRParseError(f"期望单个 PEM 数据块，实际找到 {len(blocks)} 个")

    block = blocks[0]
    if block.group(1) != CSR_PEM_TYPE:
        raise CSRParseError(
            f"expected PEM data of type '{CSR_PEM_TYPE}' but found {block.group(1)!r}"
        )
    return block.group(0)


def decode_csr(data: bytes) -> ParsedRequest:
    """
    将 PEM 编码的 CSR 解码为 ParsedRequest。要么完整成功，要么抛出异常。
    :param data: PEM 字节。
    :return: 解码后的 ParsedRequest。
    :raises CSRParseError: PEM 块缺失、类型不符，或 CSR 结构无效。
    """
    pem_block = _single_pem_block(data)

    try:
        csr = x509.load_pem_x509_csr(pem_block.encode("ascii"))
        try:
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            san = None
        cn_attrs = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    except (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType) as e:
        # 扩展重复或含不支持的 GeneralName 类型同样属于结构无效
        raise CSRParseError(f"无效的 CSR 结构: {e}") from e

    common_name = str(cn_attrs[0].value) if cn_attrs else ""
    if san is None:
        return ParsedRequest(common_name=common_name)

    return ParsedRequest(
        common_name=common_name,
        dns_names=san.get_values_for_type(x509.DNSName),
        ip_addresses=[str(ip) for ip in san.get_values_for_type(x509.IPAddress)],
        email_addresses=san.get_values_for_type(x509.RFC822Name),
        uris=san.get_values_for_type(x509.UniformResourceIdentifier),
    )


def _usage_set(usages: Iterable) -> frozenset | None:
    try:
        return frozenset(KeyUsage(u) for u in usages)
    except ValueError:
        return None


def validation_problems(usages: Iterable, parsed: ParsedRequest) -> List[str]:
    """
    返回请求违反 webhook-serving 策略的原因列表；空列表表示通过。
    :param usages: 请求声明的密钥用途。
    :param parsed: 解码后的 CSR。
    """
    usages = list(usages)
    problems: List[str] = []

    if parsed.ip_addresses or parsed.email_addresses or parsed.uris:
        problems.append(
            "Request specifies IPAddresses, EmailAddresses or URIs: "
            f"ips={parsed.ip_addresses} emails={parsed.email_addresses} uris={parsed.uris}"
        )

    if _usage_set(usages) != WEBHOOK_SERVING_USAGES:
        names = [getattr(u, "value", u) for u in usages]
        problems.append(f"Request specifies invalid key usages: {names}")

    return problems


def is_webhook_serving_csr(usages: Iterable, parsed: ParsedRequest) -> bool:
    """
    判断请求是否满足 webhook-serving 签发者的结构约束：
    - 不允许 IP、邮箱或 URI 类型的 SAN
    - 用途集合必须恰好为 {digital signature, key encipherment, server auth}
    """
    return not validation_problems(usages, parsed)
