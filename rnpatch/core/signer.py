"""
APK签名模块，生成 JAR (v1) 与 APK Signature Scheme v2 签名

v2 签名块格式参考 https://source.android.com/docs/security/features/apksigning/v2
"""
import base64
import datetime
import hashlib
import struct
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID
from rich.console import Console

from .archive import ArchiveWriter, atomic_write
from .errors import ArchiveError, SigningFailure

CREATED_BY = "rnpatch"

APK_SIG_BLOCK_MAGIC = b"APK Sig Block 42"
APK_SIGNATURE_SCHEME_V2_ID = 0x7109871A
RSA_PKCS1_V1_5_WITH_SHA256 = 0x0103

CHUNK_SIZE = 1024 * 1024
MAX_MANIFEST_LINE = 70

EOCD_SIGNATURE = b"PK\x05\x06"
EOCD_MIN_SIZE = 22

SIGNATURE_SUFFIXES = (".SF", ".RSA", ".DSA", ".EC")


def _lp(data: bytes) -> bytes:
    """uint32长度前缀"""
    return struct.pack("<I", len(data)) + data


def _is_signature_file(name: str) -> bool:
    if not name.startswith("META-INF/") or name.count("/") != 1:
        return False
    return name == "META-INF/MANIFEST.MF" or name.upper().endswith(SIGNATURE_SUFFIXES)


def _manifest_line(line: str) -> bytes:
    # 超长行按字节折行，续行以空格开头
    data = line.encode("utf-8")
    out = data[:MAX_MANIFEST_LINE] + b"\r\n"
    data = data[MAX_MANIFEST_LINE:]
    while data:
        out += b" " + data[:MAX_MANIFEST_LINE - 1] + b"\r\n"
        data = data[MAX_MANIFEST_LINE - 1:]
    return out


def _b64_sha256(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def build_v1_files(entries: List[Tuple[str, bytes]]) -> Tuple[bytes, bytes]:
    """
    生成 MANIFEST.MF 与 CERT.SF

    Args:
        entries: (条目名, 未压缩内容) 列表

    Returns:
        Tuple[bytes, bytes]: (MANIFEST.MF, CERT.SF)
    """
    manifest = _manifest_line("Manifest-Version: 1.0") + _manifest_line(f"Created-By: {CREATED_BY}") + b"\r\n"
    sections = []
    for name, data in entries:
        section = _manifest_line(f"Name: {name}") + _manifest_line(f"SHA-256-Digest: {_b64_sha256(data)}") + b"\r\n"
        sections.append((name, section))
        manifest += section

    signature_file = (
        _manifest_line("Signature-Version: 1.0")
        + _manifest_line(f"Created-By: {CREATED_BY}")
        + _manifest_line(f"SHA-256-Digest-Manifest: {_b64_sha256(manifest)}")
        + _manifest_line("X-Android-APK-Signed: 2")
        + b"\r\n"
    )
    for name, section in sections:
        signature_file += _manifest_line(f"Name: {name}") + _manifest_line(f"SHA-256-Digest: {_b64_sha256(section)}") + b"\r\n"
    return manifest, signature_file


def _chunk_digest(sections: List[bytes]) -> bytes:
    digests = []
    for section in sections:
        for start in range(0, len(section), CHUNK_SIZE):
            chunk = section[start:start + CHUNK_SIZE]
            digests.append(hashlib.sha256(b"\xa5" + struct.pack("<I", len(chunk)) + chunk).digest())
    return hashlib.sha256(b"\x5a" + struct.pack("<I", len(digests)) + b"".join(digests)).digest()


def split_zip(data: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    将zip拆分为 条目内容、中央目录、EOCD 三部分，已有的签名块会被去除

    Raises:
        SigningFailure: 找不到EOCD
    """
    eocd_offset = data.rfind(EOCD_SIGNATURE, max(0, len(data) - 0xFFFF - EOCD_MIN_SIZE))
    if eocd_offset == -1 or len(data) - eocd_offset < EOCD_MIN_SIZE:
        raise SigningFailure("End of central directory not found")
    (cd_offset,) = struct.unpack_from("<I", data, eocd_offset + 16)
    if cd_offset > eocd_offset:
        raise SigningFailure("Central directory offset out of range")

    contents_end = cd_offset
    if data[cd_offset - 16:cd_offset] == APK_SIG_BLOCK_MAGIC:
        (block_size,) = struct.unpack_from("<Q", data, cd_offset - 24)
        contents_end = cd_offset - block_size - 8
    return data[:contents_end], data[cd_offset:eocd_offset], data[eocd_offset:]


class Signer:
    """APK签名器"""
    def __init__(self, key: rsa.RSAPrivateKey, certificate: x509.Certificate):
        self.key = key
        self.certificate = certificate
        self.console = Console()

    @classmethod
    def generate(cls, common_name: str = CREATED_BY) -> "Signer":
        """生成新的RSA密钥与自签名证书"""
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.datetime.now(datetime.timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=365 * 30))
            .sign(key, hashes.SHA256())
        )
        return cls(key, certificate)

    @classmethod
    def load_or_create(cls, key_path: Union[str, Path], cert_path: Union[str, Path]) -> "Signer":
        """
        从PEM文件加载签名密钥，不存在时生成并保存

        Args:
            key_path: 私钥PEM路径
            cert_path: 证书PEM路径
        """
        key_path, cert_path = Path(key_path), Path(cert_path)
        try:
            if key_path.exists() and cert_path.exists():
                key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
                certificate = x509.load_pem_x509_certificate(cert_path.read_bytes())
                return cls(key, certificate)

            signer = cls.generate()
            key_path.parent.mkdir(parents=True, exist_ok=True)
            cert_path.parent.mkdir(parents=True, exist_ok=True)
            key_path.write_bytes(signer.key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ))
            cert_path.write_bytes(signer.certificate.public_bytes(serialization.Encoding.PEM))
            signer.console.print(f"[yellow]Generated new signing key at {key_path}")
            return signer
        except (ValueError, TypeError, UnsupportedAlgorithm, OSError) as e:
            raise SigningFailure(f"Failed to load signing key: {e}") from e

    def sign(self, archive_path: Union[str, Path]) -> None:
        """
        对apk进行v1与v2签名，必须在所有修改之后调用

        Raises:
            SigningFailure: 签名失败
        """
        try:
            self._sign_v1(archive_path)
            self._sign_v2(archive_path)
        except SigningFailure:
            raise
        except (ArchiveError, ValueError, TypeError, UnsupportedAlgorithm, OSError) as e:
            raise SigningFailure(f"Failed to sign {Path(archive_path).name}: {e}") from e

    def _sign_v1(self, archive_path: Union[str, Path]) -> None:
        with ArchiveWriter(archive_path) as apk:
            for name in apk.list_entries():
                if _is_signature_file(name):
                    apk.delete_entry(name, preserve_alignment=True)

            entries = [(name, apk.read_entry(name)) for name in apk.list_entries()
                       if not name.endswith("/")]
            manifest, signature_file = build_v1_files(entries)
            signature = (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(signature_file)
                .add_signer(self.certificate, self.key, hashes.SHA256())
                .sign(serialization.Encoding.DER, [
                    pkcs7.PKCS7Options.DetachedSignature,
                    pkcs7.PKCS7Options.NoAttributes,
                ])
            )

            apk.write_entry("META-INF/MANIFEST.MF", manifest)
            apk.write_entry("META-INF/CERT.SF", signature_file)
            apk.write_entry("META-INF/CERT.RSA", signature)

    def _sign_v2(self, archive_path: Union[str, Path]) -> None:
        contents, central_directory, eocd = split_zip(Path(archive_path).read_bytes())
        block = self.build_signing_block(contents, central_directory, eocd)

        # EOCD中的中央目录偏移需要指向签名块之后
        new_eocd = eocd[:16] + struct.pack("<I", len(contents) + len(block)) + eocd[20:]
        atomic_write(archive_path, lambda fh: fh.write(contents + block + central_directory + new_eocd))

    def build_signing_block(self, contents: bytes, central_directory: bytes, eocd: bytes) -> bytes:
        """构造包含v2签名的 APK Signing Block"""
        # 计算摘要时EOCD的中央目录偏移等于签名块起始位置
        digest_eocd = eocd[:16] + struct.pack("<I", len(contents)) + eocd[20:]
        digest = _chunk_digest([contents, central_directory, digest_eocd])

        certificate = self.certificate.public_bytes(serialization.Encoding.DER)
        signed_data = (
            _lp(_lp(struct.pack("<I", RSA_PKCS1_V1_5_WITH_SHA256) + _lp(digest)))
            + _lp(_lp(certificate))
            + _lp(b"")
        )
        signature = self.key.sign(signed_data, padding.PKCS1v15(), hashes.SHA256())
        public_key = self.key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        signer = (
            _lp(signed_data)
            + _lp(_lp(struct.pack("<I", RSA_PKCS1_V1_5_WITH_SHA256) + _lp(signature)))
            + _lp(public_key)
        )
        value = _lp(_lp(signer))

        pair = struct.pack("<QI", 4 + len(value), APK_SIGNATURE_SCHEME_V2_ID) + value
        block_size = len(pair) + 8 + len(APK_SIG_BLOCK_MAGIC)
        return struct.pack("<Q", block_size) + pair + struct.pack("<Q", block_size) + APK_SIG_BLOCK_MAGIC


def find_signing_block(data: bytes) -> Optional[bytes]:
    """返回apk中的 APK Signing Block，不存在时返回None"""
    contents, _, eocd = split_zip(data)
    (cd_offset,) = struct.unpack_from("<I", eocd, 16)
    if cd_offset == len(contents):
        return None
    return data[len(contents):cd_offset]
