import base64
import hashlib
import struct
import zipfile

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7

from rnpatch.core.archive import ArchiveWriter, PAGE_ALIGNMENT, STORED
from rnpatch.core.errors import SigningFailure
from rnpatch.core.signer import (
    APK_SIG_BLOCK_MAGIC,
    APK_SIGNATURE_SCHEME_V2_ID,
    RSA_PKCS1_V1_5_WITH_SHA256,
    Signer,
    _chunk_digest,
    build_v1_files,
    find_signing_block,
    split_zip,
)

from builders import data_offset, read_entry, write_zip


def take(data, offset):
    (size,) = struct.unpack_from("<I", data, offset)
    return data[offset + 4:offset + 4 + size], offset + 4 + size


def parse_v2_signer(block):
    """取出签名块中唯一的v2 signer"""
    pair_size, pair_id = struct.unpack_from("<QI", block, 8)
    assert pair_id == APK_SIGNATURE_SCHEME_V2_ID
    value = block[20:8 + 8 + pair_size]
    signers, _ = take(value, 0)
    signer, _ = take(signers, 0)

    signed_data, offset = take(signer, 0)
    signatures, offset = take(signer, offset)
    public_key, _ = take(signer, offset)

    digests, offset = take(signed_data, 0)
    certificates, _ = take(signed_data, offset)
    digest_item, _ = take(digests, 0)
    (algorithm,) = struct.unpack_from("<I", digest_item, 0)
    digest, _ = take(digest_item, 4)
    certificate, _ = take(certificates, 0)

    signature_item, _ = take(signatures, 0)
    signature, _ = take(signature_item, 4)
    return signed_data, algorithm, digest, certificate, signature, public_key


@pytest.fixture
def apk(tmp_path):
    path = write_zip(tmp_path / "base.apk", {
        "AndroidManifest.xml": b"manifest",
        "classes.dex": b"dex" * 1000,
        "res/": b"",
        "res/raw/" + "x" * 80 + ".bin": b"long name",
    })
    with ArchiveWriter(path) as zip_:
        zip_.write_entry("lib/arm64-v8a/libfoo.so", b"\x7fELF" * 300, STORED, PAGE_ALIGNMENT)
    return path


def test_sign_writes_v1_files(apk, signer):
    signer.sign(apk)

    manifest = read_entry(apk, "META-INF/MANIFEST.MF")
    signature_file = read_entry(apk, "META-INF/CERT.SF")
    signature = read_entry(apk, "META-INF/CERT.RSA")

    assert b"Name: classes.dex\r\n" in manifest
    dex_digest = base64.b64encode(hashlib.sha256(b"dex" * 1000).digest())
    assert b"SHA-256-Digest: " + dex_digest in manifest
    assert all(len(line) <= 72 for line in manifest.split(b"\r\n"))
    assert b"Name: res/\r\n" not in manifest

    manifest_digest = base64.b64encode(hashlib.sha256(manifest).digest())
    assert b"SHA-256-Digest-Manifest: " + manifest_digest in signature_file
    assert b"X-Android-APK-Signed: 2" in signature_file

    certificates = pkcs7.load_der_pkcs7_certificates(signature)
    assert certificates == [signer.certificate]


def test_sign_writes_valid_v2_block(apk, signer):
    signer.sign(apk)
    data = apk.read_bytes()

    block = find_signing_block(data)
    assert block is not None
    assert block.endswith(APK_SIG_BLOCK_MAGIC)
    assert struct.unpack_from("<Q", block, 0)[0] == len(block) - 8

    contents, central_directory, eocd = split_zip(data)
    digest_eocd = eocd[:16] + struct.pack("<I", len(contents)) + eocd[20:]
    expected = _chunk_digest([contents, central_directory, digest_eocd])

    signed_data, algorithm, digest, certificate, signature, _ = parse_v2_signer(block)
    assert algorithm == RSA_PKCS1_V1_5_WITH_SHA256
    assert digest == expected
    assert certificate == signer.certificate.public_bytes(Encoding.DER)
    signer.certificate.public_key().verify(signature, signed_data, padding.PKCS1v15(), hashes.SHA256())


def test_signed_archive_still_readable(apk, signer):
    signer.sign(apk)

    with zipfile.ZipFile(apk) as zf:
        assert zf.testzip() is None
    assert read_entry(apk, "classes.dex") == b"dex" * 1000
    assert data_offset(apk, "lib/arm64-v8a/libfoo.so") % PAGE_ALIGNMENT == 0


def test_resign_replaces_signature(apk, signer):
    signer.sign(apk)
    other = Signer.generate("other")
    other.sign(apk)
    data = apk.read_bytes()

    with zipfile.ZipFile(apk) as zf:
        names = zf.namelist()
    assert len(names) == len(set(names))
    assert data.count(APK_SIG_BLOCK_MAGIC) == 1
    assert b"META-INF/CERT.RSA" in data

    _, _, _, certificate, _, _ = parse_v2_signer(find_signing_block(data))
    assert certificate == other.certificate.public_bytes(Encoding.DER)
    assert b"Name: META-INF/CERT.SF" not in read_entry(apk, "META-INF/MANIFEST.MF")


def test_unsigned_archive_has_no_block(apk):
    assert find_signing_block(apk.read_bytes()) is None


def test_sign_invalid_file(tmp_path, signer):
    path = tmp_path / "broken.apk"
    path.write_bytes(b"not a zip at all")
    with pytest.raises(SigningFailure):
        signer.sign(path)


def test_split_zip_without_eocd():
    with pytest.raises(SigningFailure):
        split_zip(b"\x00" * 100)


def test_build_v1_files_digest_sections():
    manifest, signature_file = build_v1_files([("a.txt", b"a"), ("b.txt", b"b")])
    sections = manifest.split(b"\r\n\r\n")
    assert sections[0].startswith(b"Manifest-Version: 1.0")
    section_digest = base64.b64encode(hashlib.sha256(sections[1] + b"\r\n\r\n").digest())
    assert b"Name: a.txt\r\nSHA-256-Digest: " + section_digest in signature_file


def test_load_or_create(tmp_path):
    key_path = tmp_path / "keys" / "signing.key"
    cert_path = tmp_path / "keys" / "signing.pem"

    created = Signer.load_or_create(key_path, cert_path)
    assert key_path.exists() and cert_path.exists()

    loaded = Signer.load_or_create(key_path, cert_path)
    assert loaded.certificate == created.certificate


def test_load_or_create_invalid_key(tmp_path):
    key_path = tmp_path / "signing.key"
    cert_path = tmp_path / "signing.pem"
    key_path.write_bytes(b"garbage")
    cert_path.write_bytes(b"garbage")

    with pytest.raises(SigningFailure):
        Signer.load_or_create(key_path, cert_path)
