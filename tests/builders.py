import io
import struct
import zipfile
from typing import Dict, Optional, Tuple, Union

from rnpatch.core.axml import (
    AxmlDocument,
    Attribute,
    EndElement,
    NamespaceNode,
    StartElement,
    StringPool,
    NO_ENTRY,
    RES_XML_END_NAMESPACE_TYPE,
    RES_XML_START_NAMESPACE_TYPE,
    TYPE_INT_DEC,
    TYPE_REFERENCE,
    TYPE_STRING,
    UTF8_FLAG,
)
from rnpatch.core.manifest import ANDROID_NS, AUTHORITIES_ID, LABEL_ID, NAME_ID

VERSION_CODE_ID = 0x0101021B

EntryValue = Union[bytes, Tuple[bytes, int]]


def build_manifest(package: str = "com.example.app", utf8: bool = True) -> bytes:
    """构造一个简单的二进制AndroidManifest.xml"""
    strings = [
        "label", "name", "authorities", "versionCode",
        "android", ANDROID_NS, "package", "manifest", "application", "activity",
        "provider", "uses-permission", package, ".MainActivity", ".App",
        "androidx.core.content.FileProvider", f"{package}.provider",
        f"{package}.permission.X",
    ]
    resource_ids = [LABEL_ID, NAME_ID, AUTHORITIES_ID, VERSION_CODE_ID]
    s = {value: index for index, value in enumerate(strings)}
    ns = s[ANDROID_NS]

    def string_attr(name: str, value: str, namespace: int = ns) -> Attribute:
        return Attribute(namespace, s[name], s[value], TYPE_STRING, s[value])

    def element(tag: str, *attributes: Attribute, line: int = 1) -> StartElement:
        return StartElement(line, NO_ENTRY, NO_ENTRY, s[tag], list(attributes))

    def end(tag: str) -> EndElement:
        return EndElement(1, NO_ENTRY, NO_ENTRY, s[tag])

    nodes = [
        NamespaceNode(RES_XML_START_NAMESPACE_TYPE, 1, NO_ENTRY, s["android"], ns),
        element(
            "manifest",
            Attribute(ns, s["versionCode"], NO_ENTRY, TYPE_INT_DEC, 42),
            string_attr("package", package, namespace=NO_ENTRY),
        ),
        element(
            "application",
            Attribute(ns, s["label"], NO_ENTRY, TYPE_REFERENCE, 0x7F100001),
            string_attr("name", ".App"),
            line=2,
        ),
        element("activity", string_attr("name", ".MainActivity"), line=3),
        end("activity"),
        element(
            "provider",
            string_attr("name", "androidx.core.content.FileProvider"),
            string_attr("authorities", f"{package}.provider"),
            line=4,
        ),
        end("provider"),
        end("application"),
        element("uses-permission", string_attr("name", f"{package}.permission.X"), line=5),
        end("uses-permission"),
        end("manifest"),
        NamespaceNode(RES_XML_END_NAMESPACE_TYPE, 1, NO_ENTRY, s["android"], ns),
    ]
    pool = StringPool(strings=strings, flags=UTF8_FLAG if utf8 else 0)
    return AxmlDocument(pool, resource_ids, nodes).encode()


def make_zip(entries: Dict[str, EntryValue]) -> bytes:
    """用zipfile构造zip，值为bytes或(bytes, 压缩方式)"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, value in entries.items():
            data, compression = value if isinstance(value, tuple) else (value, zipfile.ZIP_DEFLATED)
            zf.writestr(zipfile.ZipInfo(name, (2020, 1, 1, 0, 0, 0)), data, compress_type=compression)
    return buffer.getvalue()


def write_zip(path, entries: Dict[str, EntryValue]):
    path.write_bytes(make_zip(entries))
    return path


def data_offset(path, name: str) -> int:
    """条目数据在文件中的偏移"""
    with zipfile.ZipFile(path) as zf:
        info = zf.getinfo(name)
    with open(path, "rb") as fh:
        fh.seek(info.header_offset + 26)
        n, m = struct.unpack("<HH", fh.read(4))
    return info.header_offset + 30 + n + m


def read_entry(path, name: str) -> Optional[bytes]:
    with zipfile.ZipFile(path) as zf:
        try:
            return zf.read(name)
        except KeyError:
            return None
