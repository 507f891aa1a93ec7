"""
Android二进制XML (AXML) 编解码

格式参考 frameworks/base/libs/androidfw/include/androidfw/ResourceTypes.h
"""
import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union

from .errors import MalformedManifest

RES_STRING_POOL_TYPE = 0x0001
RES_XML_TYPE = 0x0003
RES_XML_START_NAMESPACE_TYPE = 0x0100
RES_XML_END_NAMESPACE_TYPE = 0x0101
RES_XML_START_ELEMENT_TYPE = 0x0102
RES_XML_END_ELEMENT_TYPE = 0x0103
RES_XML_CDATA_TYPE = 0x0104
RES_XML_RESOURCE_MAP_TYPE = 0x0180

TYPE_NULL = 0x00
TYPE_REFERENCE = 0x01
TYPE_STRING = 0x03
TYPE_INT_DEC = 0x10
TYPE_INT_BOOLEAN = 0x12

NO_ENTRY = 0xFFFFFFFF

SORTED_FLAG = 1 << 0
UTF8_FLAG = 1 << 8

CHUNK_HEADER = struct.Struct("<HHI")
STRING_POOL_HEADER = struct.Struct("<HHIIIIII")
NODE_HEADER = struct.Struct("<HHIII")
ATTR_EXT = struct.Struct("<IIHHHHHH")
ATTRIBUTE = struct.Struct("<IIIHBBI")
RES_VALUE = struct.Struct("<HBBI")


def _u32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def _encode_utf8_length(length: int) -> bytes:
    if length > 0x7F:
        return bytes([(length >> 8) | 0x80, length & 0xFF])
    return bytes([length])


def _decode_utf8_length(data: bytes, offset: int) -> Tuple[int, int]:
    length = data[offset]
    if length & 0x80:
        return ((length & 0x7F) << 8) | data[offset + 1], offset + 2
    return length, offset + 1


@dataclass
class StringPool:
    """字符串池"""
    strings: List[str] = field(default_factory=list)
    styles: List[List[Tuple[int, int, int]]] = field(default_factory=list)
    flags: int = UTF8_FLAG

    @property
    def utf8(self) -> bool:
        return bool(self.flags & UTF8_FLAG)

    @classmethod
    def parse(cls, data: bytes, offset: int) -> "StringPool":
        (_, header_size, chunk_size, string_count, style_count,
         flags, strings_start, styles_start) = STRING_POOL_HEADER.unpack_from(data, offset)
        end = offset + chunk_size
        utf8 = bool(flags & UTF8_FLAG)

        strings = []
        table = offset + header_size
        for i in range(string_count):
            pos = offset + strings_start + _u32(data, table + i * 4)
            if utf8:
                _, pos = _decode_utf8_length(data, pos)
                size, pos = _decode_utf8_length(data, pos)
                raw = data[pos:pos + size]
                if pos + size > end:
                    raise MalformedManifest(f"String {i} overruns string pool")
                strings.append(raw.decode("utf-8", "surrogatepass"))
            else:
                (size,) = struct.unpack_from("<H", data, pos)
                pos += 2
                if size & 0x8000:
                    (low,) = struct.unpack_from("<H", data, pos)
                    size = ((size & 0x7FFF) << 16) | low
                    pos += 2
                if pos + size * 2 > end:
                    raise MalformedManifest(f"String {i} overruns string pool")
                strings.append(data[pos:pos + size * 2].decode("utf-16-le", "surrogatepass"))

        styles = []
        style_table = table + string_count * 4
        for i in range(style_count):
            pos = offset + styles_start + _u32(data, style_table + i * 4)
            spans = []
            while True:
                name = _u32(data, pos)
                if name == NO_ENTRY:
                    break
                spans.append(struct.unpack_from("<III", data, pos))
                pos += 12
            styles.append(spans)

        return cls(strings=strings, styles=styles, flags=flags)

    def encode(self) -> bytes:
        offsets = []
        string_data = bytearray()
        for value in self.strings:
            offsets.append(len(string_data))
            units = len(value.encode("utf-16-le", "surrogatepass")) // 2
            if self.utf8:
                encoded = value.encode("utf-8", "surrogatepass")
                string_data += _encode_utf8_length(units)
                string_data += _encode_utf8_length(len(encoded))
                string_data += encoded + b"\x00"
            else:
                if units > 0x7FFF:
                    string_data += struct.pack("<HH", (units >> 16) | 0x8000, units & 0xFFFF)
                else:
                    string_data += struct.pack("<H", units)
                string_data += value.encode("utf-16-le", "surrogatepass") + b"\x00\x00"
        string_data += b"\x00" * (-len(string_data) % 4)

        style_offsets = []
        style_data = bytearray()
        for spans in self.styles:
            style_offsets.append(len(style_data))
            for span in spans:
                style_data += struct.pack("<III", *span)
            style_data += struct.pack("<I", NO_ENTRY)
        if self.styles:
            style_data += struct.pack("<II", NO_ENTRY, NO_ENTRY)

        header_size = STRING_POOL_HEADER.size
        strings_start = header_size + 4 * (len(offsets) + len(style_offsets))
        styles_start = strings_start + len(string_data) if self.styles else 0
        chunk_size = strings_start + len(string_data) + len(style_data)

        out = bytearray(STRING_POOL_HEADER.pack(
            RES_STRING_POOL_TYPE, header_size, chunk_size, len(offsets), len(style_offsets),
            self.flags & ~SORTED_FLAG, strings_start, styles_start,
        ))
        for value in offsets + style_offsets:
            out += struct.pack("<I", value)
        out += string_data
        out += style_data
        return bytes(out)


@dataclass
class Attribute:
    namespace: int
    name: int
    raw_value: int
    data_type: int
    data: int


@dataclass
class NamespaceNode:
    chunk_type: int
    line_number: int
    comment: int
    prefix: int
    uri: int


@dataclass
class StartElement:
    line_number: int
    comment: int
    namespace: int
    name: int
    attributes: List[Attribute] = field(default_factory=list)
    id_index: int = 0
    class_index: int = 0
    style_index: int = 0


@dataclass
class EndElement:
    line_number: int
    comment: int
    namespace: int
    name: int


@dataclass
class CData:
    line_number: int
    comment: int
    data: int
    data_type: int
    value: int


@dataclass
class RawChunk:
    data: bytes


Node = Union[NamespaceNode, StartElement, EndElement, CData, RawChunk]


def _parse_node(data: bytes, offset: int, chunk_type: int, header_size: int, chunk_size: int) -> Node:
    if chunk_type not in (RES_XML_START_NAMESPACE_TYPE, RES_XML_END_NAMESPACE_TYPE,
                          RES_XML_START_ELEMENT_TYPE, RES_XML_END_ELEMENT_TYPE, RES_XML_CDATA_TYPE):
        return RawChunk(data[offset:offset + chunk_size])

    _, _, _, line_number, comment = NODE_HEADER.unpack_from(data, offset)
    ext = offset + header_size

    if chunk_type in (RES_XML_START_NAMESPACE_TYPE, RES_XML_END_NAMESPACE_TYPE):
        prefix, uri = struct.unpack_from("<II", data, ext)
        return NamespaceNode(chunk_type, line_number, comment, prefix, uri)

    if chunk_type == RES_XML_END_ELEMENT_TYPE:
        namespace, name = struct.unpack_from("<II", data, ext)
        return EndElement(line_number, comment, namespace, name)

    if chunk_type == RES_XML_CDATA_TYPE:
        (text,) = struct.unpack_from("<I", data, ext)
        _, _, data_type, value = RES_VALUE.unpack_from(data, ext + 4)
        return CData(line_number, comment, text, data_type, value)

    (namespace, name, attr_start, attr_size, attr_count,
     id_index, class_index, style_index) = ATTR_EXT.unpack_from(data, ext)
    if attr_size < ATTRIBUTE.size:
        raise MalformedManifest(f"Attribute size {attr_size} too small")
    if ext + attr_start + attr_size * attr_count > offset + chunk_size:
        raise MalformedManifest("Attributes overrun element chunk")
    attributes = []
    for i in range(attr_count):
        attr_ns, attr_name, raw_value, _, _, data_type, value = ATTRIBUTE.unpack_from(
            data, ext + attr_start + i * attr_size
        )
        attributes.append(Attribute(attr_ns, attr_name, raw_value, data_type, value))
    return StartElement(line_number, comment, namespace, name, attributes,
                        id_index, class_index, style_index)


def _encode_node(node: Node) -> bytes:
    if isinstance(node, RawChunk):
        return node.data

    if isinstance(node, NamespaceNode):
        return NODE_HEADER.pack(node.chunk_type, 16, 24, node.line_number, node.comment) + \
            struct.pack("<II", node.prefix, node.uri)

    if isinstance(node, EndElement):
        return NODE_HEADER.pack(RES_XML_END_ELEMENT_TYPE, 16, 24, node.line_number, node.comment) + \
            struct.pack("<II", node.namespace, node.name)

    if isinstance(node, CData):
        return NODE_HEADER.pack(RES_XML_CDATA_TYPE, 16, 28, node.line_number, node.comment) + \
            struct.pack("<I", node.data) + RES_VALUE.pack(8, 0, node.data_type, node.value)

    size = NODE_HEADER.size + ATTR_EXT.size + ATTRIBUTE.size * len(node.attributes)
    out = NODE_HEADER.pack(RES_XML_START_ELEMENT_TYPE, 16, size, node.line_number, node.comment)
    out += ATTR_EXT.pack(node.namespace, node.name, ATTR_EXT.size, ATTRIBUTE.size,
                         len(node.attributes), node.id_index, node.class_index, node.style_index)
    for attr in node.attributes:
        out += ATTRIBUTE.pack(attr.namespace, attr.name, attr.raw_value, 8, 0, attr.data_type, attr.data)
    return out


class AxmlDocument:
    """二进制XML文档"""
    def __init__(self, pool: StringPool, resource_ids: List[int], nodes: List[Node]):
        self.pool = pool
        self.resource_ids = resource_ids
        self.nodes = nodes

    @classmethod
    def parse(cls, data: bytes) -> "AxmlDocument":
        """
        解析二进制XML

        Args:
            data: AXML字节

        Returns:
            AxmlDocument: 解析结果

        Raises:
            MalformedManifest: 数据不是合法的二进制XML
        """
        try:
            return cls._parse(data)
        except MalformedManifest:
            raise
        except (struct.error, IndexError, UnicodeDecodeError) as e:
            raise MalformedManifest(f"Failed to parse binary XML: {e}") from e

    @classmethod
    def _parse(cls, data: bytes) -> "AxmlDocument":
        chunk_type, header_size, size = CHUNK_HEADER.unpack_from(data, 0)
        if chunk_type != RES_XML_TYPE:
            raise MalformedManifest(f"Unexpected root chunk type 0x{chunk_type:04x}")
        if size > len(data) or header_size < CHUNK_HEADER.size:
            raise MalformedManifest("Invalid XML chunk size")

        pool = None
        resource_ids: List[int] = []
        nodes: List[Node] = []
        offset = header_size
        while offset < size:
            chunk_type, chunk_header_size, chunk_size = CHUNK_HEADER.unpack_from(data, offset)
            if chunk_size < CHUNK_HEADER.size or offset + chunk_size > size:
                raise MalformedManifest(f"Invalid chunk at offset {offset}")

            if chunk_type == RES_STRING_POOL_TYPE:
                if pool is not None:
                    raise MalformedManifest("More than one string pool")
                pool = StringPool.parse(data, offset)
            elif chunk_type == RES_XML_RESOURCE_MAP_TYPE:
                count = (chunk_size - chunk_header_size) // 4
                resource_ids = list(struct.unpack_from(f"<{count}I", data, offset + chunk_header_size))
            else:
                nodes.append(_parse_node(data, offset, chunk_type, chunk_header_size, chunk_size))
            offset += chunk_size

        if pool is None:
            raise MalformedManifest("No string pool found")
        return cls(pool, resource_ids, nodes)

    def encode(self) -> bytes:
        body = self.pool.encode()
        if self.resource_ids:
            body += CHUNK_HEADER.pack(RES_XML_RESOURCE_MAP_TYPE, 8, 8 + 4 * len(self.resource_ids))
            body += struct.pack(f"<{len(self.resource_ids)}I", *self.resource_ids)
        body += b"".join(_encode_node(node) for node in self.nodes)
        return CHUNK_HEADER.pack(RES_XML_TYPE, 8, 8 + len(body)) + body

    def string(self, index: int) -> Optional[str]:
        if index == NO_ENTRY or index >= len(self.pool.strings):
            return None
        return self.pool.strings[index]

    def elements(self, name: Optional[str] = None) -> Iterator[StartElement]:
        for node in self.nodes:
            if isinstance(node, StartElement) and (name is None or self.string(node.name) == name):
                yield node

    def resource_id(self, attr: Attribute) -> Optional[int]:
        if attr.name < len(self.resource_ids) and self.resource_ids[attr.name]:
            return self.resource_ids[attr.name]
        return None

    def attribute_value(self, attr: Attribute) -> Optional[str]:
        """属性的字符串值，非字符串类型返回None"""
        if attr.data_type == TYPE_STRING:
            return self.string(attr.data)
        return None

    def find_attribute(self, element: StartElement, name: str, namespace: Optional[str] = None,
                       resource_id: Optional[int] = None) -> Optional[Attribute]:
        for attr in element.attributes:
            if resource_id is not None and self.resource_id(attr) == resource_id:
                return attr
            if self.string(attr.name) == name and self.string(attr.namespace) == namespace:
                return attr
        return None

    def string_ref(self, value: str) -> int:
        """返回字符串在池中的索引，不存在时追加到末尾"""
        for index, existing in enumerate(self.pool.strings):
            if existing == value:
                return index
        self.pool.strings.append(value)
        return len(self.pool.strings) - 1

    def attribute_name_ref(self, name: str, resource_id: int) -> int:
        """
        返回带资源ID的属性名索引

        资源ID映射只覆盖字符串池的前缀，不存在时插入到该前缀末尾，并调整所有字符串引用
        """
        for index, rid in enumerate(self.resource_ids):
            if rid == resource_id and self.pool.strings[index] == name:
                return index
        index = len(self.resource_ids)
        self._insert_string(index, name)
        self.resource_ids.append(resource_id)
        return index

    def set_string(self, attr: Attribute, value: str) -> None:
        index = self.string_ref(value)
        attr.raw_value = index
        attr.data_type = TYPE_STRING
        attr.data = index

    def add_attribute(self, element: StartElement, namespace: str, name: str,
                      resource_id: int) -> Attribute:
        """
        向元素添加属性，按资源ID顺序插入

        Returns:
            Attribute: 新属性，值为空，由调用方设置
        """
        name_index = self.attribute_name_ref(name, resource_id)
        attr = Attribute(self.string_ref(namespace), name_index, NO_ENTRY, TYPE_NULL, 0)

        position = len(element.attributes)
        for i, existing in enumerate(element.attributes):
            existing_id = self.resource_id(existing)
            if existing_id is None or existing_id > resource_id:
                position = i
                break
        element.attributes.insert(position, attr)

        # id/class/style 索引从1开始，0表示不存在
        if element.id_index > position:
            element.id_index += 1
        if element.class_index > position:
            element.class_index += 1
        if element.style_index > position:
            element.style_index += 1
        return attr

    def _insert_string(self, index: int, value: str) -> None:
        def shift(ref: int) -> int:
            return ref + 1 if ref != NO_ENTRY and ref >= index else ref

        self.pool.strings.insert(index, value)
        if index < len(self.pool.styles):
            self.pool.styles.insert(index, [])
        self.pool.styles = [[(shift(name), first, last) for name, first, last in spans]
                            for spans in self.pool.styles]

        for node in self.nodes:
            if isinstance(node, RawChunk):
                continue
            node.comment = shift(node.comment)
            if isinstance(node, NamespaceNode):
                node.prefix = shift(node.prefix)
                node.uri = shift(node.uri)
            elif isinstance(node, EndElement):
                node.namespace = shift(node.namespace)
                node.name = shift(node.name)
            elif isinstance(node, CData):
                node.data = shift(node.data)
                if node.data_type == TYPE_STRING:
                    node.value = shift(node.value)
            else:
                node.namespace = shift(node.namespace)
                node.name = shift(node.name)
                for attr in node.attributes:
                    attr.namespace = shift(attr.namespace)
                    attr.name = shift(attr.name)
                    attr.raw_value = shift(attr.raw_value)
                    if attr.data_type == TYPE_STRING:
                        attr.data = shift(attr.data)
