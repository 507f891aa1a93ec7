"""
APK归档读写模块

ArchiveReader 提供只读的条目枚举与读取，ArchiveWriter 提供一次性的读写会话：
会话中的修改只在退出 with 块时整体写入临时文件并原子替换原文件。
"""
import os
import struct
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple, Union

from .errors import ArchiveError

STORED = zipfile.ZIP_STORED
DEFLATED = zipfile.ZIP_DEFLATED

# .so 需要按页对齐才能直接从apk中mmap加载
PAGE_ALIGNMENT = 4096
DEFAULT_ALIGNMENT = 4

ALIGNMENT_EXTRA_ID = 0xD935

LOCAL_HEADER = struct.Struct("<IHHHHHIIIHH")
CENTRAL_HEADER = struct.Struct("<IHHHHHHIIIHHHHHII")
END_OF_CENTRAL_DIR = struct.Struct("<IHHHHIIH")

LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_HEADER_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIR_SIGNATURE = 0x06054B50

FLAG_DATA_DESCRIPTOR = 0x08
FLAG_UTF8 = 0x800

# 1981-01-01 01:01:02，与apksigner写入的时间一致
DEFAULT_DATE_TIME = (1981, 1, 1, 1, 1, 2)

PathLike = Union[str, Path]


@dataclass
class ArchiveEntry:
    """归档条目，payload 为压缩后的原始数据"""
    name: str
    compression: int
    crc: int
    size: int
    payload: bytes
    date_time: Tuple[int, int, int, int, int, int] = DEFAULT_DATE_TIME
    flag_bits: int = 0
    external_attr: int = 0
    made_by: int = 20
    extra: bytes = b""
    data_offset: int = 0
    alignment: Optional[int] = None
    keep_page_alignment: bool = False

    def read(self) -> bytes:
        """返回解压后的数据"""
        if self.compression == STORED:
            return self.payload
        if self.compression == DEFLATED:
            return zlib.decompress(self.payload, -15)
        raise ArchiveError(f"Unsupported compression {self.compression} for {self.name}")


def _open_zip(path: PathLike) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path, "r")
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(f"Failed to open archive {path}: {e}") from e


def _strip_alignment(extra: bytes) -> bytes:
    """去除extra字段中的对齐记录与填充"""
    kept = b""
    while len(extra) >= 4:
        header_id, size = struct.unpack("<HH", extra[:4])
        if size > len(extra) - 4:
            break
        if header_id != ALIGNMENT_EXTRA_ID and not (header_id == 0 and size == 0):
            kept += extra[:size + 4]
        extra = extra[size + 4:]
    return kept


def _load_entries(path: PathLike) -> List[ArchiveEntry]:
    """
    读取归档中所有条目的原始压缩数据

    Args:
        path: 归档路径

    Returns:
        List[ArchiveEntry]: 按归档顺序排列的条目
    """
    with _open_zip(path) as zf:
        infos = zf.infolist()

    entries = []
    seen = set()
    with open(path, "rb") as fh:
        for info in infos:
            if info.filename in seen:
                raise ArchiveError(f"Duplicate entry {info.filename} in {path}")
            seen.add(info.filename)

            fh.seek(info.header_offset)
            header = fh.read(LOCAL_HEADER.size)
            if len(header) != LOCAL_HEADER.size:
                raise ArchiveError(f"Truncated local header for {info.filename}")
            fields = LOCAL_HEADER.unpack(header)
            if fields[0] != LOCAL_HEADER_SIGNATURE:
                raise ArchiveError(f"Bad local header signature for {info.filename}")
            name_len, extra_len = fields[9], fields[10]
            fh.seek(name_len, os.SEEK_CUR)
            extra = fh.read(extra_len)
            data_offset = fh.tell()
            payload = fh.read(info.compress_size)
            if len(payload) != info.compress_size:
                raise ArchiveError(f"Truncated data for {info.filename}")

            stored = info.compress_type == STORED
            entries.append(ArchiveEntry(
                name=info.filename,
                compression=info.compress_type,
                crc=info.CRC,
                size=info.file_size,
                payload=payload,
                date_time=info.date_time,
                flag_bits=info.flag_bits & ~FLAG_DATA_DESCRIPTOR,
                external_attr=info.external_attr,
                made_by=(info.create_system << 8) | info.create_version,
                extra=_strip_alignment(extra),
                data_offset=data_offset,
                keep_page_alignment=stored and data_offset % PAGE_ALIGNMENT == 0,
            ))
    return entries


def _dos_date_time(date_time: Tuple[int, ...]) -> Tuple[int, int]:
    year, month, day, hour, minute, second = date_time
    dos_date = ((year - 1980) << 9) | (month << 5) | day
    dos_time = (hour << 11) | (minute << 5) | (second // 2)
    return dos_time, dos_date


def _encode_name(name: str) -> Tuple[bytes, int]:
    try:
        return name.encode("ascii"), 0
    except UnicodeEncodeError:
        return name.encode("utf-8"), FLAG_UTF8


def _alignment_of(entry: ArchiveEntry) -> int:
    if entry.compression != STORED:
        return 0
    alignment = entry.alignment or DEFAULT_ALIGNMENT
    if entry.keep_page_alignment:
        alignment = max(alignment, PAGE_ALIGNMENT)
    return alignment


def write_archive(fh: BinaryIO, entries: List[ArchiveEntry]) -> None:
    """
    将条目写成完整的zip结构，STORED条目按对齐要求在local header的extra中填充

    Args:
        fh: 可写的二进制文件对象
        entries: 待写入的条目
    """
    if len(entries) > 0xFFFF:
        raise ArchiveError("Too many entries for a non-zip64 archive")

    central = []
    offset = 0
    for entry in entries:
        name, name_flag = _encode_name(entry.name)
        flags = (entry.flag_bits & ~FLAG_UTF8) | name_flag
        dos_time, dos_date = _dos_date_time(entry.date_time)
        version = 20 if entry.compression == DEFLATED else 10

        extra = entry.extra
        alignment = _alignment_of(entry)
        if alignment:
            data_start = offset + LOCAL_HEADER.size + len(name) + len(extra)
            pad = (alignment - (data_start + 6) % alignment) % alignment
            extra = extra + struct.pack("<HHH", ALIGNMENT_EXTRA_ID, 2 + pad, alignment) + b"\x00" * pad

        if offset > 0xFFFFFFFF or len(entry.payload) > 0xFFFFFFFF:
            raise ArchiveError(f"{entry.name} requires zip64")

        fh.write(LOCAL_HEADER.pack(
            LOCAL_HEADER_SIGNATURE, version, flags, entry.compression,
            dos_time, dos_date, entry.crc, len(entry.payload), entry.size,
            len(name), len(extra),
        ))
        fh.write(name)
        fh.write(extra)
        fh.write(entry.payload)

        central.append(CENTRAL_HEADER.pack(
            CENTRAL_HEADER_SIGNATURE, entry.made_by, version, flags, entry.compression,
            dos_time, dos_date, entry.crc, len(entry.payload), entry.size,
            len(name), len(entry.extra), 0, 0, 0, entry.external_attr, offset,
        ) + name + entry.extra)
        offset += LOCAL_HEADER.size + len(name) + len(extra) + len(entry.payload)

    cd_offset = offset
    cd = b"".join(central)
    fh.write(cd)
    fh.write(END_OF_CENTRAL_DIR.pack(
        END_OF_CENTRAL_DIR_SIGNATURE, 0, 0, len(entries), len(entries), len(cd), cd_offset, 0,
    ))


class ArchiveReader:
    """只读归档访问"""
    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._zip: Optional[zipfile.ZipFile] = None

    def __enter__(self) -> "ArchiveReader":
        self._zip = _open_zip(self.path)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        return False

    def list_entries(self) -> List[str]:
        """按归档顺序列出条目名"""
        return [info.filename for info in self._zip.infolist()]

    def read_entry(self, name: str) -> Optional[bytes]:
        """读取条目内容，不存在时返回None"""
        try:
            return self._zip.read(name)
        except KeyError:
            return None

    def get_info(self, name: str) -> Optional[zipfile.ZipInfo]:
        try:
            return self._zip.getinfo(name)
        except KeyError:
            return None


class ArchiveWriter:
    """
    归档读写会话

    所有修改在内存中进行，退出 with 块时写入同目录的临时文件后用 os.replace 替换原文件；
    块内抛出异常时原文件保持不变。
    """
    def __init__(self, path: PathLike, compresslevel: int = 9):
        """
        Args:
            path: 归档路径
            compresslevel: 新写入DEFLATED条目的压缩等级
        """
        self.path = Path(path)
        self.compresslevel = compresslevel
        self._entries: Optional[Dict[str, ArchiveEntry]] = None

    def __enter__(self) -> "ArchiveWriter":
        self._entries = {entry.name: entry for entry in _load_entries(self.path)}
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self._flush()
        finally:
            self._entries = None
        return False

    def list_entries(self) -> List[str]:
        return list(self._entries)

    def read_entry(self, name: str) -> Optional[bytes]:
        entry = self._entries.get(name)
        return entry.read() if entry is not None else None

    def delete_entry(self, name: str, preserve_alignment: bool = False) -> None:
        """
        删除条目，不存在时忽略

        Args:
            name: 条目名
            preserve_alignment: 为True时其后按页对齐的STORED条目保持页对齐，
                否则其后的条目被紧凑排列
        """
        names = list(self._entries)
        if name not in self._entries:
            return
        index = names.index(name)
        del self._entries[name]
        if not preserve_alignment:
            for following in names[index + 1:]:
                self._entries[following].keep_page_alignment = False

    def write_entry(self, name: str, data: bytes, compression: int = DEFLATED,
                    alignment: Optional[int] = None) -> None:
        """
        写入或覆盖条目，覆盖时保持原位置，新条目追加到末尾

        Args:
            name: 条目名
            data: 未压缩数据
            compression: STORED 或 DEFLATED
            alignment: STORED条目的数据对齐字节数
        """
        if compression == STORED:
            payload = data
        elif compression == DEFLATED:
            compressor = zlib.compressobj(self.compresslevel, zlib.DEFLATED, -15)
            payload = compressor.compress(data) + compressor.flush()
        else:
            raise ArchiveError(f"Unsupported compression {compression} for {name}")

        self._entries[name] = ArchiveEntry(
            name=name,
            compression=compression,
            crc=zlib.crc32(data) & 0xFFFFFFFF,
            size=len(data),
            payload=payload,
            alignment=alignment,
        )

    def _flush(self) -> None:
        entries = list(self._entries.values())
        atomic_write(self.path, lambda fh: write_archive(fh, entries))


def atomic_write(path: PathLike, write: Callable[[BinaryIO], None]) -> None:
    """
    先写入同目录的临时文件，成功后再替换目标文件

    Args:
        path: 目标文件
        write: 接收可写文件对象的回调
    """
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            write(fh)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
