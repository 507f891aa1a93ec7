"""
dex文件重排
"""
import re
from pathlib import Path
from typing import Iterable, Union

from .archive import ArchiveWriter
from .errors import MissingArchiveEntry

PRIMARY_DEX = "classes.dex"

DEX_PATTERN = re.compile(r"^classes(\d*)\.dex$")


def count_dex(names: Iterable[str]) -> int:
    """统计根目录下 classes*.dex 条目数量"""
    return sum(1 for name in names if DEX_PATTERN.match(name))


def reorder_dex(archive_path: Union[str, Path], payload: bytes) -> int:
    """
    将原 classes.dex 移到 classes{n+1}.dex，并写入新的 classes.dex 使其最先加载

    Args:
        archive_path: base apk 路径
        payload: 注入的dex内容

    Returns:
        int: 原 classes.dex 的新序号

    Raises:
        MissingArchiveEntry: apk中没有 classes.dex
    """
    with ArchiveWriter(archive_path) as zip_:
        primary = zip_.read_entry(PRIMARY_DEX)
        if primary is None:
            raise MissingArchiveEntry(PRIMARY_DEX, Path(archive_path).name)

        index = count_dex(zip_.list_entries()) + 1
        zip_.delete_entry(PRIMARY_DEX)
        zip_.write_entry(f"classes{index}.dex", primary)
        zip_.write_entry(PRIMARY_DEX, payload)
    return index
