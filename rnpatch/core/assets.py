"""
替换用的资源文件
"""
from pathlib import Path
from typing import Union

from .errors import MissingAsset


class DirectoryAssets:
    """从目录读取资源文件，名称为相对路径，如 icons/ic_logo_square.png"""
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def read(self, name: str) -> bytes:
        path = self.root / name
        if not path.is_file():
            raise MissingAsset(f"Asset {name} not found in {self.root}")
        return path.read_bytes()
