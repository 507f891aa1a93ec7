"""
APK补丁工具：向React Native应用注入运行时并重新签名
"""
__version__ = "0.1.0"

from .core.archive import ArchiveReader, ArchiveWriter
from .core.manifest import patch_manifest, rename_package
from .core.pipeline import PatchPipeline, Variant
from .core.signer import Signer

__all__ = [
    'ArchiveReader',
    'ArchiveWriter',
    'patch_manifest',
    'rename_package',
    'PatchPipeline',
    'Variant',
    'Signer',
]
