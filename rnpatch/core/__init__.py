"""
APK补丁工具的核心功能模块
"""
from .archive import ArchiveReader, ArchiveWriter, STORED, DEFLATED, PAGE_ALIGNMENT
from .axml import AxmlDocument
from .manifest import patch_manifest, rename_package
from .dex import reorder_dex
from .libraries import swap_libraries, HERMES_BINARIES
from .signer import Signer
from .pipeline import (
    PatchPipeline,
    PatchRun,
    Step,
    StepCategory,
    StepStatus,
    StepEvent,
    StepResult,
    RunFinished,
    Variant
)
from .downloader import Downloader
from .releases import GithubReleases, Release, ReleaseAsset
from .installer import AdbInstaller
from .assets import DirectoryAssets
from .errors import (
    PatchError,
    DownloadFailure,
    ArchiveError,
    MissingArchiveEntry,
    MalformedManifest,
    UnmappableLibrary,
    MissingEmbeddedBinary,
    MissingAsset,
    SigningFailure,
    InstallRejected
)

__all__ = [
    # 归档读写
    'ArchiveReader',
    'ArchiveWriter',
    'STORED',
    'DEFLATED',
    'PAGE_ALIGNMENT',

    # 补丁操作
    'AxmlDocument',
    'patch_manifest',
    'rename_package',
    'reorder_dex',
    'swap_libraries',
    'HERMES_BINARIES',
    'Signer',

    # 流程编排
    'PatchPipeline',
    'PatchRun',
    'Step',
    'StepCategory',
    'StepStatus',
    'StepEvent',
    'StepResult',
    'RunFinished',
    'Variant',

    # 外部服务
    'Downloader',
    'GithubReleases',
    'Release',
    'ReleaseAsset',
    'AdbInstaller',
    'DirectoryAssets',

    # 异常
    'PatchError',
    'DownloadFailure',
    'ArchiveError',
    'MissingArchiveEntry',
    'MalformedManifest',
    'UnmappableLibrary',
    'MissingEmbeddedBinary',
    'MissingAsset',
    'SigningFailure',
    'InstallRejected',
]
