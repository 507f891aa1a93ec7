"""
补丁流程中使用的异常类型
"""


class PatchError(Exception):
    """补丁流程异常基类"""


class DownloadFailure(PatchError):
    """下载或发布信息获取失败"""


class ArchiveError(PatchError):
    """归档文件无法作为zip读取或写入"""


class MissingArchiveEntry(PatchError):
    """归档中缺少必需的条目"""

    def __init__(self, entry: str, archive: str):
        super().__init__(f"No {entry} in {archive}")
        self.entry = entry
        self.archive = archive


class MalformedManifest(PatchError):
    """二进制XML清单无法解析"""


class UnmappableLibrary(PatchError):
    """库文件名无法映射到内嵌的二进制文件"""


class MissingEmbeddedBinary(PatchError):
    """库文件中缺少指定架构的二进制文件"""


class MissingAsset(PatchError):
    """资源目录中缺少指定资源"""


class SigningFailure(PatchError):
    """签名失败"""


class InstallRejected(PatchError):
    """系统安装器拒绝安装"""
