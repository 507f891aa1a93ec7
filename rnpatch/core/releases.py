"""
GitHub发布信息获取
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import requests

from .errors import DownloadFailure

GITHUB_API = "https://api.github.com"


@dataclass
class ReleaseAsset:
    """发布附件"""
    name: str
    url: str


@dataclass
class Release:
    """发布信息"""
    tag_name: str
    created_at: str
    assets: List[ReleaseAsset] = field(default_factory=list)

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))

    def find_asset(self, name: str) -> ReleaseAsset:
        """
        按文件名查找附件

        Raises:
            DownloadFailure: 附件不存在
        """
        for asset in self.assets:
            if asset.name == name:
                return asset
        raise DownloadFailure(f"Release {self.tag_name} has no asset named {name}")


def latest_release(releases: List[Release]) -> Release:
    """返回创建时间最新的发布"""
    if not releases:
        raise DownloadFailure("No releases found")
    return max(releases, key=lambda release: release.created)


class GithubReleases:
    """GitHub发布列表客户端"""
    def __init__(self, timeout: int = 30, proxies: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.proxies = proxies
        self.session = session or requests.Session()

    def list_releases(self, project: str) -> List[Release]:
        """
        获取项目的发布列表

        Args:
            project: owner/repo 形式的项目名

        Returns:
            List[Release]: 发布列表

        Raises:
            DownloadFailure: 请求失败或响应格式不正确
        """
        url = f"{GITHUB_API}/repos/{project}/releases"
        try:
            response = self.session.get(
                url,
                headers={"Accept": "application/vnd.github+json"},
                timeout=self.timeout,
                proxies=self.proxies
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DownloadFailure(f"Failed to fetch releases of {project}: {e}") from e

        try:
            return [
                Release(
                    tag_name=item["tag_name"],
                    created_at=item["created_at"],
                    assets=[ReleaseAsset(asset["name"], asset["browser_download_url"])
                            for asset in item.get("assets", [])]
                )
                for item in data
            ]
        except (KeyError, TypeError) as e:
            raise DownloadFailure(f"Unexpected release data from {project}: {e}") from e
