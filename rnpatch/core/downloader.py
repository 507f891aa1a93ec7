from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, DownloadColumn, TransferSpeedColumn, TimeRemainingColumn
from rich.console import Console
from pathlib import Path
import requests
import os
from typing import Dict, Optional, Union
import time

from .errors import DownloadFailure

class Downloader:
    """下载管理器"""
    def __init__(self, save_dir: Union[str, Path], apk_url: str, chunk_size: int = 8192,
                 max_retries: int = 3, timeout: int = 30, proxies: Optional[Dict[str, str]] = None,
                 session: Optional[requests.Session] = None):
        """
        初始化下载管理器

        Args:
            save_dir: 下载文件保存目录
            apk_url: apk下载地址模板，包含 {version} 占位符
            chunk_size: 分块大小
            max_retries: 最大重试次数
            timeout: 请求超时时间（秒）
            proxies: requests代理配置
            session: 可选的requests会话
        """
        self.console = Console()
        self.save_dir = Path(save_dir)
        self.apk_url = apk_url
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.timeout = timeout
        self.proxies = proxies
        self.session = session or requests.Session()

        os.makedirs(self.save_dir, exist_ok=True)

    @classmethod
    def from_config(cls, config) -> 'Downloader':
        """从配置创建下载管理器"""
        return cls(
            save_dir=config.get_path("cache_dir"),
            apk_url=config.get_download("apk_url"),
            chunk_size=config.get_download("chunk_size"),
            max_retries=config.get_download("max_retries"),
            timeout=config.get_download("timeout"),
            proxies=config.get_download("proxies"),
        )

    def download_apk(self, version: str, split: Optional[str] = None) -> Path:
        """
        下载base apk或指定的split apk

        Args:
            version: 应用版本号
            split: split名，如 config.en，为None时下载base apk

        Returns:
            Path: 下载的文件路径
        """
        url = self.apk_url.format(version=version)
        if split:
            url += f"&split={split}"
        file_name = f"{split or 'base'}-{version}.apk"
        return self.download(url, file_name)

    def download(self, url: str, file_name: str) -> Path:
        """
        下载单个文件，先写入 .part 文件，完成后再重命名

        Args:
            url: 下载地址
            file_name: 保存的文件名

        Returns:
            Path: 下载的文件路径

        Raises:
            DownloadFailure: 重试后仍然失败
        """
        save_path = self.save_dir / file_name
        part_path = save_path.with_name(save_path.name + ".part")
        error_msg = ""

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"[cyan]Downloading {file_name}", total=None, start=False)

            # 重试机制
            for attempt in range(self.max_retries):
                try:
                    response = self.session.get(
                        url,
                        stream=True,
                        timeout=self.timeout,
                        proxies=self.proxies
                    )
                    response.raise_for_status()

                    total = response.headers.get("content-length")
                    progress.update(task, total=int(total) if total else None, completed=0)
                    progress.start_task(task)
                    with open(part_path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=self.chunk_size):
                            if chunk:
                                f.write(chunk)
                                progress.update(task, advance=len(chunk))

                    os.replace(part_path, save_path)
                    return save_path

                except (requests.RequestException, OSError) as e:
                    error_msg = f"Download failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                    progress.update(task, description=f"[red]{error_msg}")
                    if part_path.exists():
                        part_path.unlink()

                    if attempt < self.max_retries - 1:
                        time.sleep(1)  # 重试前等待

        raise DownloadFailure(f"Failed to download {file_name} from {url}: {error_msg}")
