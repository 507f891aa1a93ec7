"""
通过adb安装apk
"""
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Union

from rich.console import Console

from .errors import InstallRejected


class AdbInstaller:
    """使用 adb install-multiple 安装base与split apk"""
    def __init__(self, adb: str = "adb", serial: Optional[str] = None):
        """
        Args:
            adb: adb可执行文件
            serial: 目标设备序列号，为None时使用默认设备
        """
        self.adb = adb
        self.serial = serial
        self.console = Console()

    def _command(self, archives: Iterable[Union[str, Path]]) -> List[str]:
        cmd = [self.adb]
        if self.serial:
            cmd += ["-s", self.serial]
        return cmd + ["install-multiple", "-r"] + [str(path) for path in archives]

    def install_archives(self, archives: Iterable[Union[str, Path]]) -> str:
        """
        安装一组apk

        Returns:
            str: adb输出

        Raises:
            InstallRejected: adb不可用或安装失败
        """
        cmd = self._command(archives)
        try:
            result = subprocess.run(cmd, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise InstallRejected(f"adb not found: {self.adb}") from e
        except subprocess.CalledProcessError as e:
            raise InstallRejected(f"Failed to install apks: {(e.stderr or e.stdout).strip()}") from e

        # 旧版本adb失败时也可能返回0
        if "Failure" in result.stdout:
            raise InstallRejected(f"Failed to install apks: {result.stdout.strip()}")
        self.console.print(f"[green]{result.stdout.strip()}")
        return result.stdout
