from pathlib import Path
import yaml
import os
from typing import Any, Dict, Optional, List, Union
import re
from rich.console import Console
from dataclasses import dataclass, field, asdict, fields

console = Console()

@dataclass
class PathsConfig:
    """路径配置模型"""
    base_dir: str = "${XDG_CACHE_HOME}/rnpatch"
    cache_dir: str = "${XDG_CACHE_HOME}/rnpatch/cache"
    data_dir: str = "${XDG_DATA_HOME}/rnpatch"
    assets_dir: str = "${XDG_DATA_HOME}/rnpatch/assets"

@dataclass
class DownloadConfig:
    """下载配置模型"""
    apk_url: str = "https://aliucord.com/download/discord?v={version}"
    chunk_size: int = 8192
    max_retries: int = 3
    timeout: int = 30
    proxies: Optional[Dict[str, str]] = None

@dataclass
class PatchConfig:
    """补丁配置模型"""
    package_name: str = "com.aliucord"
    app_name: str = "Aliucord"
    debuggable: bool = False
    replace_icon: bool = True
    version: str = "126021"
    arch: str = "arm64-v8a"
    locale: str = "en"
    density: str = "xxhdpi"
    hermes_project: str = "Aliucord/Hermes"
    injector_project: str = "Aliucord/AliucordNative"

@dataclass
class InstallConfig:
    """安装配置模型"""
    adb: str = "adb"
    serial: Optional[str] = None

@dataclass
class ConfigModel:
    """配置模型"""
    paths: PathsConfig = field(default_factory=PathsConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    patch: PatchConfig = field(default_factory=PatchConfig)
    install: InstallConfig = field(default_factory=InstallConfig)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "paths": asdict(self.paths),
            "download": asdict(self.download),
            "patch": asdict(self.patch),
            "install": asdict(self.install)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConfigModel':
        """从字典创建配置模型，忽略未知的键"""
        def build(model, values):
            known = {f.name for f in fields(model)}
            return model(**{k: v for k, v in (values or {}).items() if k in known})

        return cls(
            paths=build(PathsConfig, data.get("paths")),
            download=build(DownloadConfig, data.get("download")),
            patch=build(PatchConfig, data.get("patch")),
            install=build(InstallConfig, data.get("install"))
        )

@dataclass
class PatchOptions:
    """单次补丁运行使用的配置快照"""
    cache_dir: Path
    data_dir: Path
    assets_dir: Path
    package_name: str
    app_name: str
    debuggable: bool
    replace_icon: bool
    version: str
    arch: str
    locale: str = "en"
    density: str = "xxhdpi"
    hermes_project: str = "Aliucord/Hermes"
    injector_project: str = "Aliucord/AliucordNative"

    @property
    def patched_dir(self) -> Path:
        return self.cache_dir / "patched"

class PathManager:
    """路径管理器"""
    def __init__(self):
        self.xdg_dirs = self._get_xdg_dirs()

    def _get_xdg_dirs(self) -> Dict[str, str]:
        """获取XDG基础目录"""
        home = str(Path.home())
        return {
            "HOME": home,
            "XDG_CONFIG_HOME": os.environ.get("XDG_CONFIG_HOME", f"{home}/.config"),
            "XDG_DATA_HOME": os.environ.get("XDG_DATA_HOME", f"{home}/.local/share"),
            "XDG_CACHE_HOME": os.environ.get("XDG_CACHE_HOME", f"{home}/.cache")
        }

    def expand_path(self, path: str) -> str:
        """展开路径中的变量和特殊字符"""
        if not path:
            return path

        # 展开 ${VAR} 变量，优先使用 xdg_dirs 中的值
        def replace_var(match):
            var_name = match.group(1)
            if var_name in self.xdg_dirs:
                return self.xdg_dirs[var_name]
            return os.environ.get(var_name, match.group(0))

        path = re.sub(r'\${(\w+)}', replace_var, path)
        path = os.path.expanduser(path)
        path = os.path.expandvars(path)
        return os.path.abspath(path)

    def normalize_path(self, path: str) -> str:
        """规范化路径格式"""
        if not path:
            return path
        path = path.replace("\\", "/")
        path = re.sub(r'/+', '/', path)
        if path != "/" and path.endswith("/"):
            path = path.rstrip("/")
        return path

class Config:
    """配置管理器"""
    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.path_manager = PathManager()
        self.config_file = Path(config_file) if config_file else self._get_user_config_path()
        self._config: Optional[ConfigModel] = None

    def _get_user_config_path(self) -> Path:
        """获取用户配置文件路径"""
        config_dir = Path(self.path_manager.xdg_dirs["XDG_CONFIG_HOME"]) / "rnpatch"
        return config_dir / "config.yaml"

    @property
    def config(self) -> ConfigModel:
        self.ensure_initialized()
        return self._config

    def ensure_initialized(self) -> None:
        """首次使用时加载配置"""
        if self._config is None:
            self._config = self._load_config()

    def _load_config(self) -> ConfigModel:
        """加载配置"""
        if not self.config_file.exists():
            return self._create_default_config()

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return ConfigModel.from_dict(data)
        except (OSError, yaml.YAMLError, TypeError) as e:
            console.print(f"[yellow]Warning: Failed to load config file: {e}[/yellow]")
            return ConfigModel()

    def _create_default_config(self) -> ConfigModel:
        """创建默认配置"""
        config = ConfigModel()
        self.save_config(config)
        return config

    def save_config(self, config: ConfigModel) -> None:
        """保存配置"""
        try:
            os.makedirs(self.config_file.parent, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(config.to_dict(), f, default_flow_style=False, allow_unicode=True)
        except OSError as e:
            console.print(f"[red]Error: Failed to save config file: {e}[/red]")

    def ensure_directories(self) -> None:
        """确保所有必要的目录都存在"""
        for key in ("base_dir", "cache_dir", "data_dir", "assets_dir"):
            path = self.get_path(key)
            try:
                os.makedirs(path, exist_ok=True)
                if not os.access(path, os.W_OK):
                    console.print(f"[yellow]Warning: No write permission: {path}[/yellow]")
            except OSError as e:
                console.print(f"[yellow]Warning: Failed to create directory {path}: {e}[/yellow]")

    def get_path(self, key: str, default: Optional[str] = None) -> str:
        """获取路径配置"""
        value = getattr(self.config.paths, key, default)
        if value is None:
            return default
        return self.path_manager.normalize_path(self.path_manager.expand_path(value))

    def get_download(self, key: str, default: Any = None) -> Any:
        """获取下载配置"""
        return getattr(self.config.download, key, default)

    def get_patch(self, key: str, default: Any = None) -> Any:
        """获取补丁配置"""
        return getattr(self.config.patch, key, default)

    def get_install(self, key: str, default: Any = None) -> Any:
        """获取安装配置"""
        return getattr(self.config.install, key, default)

    def set_value(self, section: str, key: str, value: Any) -> None:
        """
        设置配置项

        Raises:
            KeyError: 配置段落或配置项不存在
        """
        model = getattr(self.config, section, None)
        if model is None or not hasattr(model, key):
            raise KeyError(f"Unknown configuration key: {section}.{key}")
        setattr(model, key, value)
        self.save_config(self.config)

    def reset(self) -> None:
        """重置为默认配置"""
        self._config = self._create_default_config()

    def patch_options(self) -> PatchOptions:
        """生成补丁运行使用的配置快照"""
        patch = self.config.patch
        return PatchOptions(
            cache_dir=Path(self.get_path("cache_dir")),
            data_dir=Path(self.get_path("data_dir")),
            assets_dir=Path(self.get_path("assets_dir")),
            package_name=patch.package_name,
            app_name=patch.app_name,
            debuggable=patch.debuggable,
            replace_icon=patch.replace_icon,
            version=str(patch.version),
            arch=patch.arch,
            locale=patch.locale,
            density=patch.density,
            hermes_project=patch.hermes_project,
            injector_project=patch.injector_project
        )

# 全局配置实例
config = Config()
