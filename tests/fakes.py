"""补丁流程测试使用的假下载器、发布列表、安装器与资源"""
import io
import threading
import zipfile

from rich.console import Console

from rnpatch.core.config import PatchOptions
from rnpatch.core.errors import MissingAsset
from rnpatch.core.pipeline import PatchPipeline
from rnpatch.core.releases import Release, ReleaseAsset

from builders import build_manifest, make_zip

ARCH = "arm64-v8a"
HERMES_URL = "https://example.invalid/hermes-release.aar"
RUNTIME_URL = "https://example.invalid/hermes-cppruntime-release.aar"
DEX_URL = "https://example.invalid/classes.dex"


def base_apk(manifest=True):
    entries = {"classes.dex": b"original dex", "resources.arsc": b"table"}
    if manifest:
        entries = {"AndroidManifest.xml": build_manifest(), **entries}
    return make_zip(entries)


APK_FILES = {
    None: base_apk(),
    "config.arm64_v8a": make_zip({
        "AndroidManifest.xml": build_manifest(),
        f"lib/{ARCH}/libhermes.so": (b"old hermes", zipfile.ZIP_STORED),
        f"lib/{ARCH}/libc++_shared.so": (b"old runtime", zipfile.ZIP_STORED),
    }),
    "config.en": make_zip({"AndroidManifest.xml": build_manifest(), "resources.arsc": b"en"}),
    "config.xxhdpi": make_zip({"AndroidManifest.xml": build_manifest(), "res/drawable/a.png": b"png"}),
}

URL_FILES = {
    HERMES_URL: make_zip({f"jni/{ARCH}/libhermes.so": b"new hermes" * 64}),
    RUNTIME_URL: make_zip({f"jni/{ARCH}/libc++_shared.so": b"new runtime" * 64}),
    DEX_URL: b"injected dex",
}


class FakeDownloader:
    def __init__(self, save_dir, apks=None):
        self.save_dir = save_dir
        self.apks = {**APK_FILES, **(apks or {})}
        self.calls = []

    def download_apk(self, version, split=None):
        self.calls.append(("apk", split))
        path = self.save_dir / f"{split or 'base'}-{version}.apk"
        path.write_bytes(self.apks[split])
        return path

    def download(self, url, file_name):
        self.calls.append(("url", url))
        path = self.save_dir / file_name
        path.write_bytes(URL_FILES[url])
        return path


class FakeReleases:
    def __init__(self):
        self.calls = []

    def list_releases(self, project):
        self.calls.append(project)
        if project == "owner/hermes":
            return [
                Release("v0", "2022-01-01T00:00:00Z", [ReleaseAsset("hermes-release.aar", "https://old")]),
                Release("v1", "2023-06-01T00:00:00Z", [
                    ReleaseAsset("hermes-release.aar", HERMES_URL),
                    ReleaseAsset("hermes-cppruntime-release.aar", RUNTIME_URL),
                ]),
            ]
        return [Release("v2", "2023-01-01T00:00:00Z", [ReleaseAsset("classes.dex", DEX_URL)])]


class FakeInstaller:
    def __init__(self):
        self.installed = []

    def install_archives(self, archives):
        self.installed.append(list(archives))
        return "Success"


class BlockingInstaller(FakeInstaller):
    """在安装步骤阻塞，直到 release 被设置"""
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def install_archives(self, archives):
        self.entered.set()
        self.release.wait(timeout=10)
        return super().install_archives(archives)


class DictAssets:
    def __init__(self, files):
        self.files = files

    def read(self, name):
        if name not in self.files:
            raise MissingAsset(f"Asset {name} not found")
        return self.files[name]


def make_options(tmp_path):
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    return PatchOptions(
        cache_dir=cache_dir,
        data_dir=tmp_path / "data",
        assets_dir=tmp_path / "assets",
        package_name="com.mod.app",
        app_name="Modded",
        debuggable=False,
        replace_icon=False,
        version="1",
        arch=ARCH,
        hermes_project="owner/hermes",
        injector_project="owner/injector",
    )


def make_pipeline(options, signer, downloader=None, installer=None, assets=None, console=None):
    return PatchPipeline(
        options,
        downloader=downloader or FakeDownloader(options.cache_dir),
        releases=FakeReleases(),
        installer=installer or FakeInstaller(),
        signer=signer,
        assets=assets or DictAssets({}),
        console=console or Console(file=io.StringIO()),
    )
