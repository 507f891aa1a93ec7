"""
补丁流程编排

按固定顺序执行下载、补丁、签名与安装步骤，任一步骤失败即中止整个流程。
步骤状态以不可变快照的形式写入事件队列，供界面层读取。
"""
import platform
import queue
import shutil
import threading
import time
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from rich.console import Console

from .archive import ArchiveReader, ArchiveWriter
from .config import PatchOptions
from .dex import reorder_dex
from .errors import MissingArchiveEntry
from .libraries import HERMES_BINARIES, swap_libraries
from .manifest import patch_manifest, rename_package
from .releases import Release, latest_release

MANIFEST = "AndroidManifest.xml"

ICON_MIPMAPS = ("mipmap-xhdpi-v4", "mipmap-xxhdpi-v4", "mipmap-xxxhdpi-v4")
ICON_FILES = ("ic_logo_foreground.png", "ic_logo_square.png")


class StepStatus(Enum):
    QUEUED = "queued"
    ONGOING = "ongoing"
    SUCCESSFUL = "successful"
    UNSUCCESSFUL = "unsuccessful"


class StepCategory(Enum):
    APK_DOWNLOAD = "apk_download"
    LIB_DOWNLOAD = "lib_download"
    PATCHING = "patching"
    INSTALLING = "installing"


class Variant(Enum):
    REACT_NATIVE = "react-native"
    KOTLIN = "kotlin"


STEPS: List[Tuple[str, str, StepCategory]] = [
    ("base_apk_dl", "Downloading base apk", StepCategory.APK_DOWNLOAD),
    ("libs_apk_dl", "Downloading libraries apk", StepCategory.APK_DOWNLOAD),
    ("locale_apk_dl", "Downloading locale apk", StepCategory.APK_DOWNLOAD),
    ("resource_apk_dl", "Downloading resource apk", StepCategory.APK_DOWNLOAD),
    ("hermes_dl", "Downloading hermes & c++ runtime library", StepCategory.LIB_DOWNLOAD),
    ("dex_dl", "Downloading injected dex", StepCategory.LIB_DOWNLOAD),
    ("icon_patch", "Patching app icons", StepCategory.PATCHING),
    ("manifest_patch", "Patching apk manifests", StepCategory.PATCHING),
    ("dex_patch", "Adding injected dex into apk", StepCategory.PATCHING),
    ("lib_patch", "Replacing libraries", StepCategory.PATCHING),
    ("sign", "Signing apks", StepCategory.INSTALLING),
    ("install", "Installing apks", StepCategory.INSTALLING),
]


@dataclass
class Step:
    """单个补丁步骤"""
    key: str
    text: str
    category: StepCategory
    status: StepStatus = StepStatus.QUEUED
    duration: Optional[float] = None


@dataclass(frozen=True)
class StepEvent:
    """步骤状态快照"""
    key: str
    text: str
    category: StepCategory
    status: StepStatus
    duration: Optional[float]
    current_category: Optional[StepCategory]


@dataclass(frozen=True)
class RunFinished:
    """流程结束事件"""
    success: bool
    failed_step: Optional[str] = None
    stacktrace: str = ""


@dataclass
class StepResult:
    """步骤执行结果"""
    success: bool
    value: Any = None
    error: Optional[BaseException] = None


@dataclass
class PatchRun:
    """一次补丁运行的全部步骤与当前指针"""
    steps: Dict[str, Step] = field(default_factory=dict)
    current_step: Optional[Step] = None
    current_category: Optional[StepCategory] = StepCategory.APK_DOWNLOAD
    stacktrace: str = ""
    # 步骤之外的失败，例如准备 patched 目录
    aborted: bool = False

    @classmethod
    def create(cls, replace_icon: bool) -> "PatchRun":
        steps = {
            key: Step(key, text, category)
            for key, text, category in STEPS
            if key != "icon_patch" or replace_icon
        }
        return cls(steps=steps)

    @property
    def failed(self) -> bool:
        return self.aborted or self.failed_step is not None

    @property
    def failed_step(self) -> Optional[Step]:
        if self.current_step is not None and self.current_step.status == StepStatus.UNSUCCESSFUL:
            return self.current_step
        return None

    def snapshot(self) -> List[StepEvent]:
        return [_event(step, self.current_category) for step in self.steps.values()]


def _event(step: Step, current_category: Optional[StepCategory]) -> StepEvent:
    return StepEvent(step.key, step.text, step.category, step.status, step.duration, current_category)


@dataclass
class ArchiveSet:
    """需要同步修改的四个apk"""
    base: Path
    libs: Path
    locale: Path
    resources: Path

    def __iter__(self) -> Iterator[Path]:
        return iter((self.base, self.libs, self.locale, self.resources))


class PatchPipeline:
    """补丁流程编排器"""
    def __init__(self, options: PatchOptions, downloader, releases, installer, signer, assets,
                 console: Optional[Console] = None):
        """
        Args:
            options: 补丁配置
            downloader: 提供 download(url, file_name) 与 download_apk(version, split)
            releases: 提供 list_releases(project)
            installer: 提供 install_archives(paths)
            signer: 提供 sign(path)
            assets: 提供 read(name)
            console: 输出使用的Console
        """
        self.options = options
        self.downloader = downloader
        self.releases = releases
        self.installer = installer
        self.signer = signer
        self.assets = assets
        self.console = console or Console()

        self.events: "queue.Queue[Union[StepEvent, RunFinished]]" = queue.Queue()
        self.state: Optional[PatchRun] = None
        self.variant: Optional[Variant] = None

        self._running = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rnpatch")

    def start(self, variant: Variant = Variant.REACT_NATIVE) -> Optional["Future[RunFinished]"]:
        """
        在后台线程启动补丁流程

        Returns:
            Optional[Future]: 已有流程在运行时返回None
        """
        if not self._running.acquire(blocking=False):
            return None
        try:
            return self._executor.submit(self._run_and_release, variant)
        except RuntimeError:
            self._running.release()
            raise

    def run(self, variant: Variant = Variant.REACT_NATIVE) -> Optional[RunFinished]:
        """在当前线程执行补丁流程，已有流程在运行时返回None"""
        if not self._running.acquire(blocking=False):
            return None
        return self._run_and_release(variant)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def drain_events(self) -> List[Union[StepEvent, RunFinished]]:
        """取出队列中已有的全部事件"""
        events = []
        while True:
            try:
                events.append(self.events.get_nowait())
            except queue.Empty:
                return events

    def _run_and_release(self, variant: Variant) -> RunFinished:
        try:
            return self._run(variant)
        finally:
            self._running.release()

    def _run(self, variant: Variant) -> RunFinished:
        self.variant = variant
        self.state = PatchRun()
        try:
            self.state = PatchRun.create(self.options.replace_icon)
            if variant == Variant.REACT_NATIVE:
                self._install_react_native(self.state)
            else:
                self.console.print(f"[yellow]Nothing to patch for the {variant.value} variant")
        except Exception as e:
            self.state.aborted = True
            self.state.current_category = None
            self.state.stacktrace = traceback.format_exc().strip()
            self.console.print(f"[red]Failed to patch {variant.value}: {e}")

        # 无论成功与否都要发布结束事件，界面层依赖它退出读取循环
        if self.state.failed:
            failed_step = self.state.failed_step
            finished = RunFinished(False, failed_step.key if failed_step else None, self.state.stacktrace)
        else:
            finished = RunFinished(True)
        self.events.put_nowait(finished)
        return finished

    def _publish(self, run: PatchRun, step: Step) -> None:
        self.events.put_nowait(_event(step, run.current_category))

    def _step(self, run: PatchRun, key: str, block: Callable[[], Any]) -> StepResult:
        """
        执行单个步骤并记录状态与耗时

        Returns:
            StepResult: 失败时包含异常，调用方需要立即中止流程
        """
        step = run.steps[key]
        step.status = StepStatus.ONGOING
        run.current_category = step.category
        run.current_step = step
        self._publish(run, step)

        started = time.perf_counter()
        try:
            value = block()
        except Exception as e:
            step.status = StepStatus.UNSUCCESSFUL
            run.stacktrace = traceback.format_exc().strip()
            run.current_category = None
            run.current_step = step
            self._publish(run, step)
            self.console.print(f"[red]Failed to patch {self.variant.value} during {step.text}: {e}")
            return StepResult(False, error=e)

        step.duration = round(time.perf_counter() - started, 3)
        step.status = StepStatus.SUCCESSFUL
        run.current_step = step
        self._publish(run, step)
        return StepResult(True, value)

    def _install_react_native(self, run: PatchRun) -> bool:
        options = self.options
        shutil.rmtree(options.patched_dir, ignore_errors=True)
        options.patched_dir.mkdir(parents=True, exist_ok=True)

        lib_arch = options.arch.replace("-v", "_v")

        base = self._step(run, "base_apk_dl", lambda: self._fetch_apk(None))
        if not base.success:
            return False
        libs = self._step(run, "libs_apk_dl", lambda: self._fetch_apk(f"config.{lib_arch}"))
        if not libs.success:
            return False
        locale = self._step(run, "locale_apk_dl", lambda: self._fetch_apk(f"config.{options.locale}"))
        if not locale.success:
            return False
        resources = self._step(run, "resource_apk_dl", lambda: self._fetch_apk(f"config.{options.density}"))
        if not resources.success:
            return False

        hermes = self._step(run, "hermes_dl", self._fetch_hermes)
        if not hermes.success:
            return False
        dex = self._step(run, "dex_dl", self._fetch_dex)
        if not dex.success:
            return False

        apks = ArchiveSet(base.value, libs.value, locale.value, resources.value)

        if options.replace_icon:
            if not self._step(run, "icon_patch", lambda: self._patch_icons(apks.base)).success:
                return False

        if not self._step(run, "manifest_patch", lambda: self._patch_manifests(apks)).success:
            return False
        if not self._step(run, "dex_patch", lambda: reorder_dex(apks.base, dex.value.read_bytes())).success:
            return False
        if not self._step(run, "lib_patch",
                          lambda: swap_libraries(hermes.value, apks.libs, options.arch, HERMES_BINARIES)).success:
            return False

        if not self._step(run, "sign", lambda: self._sign(apks)).success:
            return False
        return self._step(run, "install", lambda: self.installer.install_archives(list(apks))).success

    def _fetch_apk(self, split: Optional[str]) -> Path:
        """使用缓存或下载apk，并复制一份到 patched 目录"""
        options = self.options
        file = options.cache_dir / f"{split or 'base'}-{options.version}.apk"
        if not file.exists():
            file = Path(self.downloader.download_apk(options.version, split))

        target = options.patched_dir / file.name
        shutil.copyfile(file, target)
        return target

    def _fetch_release_file(self, release: Release, asset_name: str, file_name: str) -> Path:
        file = self.options.cache_dir / file_name
        if file.exists():
            return file
        url = release.find_asset(asset_name).url
        return Path(self.downloader.download(url, file.name))

    def _fetch_hermes(self) -> List[Path]:
        # 两个库必须来自同一个发布
        release = latest_release(self.releases.list_releases(self.options.hermes_project))
        return [
            self._fetch_release_file(release, f"{name}.aar", f"{name}-{release.tag_name}.aar")
            for name in ("hermes-release", "hermes-cppruntime-release")
        ]

    def _fetch_dex(self) -> Path:
        release = latest_release(self.releases.list_releases(self.options.injector_project))
        return self._fetch_release_file(release, "classes.dex", f"classes-{release.tag_name}.dex")

    def _patch_icons(self, base: Path) -> None:
        with ArchiveWriter(base) as apk:
            for icon in ICON_FILES:
                data = self.assets.read(f"icons/{icon}")
                for mipmap in ICON_MIPMAPS:
                    path = f"res/{mipmap}/{icon}"
                    apk.delete_entry(path)
                    apk.write_entry(path, data)

    def _patch_manifests(self, apks: ArchiveSet) -> None:
        options = self.options
        for apk in apks:
            with ArchiveReader(apk) as zip_:
                manifest = zip_.read_entry(MANIFEST)
            if manifest is None:
                raise MissingArchiveEntry(MANIFEST, apk.name)

            if apk == apks.base:
                patched = patch_manifest(manifest, options.package_name, options.app_name, options.debuggable)
            else:
                patched = rename_package(manifest, options.package_name)

            with ArchiveWriter(apk) as zip_:
                # libs apk中的.so需要保持对齐
                zip_.delete_entry(MANIFEST, preserve_alignment=apk == apks.libs)
                zip_.write_entry(MANIFEST, patched)

    def _sign(self, apks: ArchiveSet) -> None:
        for apk in apks:
            self.signer.sign(apk)

    def debug_info(self) -> str:
        """失败后的诊断信息，未失败时为空字符串"""
        if self.state is None or not self.state.failed:
            return ""
        from rnpatch import __version__

        options = self.options
        step = self.state.failed_step
        if step is not None:
            failure = [f"Failed on: {step.text}", f"Category: {step.category.value}"]
        else:
            failure = ["Failed on: preparing the patch run"]
        return "\n".join([
            f"rnpatch {__version__}",
            f"Running Python {platform.python_version()} on {platform.platform()}",
            f"Target ABI: {options.arch}",
            "",
            f"Installing {self.variant.value} version {options.version} as {options.package_name}",
            "",
            *failure,
            "",
            self.state.stacktrace,
        ])
