"""
补丁安装命令
"""
import click
from rich.console import Console
from rich.table import Table
import sys
from typing import List

from rnpatch.core.config import config
from rnpatch.core.assets import DirectoryAssets
from rnpatch.core.downloader import Downloader
from rnpatch.core.installer import AdbInstaller
from rnpatch.core.pipeline import PatchPipeline, RunFinished, StepEvent, StepStatus, Variant
from rnpatch.core.releases import GithubReleases
from rnpatch.core.signer import Signer

console = Console()

STATUS_STYLES = {
    StepStatus.QUEUED: "[dim]queued",
    StepStatus.ONGOING: "[cyan]ongoing",
    StepStatus.SUCCESSFUL: "[green]✓ done",
    StepStatus.UNSUCCESSFUL: "[red]✗ failed",
}

def build_pipeline() -> PatchPipeline:
    """根据配置创建补丁流程"""
    config.ensure_directories()
    options = config.patch_options()
    data_dir = options.data_dir
    return PatchPipeline(
        options,
        downloader=Downloader.from_config(config),
        releases=GithubReleases(
            timeout=config.get_download("timeout"),
            proxies=config.get_download("proxies")
        ),
        installer=AdbInstaller(config.get_install("adb"), config.get_install("serial")),
        signer=Signer.load_or_create(data_dir / "signing.key", data_dir / "signing.pem"),
        assets=DirectoryAssets(options.assets_dir),
        console=console,
    )

def print_event(event: StepEvent):
    """打印单个步骤状态"""
    if event.status == StepStatus.ONGOING:
        console.print(f"[cyan]→ {event.text}...")
    elif event.status == StepStatus.SUCCESSFUL:
        console.print(f"[green]✓ {event.text}[/green] [dim]({event.duration:.2f}s)")
    elif event.status == StepStatus.UNSUCCESSFUL:
        console.print(f"[red]✗ {event.text}")

def print_summary(events: List[StepEvent]):
    """打印所有步骤的汇总表格"""
    table = Table(title="Patch Steps")
    table.add_column("Step", style="cyan")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Duration", justify="right")

    for event in events:
        duration = f"{event.duration:.2f}s" if event.duration is not None else ""
        table.add_row(event.text, event.category.value, STATUS_STYLES[event.status], duration)

    console.print(table)

@click.command()
@click.option('--variant', type=click.Choice([v.value for v in Variant]),
              default=Variant.REACT_NATIVE.value, help='要安装的应用类型')
def install(variant: str):
    """下载、补丁、签名并安装apk"""
    try:
        pipeline = build_pipeline()
    except Exception as e:
        console.print(f"[red]Failed to prepare patching: {str(e)}")
        sys.exit(1)

    try:
        future = pipeline.start(Variant(variant))
        if future is None:
            console.print("[yellow]A patch run is already in progress.")
            return

        # 按顺序读取事件直到流程结束
        while True:
            event = pipeline.events.get()
            if isinstance(event, RunFinished):
                break
            print_event(event)

        print_summary(pipeline.state.snapshot())
        future.result()
    finally:
        pipeline.close()

    if not event.success:
        console.print("\n[red]Installation failed. Debug info:[/red]")
        console.print(pipeline.debug_info(), markup=False, highlight=False)
        sys.exit(1)

    console.print(f"[green]Successfully installed {pipeline.options.app_name} ({pipeline.options.package_name})")
