"""
缓存清理命令
"""
import click
from rich.console import Console
from rich.table import Table
import sys
import os
import shutil
from pathlib import Path

from rnpatch.core.config import config

console = Console()

@click.command()
@click.option('--force', is_flag=True, help='跳过确认直接删除')
@click.option('--keep-downloads', is_flag=True, help='只删除patched目录，保留已下载的文件')
def clean(force: bool, keep_downloads: bool):
    """删除缓存的apk和补丁后的文件"""
    try:
        cache_dir = Path(config.get_path("cache_dir"))
        paths_to_delete = []

        patched_dir = cache_dir / "patched"
        if patched_dir.exists():
            paths_to_delete.append(("Patched Directory", patched_dir))

        if not keep_downloads:
            for path in sorted(cache_dir.glob("*")) if cache_dir.exists() else []:
                if path != patched_dir:
                    paths_to_delete.append(("Download", path))

        if not paths_to_delete:
            console.print("[yellow]No cached files found to delete.")
            return

        # 显示将要删除的路径
        table = Table(show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Path", style="green")

        for path_type, path in paths_to_delete:
            table.add_row(path_type, str(path))

        console.print("\nFiles and directories to be deleted:")
        console.print(table)

        # 确认删除
        if not force and not click.confirm("\nAre you sure you want to delete these files?"):
            console.print("[yellow]Operation cancelled.")
            return

        deleted_count = 0
        for path_type, path in paths_to_delete:
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                deleted_count += 1
            except OSError as e:
                console.print(f"[red]Failed to delete {path}: {e}")

        console.print(f"[green]Deleted {deleted_count} of {len(paths_to_delete)} items")

    except Exception as e:
        console.print(f"[red]Failed to clean cache: {str(e)}")
        sys.exit(1)
