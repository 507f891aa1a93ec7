"""
配置管理命令组
"""
import click
from rich.console import Console
from rich.table import Table
import sys
import json

from rnpatch.core.config import config as config_instance

console = Console()

SECTIONS = ["paths", "download", "patch", "install"]

def display_config():
    """显示当前配置的辅助函数"""
    table = Table(title="Current Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Key", style="green")
    table.add_column("Value", style="yellow")

    data = config_instance.config.to_dict()
    for section in SECTIONS:
        for key, value in data[section].items():
            if section == "paths":
                value = config_instance.get_path(key)
            if isinstance(value, (dict, list)):
                value_str = json.dumps(value, ensure_ascii=False)
            else:
                value_str = str(value)
            table.add_row(section, key, value_str)

    console.print(f"Config file: {config_instance.config_file}")
    console.print(table)

def parse_value(value: str):
    """将命令行字符串转换为合适的类型"""
    try:
        # 如果是JSON字符串，解析为Python对象
        return json.loads(value)
    except json.JSONDecodeError:
        pass
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    if value.lower() == "none":
        return None
    return value

@click.group()
def config_cli():
    """配置管理命令组"""
    pass

@config_cli.command()
def show():
    """显示当前配置"""
    try:
        display_config()
    except Exception as e:
        console.print(f"[red]Failed to show configuration: {str(e)}")
        sys.exit(1)

@config_cli.command()
@click.argument("section", type=click.Choice(SECTIONS))
@click.argument("key")
@click.argument("value")
def set(section: str, key: str, value: str):
    """设置配置项

    参数说明:
    \b
    SECTION: 配置段落，可选值: paths, download, patch, install
    KEY: 配置项名称
    VALUE: 要设置的值

    示例:
    \b
    rnpatch config set paths cache_dir ~/.cache/rnpatch/cache
    rnpatch config set download timeout 60
    rnpatch config set patch package_name com.example.mod
    rnpatch config set patch debuggable true
    rnpatch config set patch version '"126021"'
    rnpatch config set install serial emulator-5554
    """
    try:
        parsed_value = parse_value(value)
        config_instance.set_value(section, key, parsed_value)
        console.print(f"[green]Successfully set {section}.{key} = {parsed_value}")
    except Exception as e:
        console.print(f"[red]Failed to set configuration: {str(e)}")
        sys.exit(1)

@config_cli.command()
def reset():
    """重置为默认配置"""
    try:
        config_instance.reset()
        console.print("[green]Configuration has been reset to defaults")

        console.print("\nNew configuration:")
        display_config()

    except Exception as e:
        console.print(f"[red]Failed to reset configuration: {str(e)}")
        sys.exit(1)
