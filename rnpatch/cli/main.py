#!/usr/bin/env python3
import click

# 导入命令模块
from .commands.install import install
from .commands.config import config_cli
from .commands.clean import clean


@click.group()
def cli():
    """React Native APK补丁工具"""
    pass

# 注册命令组
cli.add_command(install)
cli.add_command(config_cli, name="config")
cli.add_command(clean)

if __name__ == '__main__':
    cli()
