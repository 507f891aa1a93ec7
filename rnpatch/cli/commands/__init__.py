"""
CLI命令实现模块
"""
from .install import install
from .config import config_cli
from .clean import clean

__all__ = ['install', 'config_cli', 'clean']
