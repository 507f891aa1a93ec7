"""
替换split apk中的native库
"""
from pathlib import Path
from typing import Dict, Iterable, Union

from .archive import ArchiveReader, ArchiveWriter, PAGE_ALIGNMENT, STORED
from .errors import MissingEmbeddedBinary, UnmappableLibrary

# aar文件名前缀 -> 内嵌的.so文件名
HERMES_BINARIES = {
    "hermes-release": "libhermes.so",
    "hermes-cppruntime-release": "libc++_shared.so",
}


def resolve_binary_name(file_name: str, binary_names: Dict[str, str]) -> str:
    """
    按最长前缀匹配库文件对应的.so名

    Raises:
        UnmappableLibrary: 没有匹配的前缀
    """
    matches = [prefix for prefix in binary_names if file_name.startswith(prefix)]
    if not matches:
        raise UnmappableLibrary(f"Unable to map {file_name} to embedded .so")
    return binary_names[max(matches, key=len)]


def swap_libraries(bundles: Iterable[Union[str, Path]], target: Union[str, Path], arch: str,
                   binary_names: Dict[str, str] = HERMES_BINARIES) -> None:
    """
    用aar中的 jni/<arch>/<so> 替换目标apk中的 lib/<arch>/<so>

    Args:
        bundles: aar文件路径
        target: native库split apk路径
        arch: ABI名，如 arm64-v8a
        binary_names: 文件名前缀到.so名的映射
    """
    with ArchiveWriter(target) as libs_apk:
        for bundle in bundles:
            bundle = Path(bundle)
            binary_name = resolve_binary_name(bundle.name, binary_names)

            with ArchiveReader(bundle) as lib_zip:
                lib_bytes = lib_zip.read_entry(f"jni/{arch}/{binary_name}")
            if lib_bytes is None:
                raise MissingEmbeddedBinary(f"Failed to read jni/{arch}/{binary_name} from {bundle.name}")

            path = f"lib/{arch}/{binary_name}"
            libs_apk.delete_entry(path, preserve_alignment=True)
            libs_apk.write_entry(path, lib_bytes, STORED, PAGE_ALIGNMENT)
