import zipfile

import pytest

from rnpatch.core.archive import PAGE_ALIGNMENT
from rnpatch.core.errors import MissingEmbeddedBinary, UnmappableLibrary
from rnpatch.core.libraries import HERMES_BINARIES, resolve_binary_name, swap_libraries

from builders import data_offset, read_entry, write_zip

ARCH = "arm64-v8a"


@pytest.fixture
def bundles(tmp_path):
    return [
        write_zip(tmp_path / "hermes-release-v1.aar", {
            f"jni/{ARCH}/libhermes.so": b"new hermes" * 100,
            "jni/x86_64/libhermes.so": b"wrong arch",
        }),
        write_zip(tmp_path / "hermes-cppruntime-release-v1.aar", {
            f"jni/{ARCH}/libc++_shared.so": b"new runtime" * 100,
        }),
    ]


@pytest.fixture
def libs_apk(tmp_path):
    return write_zip(tmp_path / "config.arm64_v8a-1.apk", {
        "AndroidManifest.xml": b"manifest",
        f"lib/{ARCH}/libhermes.so": (b"old hermes", zipfile.ZIP_STORED),
        f"lib/{ARCH}/libc++_shared.so": (b"old runtime", zipfile.ZIP_STORED),
        f"lib/{ARCH}/libother.so": (b"other", zipfile.ZIP_STORED),
    })


def test_resolve_binary_name_prefers_longest_prefix():
    names = {"hermes": "libhermes.so", "hermes-cppruntime": "libc++_shared.so"}
    assert resolve_binary_name("hermes-cppruntime-v2.aar", names) == "libc++_shared.so"
    assert resolve_binary_name("hermes-v2.aar", names) == "libhermes.so"

    with pytest.raises(UnmappableLibrary):
        resolve_binary_name("react-native.aar", names)


def test_swap_libraries(bundles, libs_apk):
    swap_libraries(bundles, libs_apk, ARCH, HERMES_BINARIES)

    assert read_entry(libs_apk, f"lib/{ARCH}/libhermes.so") == b"new hermes" * 100
    assert read_entry(libs_apk, f"lib/{ARCH}/libc++_shared.so") == b"new runtime" * 100
    assert read_entry(libs_apk, f"lib/{ARCH}/libother.so") == b"other"

    with zipfile.ZipFile(libs_apk) as zf:
        for name in ("libhermes.so", "libc++_shared.so"):
            assert zf.getinfo(f"lib/{ARCH}/{name}").compress_type == zipfile.ZIP_STORED
        assert len(zf.namelist()) == 4
    for name in ("libhermes.so", "libc++_shared.so"):
        assert data_offset(libs_apk, f"lib/{ARCH}/{name}") % PAGE_ALIGNMENT == 0


def test_swap_unmappable_bundle(tmp_path, libs_apk):
    bundle = write_zip(tmp_path / "unknown.aar", {f"jni/{ARCH}/libunknown.so": b"x"})
    before = libs_apk.read_bytes()

    with pytest.raises(UnmappableLibrary):
        swap_libraries([bundle], libs_apk, ARCH)
    assert libs_apk.read_bytes() == before


def test_swap_missing_embedded_binary(tmp_path, libs_apk):
    bundle = write_zip(tmp_path / "hermes-release-v1.aar", {"jni/x86_64/libhermes.so": b"x"})

    with pytest.raises(MissingEmbeddedBinary):
        swap_libraries([bundle], libs_apk, ARCH)
