"""
AndroidManifest.xml 补丁
"""
from typing import Optional

from .axml import AxmlDocument, Attribute, StartElement, TYPE_INT_BOOLEAN
from .errors import MalformedManifest

ANDROID_NS = "http://schemas.android.com/apk/res/android"

LABEL_ID = 0x01010001
NAME_ID = 0x01010003
PERMISSION_ID = 0x01010006
READ_PERMISSION_ID = 0x01010007
WRITE_PERMISSION_ID = 0x01010008
DEBUGGABLE_ID = 0x0101000F
AUTHORITIES_ID = 0x01010018
TARGET_ACTIVITY_ID = 0x01010202

ATTRIBUTE_NAMES = {
    LABEL_ID: "label",
    NAME_ID: "name",
    PERMISSION_ID: "permission",
    READ_PERMISSION_ID: "readPermission",
    WRITE_PERMISSION_ID: "writePermission",
    DEBUGGABLE_ID: "debuggable",
    AUTHORITIES_ID: "authorities",
    TARGET_ACTIVITY_ID: "targetActivity",
}

COMPONENT_TAGS = {"application", "activity", "activity-alias", "service", "receiver", "provider"}
PERMISSION_TAGS = {"permission", "permission-group", "permission-tree", "uses-permission"}
PERMISSION_ATTRIBUTES = {"permission", "readPermission", "writePermission"}


def _android_name(doc: AxmlDocument, attr: Attribute) -> Optional[str]:
    """android命名空间属性的本地名，其他属性返回None"""
    resource_id = doc.resource_id(attr)
    if resource_id in ATTRIBUTE_NAMES:
        return ATTRIBUTE_NAMES[resource_id]
    if doc.string(attr.namespace) == ANDROID_NS:
        return doc.string(attr.name)
    return None


def _replace_prefix(value: str, old: str, new: str) -> str:
    if value == old:
        return new
    if value.startswith(old + "."):
        return new + value[len(old):]
    return value


def _absolute_class_name(value: str, package: str) -> str:
    # 与PackageParser.buildClassName规则一致
    if value.startswith("."):
        return package + value
    if "." not in value:
        return f"{package}.{value}"
    return value


def _manifest_element(doc: AxmlDocument) -> StartElement:
    manifest = next(doc.elements("manifest"), None)
    if manifest is None:
        raise MalformedManifest("No <manifest> element")
    return manifest


def _rename(doc: AxmlDocument, package_name: str) -> bool:
    """
    将包名替换为 package_name

    Returns:
        bool: 文档是否被修改
    """
    manifest = _manifest_element(doc)
    package_attr = doc.find_attribute(manifest, "package")
    old = doc.attribute_value(package_attr) if package_attr else None
    if not old:
        raise MalformedManifest("Manifest has no package attribute")
    if old == package_name:
        return False

    for element in doc.elements():
        tag = doc.string(element.name)
        for attr in element.attributes:
            value = doc.attribute_value(attr)
            if value is None:
                continue

            name = _android_name(doc, attr)
            if attr is package_attr:
                new_value = package_name
            elif name == "name" and tag in COMPONENT_TAGS:
                # 相对类名需要按旧包名展开，否则会被解析到新包名下
                new_value = _absolute_class_name(value, old)
            elif name == "targetActivity" and tag == "activity-alias":
                new_value = _absolute_class_name(value, old)
            elif name == "authorities" and tag == "provider":
                new_value = ";".join(_replace_prefix(a, old, package_name) for a in value.split(";"))
            elif name == "name" and tag in PERMISSION_TAGS:
                new_value = _replace_prefix(value, old, package_name)
            elif name in PERMISSION_ATTRIBUTES:
                new_value = _replace_prefix(value, old, package_name)
            elif value == old:
                new_value = package_name
            else:
                continue

            if new_value != value:
                doc.set_string(attr, new_value)
    return True


def rename_package(manifest_bytes: bytes, package_name: str) -> bytes:
    """
    修改split apk清单中的包名

    Args:
        manifest_bytes: 二进制AndroidManifest.xml
        package_name: 新包名

    Returns:
        bytes: 修改后的清单，无需修改时原样返回
    """
    doc = AxmlDocument.parse(manifest_bytes)
    if not _rename(doc, package_name):
        return manifest_bytes
    return doc.encode()


def patch_manifest(manifest_bytes: bytes, package_name: str, app_name: str, debuggable: bool) -> bytes:
    """
    修改base apk的清单：包名、应用名与debuggable标记

    Args:
        manifest_bytes: 二进制AndroidManifest.xml
        package_name: 新包名
        app_name: 应用显示名
        debuggable: 是否可调试

    Returns:
        bytes: 修改后的清单，无需修改时原样返回

    Raises:
        MalformedManifest: 清单无法解析或缺少必要元素
    """
    doc = AxmlDocument.parse(manifest_bytes)
    changed = _rename(doc, package_name)

    application = next(doc.elements("application"), None)
    if application is None:
        raise MalformedManifest("No <application> element")

    label = doc.find_attribute(application, "label", ANDROID_NS, LABEL_ID)
    if label is None:
        label = doc.add_attribute(application, ANDROID_NS, "label", LABEL_ID)
    if doc.attribute_value(label) != app_name:
        doc.set_string(label, app_name)
        changed = True

    flag = doc.find_attribute(application, "debuggable", ANDROID_NS, DEBUGGABLE_ID)
    if flag is None:
        flag = doc.add_attribute(application, ANDROID_NS, "debuggable", DEBUGGABLE_ID)
    value = 0xFFFFFFFF if debuggable else 0
    if flag.data_type != TYPE_INT_BOOLEAN or flag.data != value:
        flag.raw_value = 0xFFFFFFFF
        flag.data_type = TYPE_INT_BOOLEAN
        flag.data = value
        changed = True

    if not changed:
        return manifest_bytes
    return doc.encode()
