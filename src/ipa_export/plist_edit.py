"""
plist 文档读写与按 key path 修改。

key path 采用 PlistBuddy 风格：`A:B:C` 表示字典键，纯数字段表示数组下标，
允许前导 `:`。设置值时按需创建中间容器；删除不存在的路径返回 False。
"""

from __future__ import annotations

import plistlib
from typing import Any

PathElem = str | int


def parse_key_path(key_path: str) -> list[PathElem]:
    s = key_path.strip().lstrip(":")
    if not s:
        raise ValueError("empty key path")
    out: list[PathElem] = []
    for part in s.split(":"):
        if not part:
            raise ValueError(f"invalid key path: {key_path}")
        out.append(int(part) if part.isdigit() else part)
    return out


def load_document(path: str) -> tuple[Any, plistlib.PlistFormat]:
    """读取 plist 并记住原始格式（XML / binary）。"""
    with open(path, "rb") as f:
        data = f.read()
    fmt = plistlib.FMT_BINARY if data.startswith(b"bplist00") else plistlib.FMT_XML
    return plistlib.loads(data), fmt


def save_document(path: str, obj: Any, fmt: plistlib.PlistFormat) -> None:
    data = plistlib.dumps(obj, fmt=fmt, sort_keys=False)
    with open(path, "wb") as f:
        f.write(data)


def _child(container: Any, elem: PathElem, *, create_as: Any = None) -> Any:
    """取下一层节点；`create_as` 非空时缺失节点会被创建。"""
    if isinstance(elem, int):
        if not isinstance(container, list):
            raise TypeError(f"index {elem} used on non-array")
        if elem >= len(container):
            if create_as is None:
                return None
            container.extend([None] * (elem + 1 - len(container)))
        if container[elem] is None and create_as is not None:
            container[elem] = create_as()
        return container[elem]

    if not isinstance(container, dict):
        raise TypeError(f"key {elem!r} used on non-dict")
    if container.get(elem) is None and create_as is not None:
        container[elem] = create_as()
    return container.get(elem)


def _parent_of(root: Any, path: list[PathElem], *, create: bool) -> Any:
    cur = root
    for i, elem in enumerate(path[:-1]):
        make = (list if isinstance(path[i + 1], int) else dict) if create else None
        cur = _child(cur, elem, create_as=make)
        if cur is None:
            return None
    return cur


def set_value(root: Any, key_path: str, value: Any) -> None:
    path = parse_key_path(key_path)
    parent = _parent_of(root, path, create=True)
    leaf = path[-1]
    if isinstance(leaf, int):
        if not isinstance(parent, list):
            raise TypeError(f"index {leaf} used on non-array")
        if leaf >= len(parent):
            parent.extend([None] * (leaf + 1 - len(parent)))
    elif not isinstance(parent, dict):
        raise TypeError(f"key {leaf!r} used on non-dict")
    parent[leaf] = value


def delete_value(root: Any, key_path: str) -> bool:
    path = parse_key_path(key_path)
    try:
        parent = _parent_of(root, path, create=False)
    except TypeError:
        return False
    leaf = path[-1]
    if isinstance(leaf, int) and isinstance(parent, list) and leaf < len(parent):
        parent.pop(leaf)
        return True
    if isinstance(leaf, str) and isinstance(parent, dict) and leaf in parent:
        del parent[leaf]
        return True
    return False


def _array_at(root: Any, key_path: str) -> list:
    path = parse_key_path(key_path)
    if isinstance(path[-1], int):
        raise TypeError("array path must point to a key, not an index")
    parent = _parent_of(root, path, create=True)
    arr = _child(parent, path[-1], create_as=list)
    if not isinstance(arr, list):
        raise TypeError(f"target is not an array: {key_path}")
    return arr


def array_add_string(root: Any, key_path: str, value: str) -> None:
    """追加字符串元素（已存在时不重复添加）。"""
    arr = _array_at(root, key_path)
    if value not in arr:
        arr.append(value)


def array_remove_string(root: Any, key_path: str, value: str) -> None:
    arr = _array_at(root, key_path)
    arr[:] = [x for x in arr if x != value]
