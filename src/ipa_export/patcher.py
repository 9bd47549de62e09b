"""
工程 plist 补丁器。

把一组命名补丁（`Patch`）应用到 plist 文档（如 `ios/Runner/Info.plist`）的
指定 key path，并保持文件原有的 XML / binary 格式。与导出级联无关。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any
from xml.parsers.expat import ExpatError

from .errors import ConfigurationError
from .plist_edit import (
    array_add_string,
    array_remove_string,
    delete_value,
    load_document,
    save_document,
    set_value,
)
from .types import Patch

logger = logging.getLogger(__name__)

PATCH_KINDS = ("set-string", "set-int", "set-bool", "delete", "array-add", "array-remove")


def parse_bool(s: str) -> bool:
    v = s.strip().lower()
    if v in ("true", "1", "yes", "y"):
        return True
    if v in ("false", "0", "no", "n"):
        return False
    raise ValueError(f"invalid bool: {s}")


def _apply_one(doc: Any, patch: Patch) -> None:
    value = patch.value or ""
    if patch.kind == "set-string":
        set_value(doc, patch.key_path, value)
    elif patch.kind == "set-int":
        set_value(doc, patch.key_path, int(value or "0"))
    elif patch.kind == "set-bool":
        set_value(doc, patch.key_path, parse_bool(value or "false"))
    elif patch.kind == "delete":
        if not delete_value(doc, patch.key_path):
            logger.info("Nothing to delete at %s", patch.key_path)
    elif patch.kind == "array-add":
        array_add_string(doc, patch.key_path, value)
    elif patch.kind == "array-remove":
        array_remove_string(doc, patch.key_path, value)
    else:
        raise ConfigurationError(f"unknown patch: {patch.kind}")


def apply_patches(doc: Any, patches: Sequence[Patch]) -> None:
    """按顺序应用补丁，路径或取值非法时抛出 `ConfigurationError`。"""
    for patch in patches:
        try:
            _apply_one(doc, patch)
        except (TypeError, ValueError) as e:
            suffix = f"={patch.value}" if patch.value is not None else ""
            raise ConfigurationError(
                f"invalid patch {patch.kind} on {patch.key_path}{suffix}: {e}"
            ) from e
        logger.info("Applied %s %s", patch.kind, patch.key_path)


def patch_file(path: str, patches: Sequence[Patch]) -> None:
    """读取、修改并以原格式写回 plist 文件。"""
    try:
        doc, fmt = load_document(path)
    except (OSError, ValueError, ExpatError) as e:
        raise ConfigurationError(f"cannot read plist {path}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigurationError(f"plist root is not a dict: {path}")
    apply_patches(doc, patches)
    save_document(path, doc, fmt)
    logger.info("Patched %s (%d changes)", path, len(patches))
