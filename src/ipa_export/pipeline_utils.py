from __future__ import annotations

"""
流程通用工具：外部命令执行与产物大小格式化。
"""

import logging
import os
import shutil
import subprocess

from .errors import ToolingMissing

logger = logging.getLogger(__name__)


def require_tool(name: str) -> str:
    """定位外部命令，找不到时抛出 `ToolingMissing`。"""
    if name.startswith("/"):
        return name
    found = shutil.which(name)
    if not found:
        raise ToolingMissing(f"required tool not found: {name}")
    return found


def run_cmd(
    cmd: list[str],
    *,
    cwd: str | None = None,
    timeout: float | None = None,
    redact: tuple[str, ...] = (),
) -> subprocess.CompletedProcess[bytes]:
    """执行外部命令，失败或超时时抛出带 stderr 的 `RuntimeError`。"""
    shown = " ".join("***" if part in redact else part for part in cmd)
    if cwd:
        logger.debug("+ (cd %s) %s", cwd, shown)
    else:
        logger.debug("+ %s", shown)
    try:
        p = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ToolingMissing(f"required tool not found: {cmd[0]}") from e
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"Command timed out after {timeout}s: {shown}") from e
    if p.returncode != 0:
        raise RuntimeError(f"Command failed: {shown}\n{p.stderr.decode(errors='replace')}")
    return p


def human_size(num_bytes: int) -> str:
    """以 `du -h` 的风格格式化字节数。"""
    size = float(num_bytes)
    for unit in ("B", "K", "M", "G"):
        if size < 1024 or unit == "G":
            if unit == "B":
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}G"


def path_size(path: str) -> int:
    """文件返回其大小；目录返回其下所有文件大小之和。"""
    if os.path.isfile(path):
        return os.path.getsize(path)
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            p = os.path.join(root, name)
            if not os.path.islink(p):
                total += os.path.getsize(p)
    return total
