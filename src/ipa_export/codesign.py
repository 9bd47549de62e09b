"""
对 macOS `/usr/bin/codesign` 的轻量封装。

只做只读校验：签名是否有效，以及签名证书链（Authority）。
"""

from __future__ import annotations

import subprocess

from .pipeline_utils import require_tool

_DISTRIBUTION_MARKERS = ("Apple Distribution", "iPhone Distribution")
_TIMEOUT = 300


def _run(cmd: list[str]) -> subprocess.CompletedProcess[bytes]:
    try:
        return subprocess.run(cmd, capture_output=True, check=False, timeout=_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"Command timed out after {_TIMEOUT}s: {' '.join(cmd)}") from e


def verify(app_path: str) -> None:
    """对应用包执行严格签名校验，失败则抛出异常。"""
    p = _run([require_tool("codesign"), "--verify", "--deep", "--strict", app_path])
    if p.returncode != 0:
        raise RuntimeError(f"codesign verify failed:\n{p.stderr.decode(errors='replace')}")


def signing_authorities(app_path: str) -> list[str]:
    """解析 `codesign -dvv` 输出中的 `Authority=` 行（叶子证书在前）。"""
    p = _run([require_tool("codesign"), "-dvv", app_path])
    # codesign 把描述信息写到 stderr。
    text = (p.stderr or b"").decode(errors="replace")
    if p.stdout:
        text += "\n" + p.stdout.decode(errors="replace")
    out: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("Authority="):
            out.append(line.split("=", 1)[1].strip())
    return out


def is_distribution_identity(authority: str) -> bool:
    return any(marker in authority for marker in _DISTRIBUTION_MARKERS)
