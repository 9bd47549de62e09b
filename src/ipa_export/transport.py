"""
凭据材料（API key、p12 证书、provisioning profile）的获取。

支持 `http(s)://` 地址（带有限次数的指数退避重试）、`file://` 地址与本地路径。
写入的文件权限固定为 0600。
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from urllib.parse import unquote, urlparse

import requests

from .errors import TransportError

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


def _open_private(dest: str):
    fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.chmod(dest, 0o600)
    return os.fdopen(fd, "wb")


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _download_once(url: str, dest: str, timeout: float) -> None:
    with requests.get(url, stream=True, timeout=timeout, allow_redirects=True) as resp:
        resp.raise_for_status()
        with _open_private(dest) as f:
            for chunk in resp.iter_content(chunk_size=_CHUNK):
                if chunk:
                    f.write(chunk)


def backoff_delays(retries: int, backoff: float) -> list[float]:
    """第 n 次重试前的等待秒数：`backoff * 2**n`。"""
    return [backoff * (2 ** n) for n in range(max(retries, 0))]


def fetch(
    location: str,
    dest: str,
    *,
    timeout: float = 60.0,
    retries: int = 3,
    backoff: float = 1.0,
) -> str:
    """把 `location` 指向的内容保存到 `dest`，失败时抛出 `TransportError`。"""
    if not location:
        raise TransportError("empty download location")

    parsed = urlparse(location)
    if parsed.scheme in ("http", "https"):
        delays = backoff_delays(retries, backoff)
        attempts = len(delays) + 1
        last: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                _download_once(location, dest, timeout)
                logger.info("Downloaded %s", os.path.basename(dest))
                return dest
            except requests.RequestException as e:
                last = e
                _remove_quietly(dest)
                if attempt < attempts:
                    delay = delays[attempt - 1]
                    logger.warning(
                        "Download attempt %d/%d failed (%s), retrying in %.1fs",
                        attempt, attempts, e, delay,
                    )
                    time.sleep(delay)
        raise TransportError(f"failed to download {location}: {last}") from last

    if parsed.scheme == "file":
        src = unquote(parsed.path)
    elif not parsed.scheme or len(parsed.scheme) == 1:
        # 单字母 scheme 视为 Windows 盘符。
        src = os.path.expanduser(location)
    else:
        raise TransportError(f"unsupported download location: {location}")

    if not os.path.isfile(src):
        raise TransportError(f"credential file not found: {src}")
    try:
        with open(src, "rb") as fin, _open_private(dest) as fout:
            shutil.copyfileobj(fin, fout, _CHUNK)
    except OSError as e:
        _remove_quietly(dest)
        raise TransportError(f"failed to copy {src}: {e}") from e
    logger.info("Copied %s", os.path.basename(dest))
    return dest
