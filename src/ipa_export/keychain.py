"""
签名状态（钥匙串 + provisioning profile 目录）的显式资源句柄。

钥匙串与 profile 目录是进程级共享状态，手动证书策略会修改它们。
`signing_session` 保证会话内安装的 profile 在任何退出路径上都被移除；
`transient_dir` 提供同样保证的临时凭据目录。
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass, field

from .errors import ToolingMissing
from .pipeline_utils import require_tool, run_cmd
from .provisioning import load_mobileprovision

logger = logging.getLogger(__name__)


@dataclass
class SigningKeychain:
    """签名钥匙串与 profile 安装目录。"""

    keychain_path: str
    profiles_dir: str
    installed_profiles: list[str] = field(default_factory=list)
    # 被本会话覆盖的已有 profile：路径 -> 原始内容
    replaced_profiles: dict[str, bytes] = field(default_factory=dict)

    def import_certificate(self, p12_path: str, password: str) -> None:
        """把 p12 证书导入签名钥匙串，并允许 codesign 访问。"""
        logger.info("Installing certificate in keychain: %s", self.keychain_path)
        run_cmd(
            [
                require_tool("security"),
                "import",
                p12_path,
                "-k",
                self.keychain_path,
                "-P",
                password,
                "-T",
                "/usr/bin/codesign",
            ],
            timeout=120,
            redact=(password,),
        )

    def install_profile(self, profile_path: str) -> str:
        """安装 profile，能解码时以 `<UUID>.mobileprovision` 命名。"""
        name = os.path.basename(profile_path)
        try:
            profile = load_mobileprovision(profile_path)
        except ToolingMissing:
            profile = None
        except (RuntimeError, ValueError) as e:
            logger.warning("Could not decode provisioning profile: %s", e)
            profile = None
        if profile is not None and profile.uuid:
            name = f"{profile.uuid}.mobileprovision"

        os.makedirs(self.profiles_dir, exist_ok=True)
        dest = os.path.join(self.profiles_dir, name)
        if dest not in self.installed_profiles:
            if os.path.isfile(dest):
                with open(dest, "rb") as f:
                    self.replaced_profiles[dest] = f.read()
                logger.info("Replacing existing provisioning profile for this session: %s", dest)
            self.installed_profiles.append(dest)
        shutil.copyfile(profile_path, dest)
        logger.info("Provisioning profile installed: %s", dest)
        return dest

    def release(self) -> None:
        """移除本会话安装的 profile，被覆盖的已有 profile 恢复原内容。"""
        while self.installed_profiles:
            path = self.installed_profiles.pop()
            original = self.replaced_profiles.pop(path, None)
            if original is not None:
                with open(path, "wb") as f:
                    f.write(original)
                logger.debug("Restored provisioning profile: %s", path)
                continue
            try:
                os.remove(path)
                logger.debug("Removed installed profile: %s", path)
            except FileNotFoundError:
                pass


@contextlib.contextmanager
def signing_session(keychain: SigningKeychain) -> Iterator[SigningKeychain]:
    try:
        yield keychain
    finally:
        keychain.release()


@contextlib.contextmanager
def transient_dir(prefix: str) -> Iterator[str]:
    """权限 0700 的临时目录，退出时总是删除。"""
    td = tempfile.mkdtemp(prefix=prefix)
    os.chmod(td, 0o700)
    try:
        yield td
    finally:
        shutil.rmtree(td, ignore_errors=True)
