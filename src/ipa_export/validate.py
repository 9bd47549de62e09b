"""
导出产物的 App Store 合规校验。

只对 app-store profile 生效。致命问题在第一次出现时抛出 `ValidationError`；
警告会累积并随结果返回，不影响构建结果。
"""

from __future__ import annotations

import datetime as _dt
import logging
import os
import plistlib
import re
import tempfile
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Any
from xml.parsers.expat import ExpatError

from . import codesign
from .errors import ValidationError
from .pipeline_utils import human_size, require_tool, run_cmd
from .provisioning import is_distribution, load_mobileprovision
from .types import DistributionProfile

logger = logging.getLogger(__name__)

APP_STORE_MAX_BYTES = 4 * 1024 * 1024 * 1024

ICON_NAMES = (
    "AppIcon60x60@3x.png",
    "AppIcon60x60@2x.png",
    "Icon-App-60x60@3x.png",
    "Icon-App-60x60@2x.png",
)

_VERSION_RE = re.compile(r"^\d+\.\d+(\.\d+)?$")


@dataclass(frozen=True)
class ValidationResult:
    """校验通过后的产物快照。"""

    ipa_path: str
    size_bytes: int
    uncompressed_bytes: int
    app_name: str
    bundle_id: str
    version: str
    build: str
    min_os_version: str
    display_name: str
    authority: str
    warnings: list[str] = field(default_factory=list)


def _plist_str(d: dict[str, Any], key: str) -> str:
    v = d.get(key)
    return v if isinstance(v, str) else ""


def _top_level_apps(names: list[str]) -> list[str]:
    apps: set[str] = set()
    for name in names:
        parts = name.split("/")
        if len(parts) >= 3 and parts[0] == "Payload" and parts[1].endswith(".app"):
            apps.add(parts[1])
    return sorted(apps)


def _inspect_signature(ipa_path: str, app_name: str) -> tuple[bool, list[str], str]:
    """解出 `Payload/` 并校验主应用包签名，返回 `(已签名, Authority 列表, 错误)`。"""
    with tempfile.TemporaryDirectory(prefix="ipa_validation_") as td:
        try:
            # unzip 会保留 framework 内的符号链接，zipfile 不会。
            run_cmd([require_tool("unzip"), "-q", ipa_path, "Payload/*", "-d", td], timeout=600)
        except RuntimeError as e:
            return False, [], str(e).splitlines()[0]

        app_path = os.path.join(td, "Payload", app_name)
        try:
            codesign.verify(app_path)
            authorities = codesign.signing_authorities(app_path)
        except RuntimeError as e:
            lines = str(e).strip().splitlines()
            return False, [], lines[-1] if lines else "codesign verify failed"
        return True, authorities, ""


def _inspect_profile(data: bytes) -> tuple[bool | None, _dt.datetime | None, str]:
    """解码内嵌 profile，返回 `(是否分发类, 过期时间, 错误)`。"""
    fd, path = tempfile.mkstemp(prefix="embedded_", suffix=".mobileprovision")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        profile = load_mobileprovision(path)
    except (RuntimeError, ValueError, ExpatError) as e:
        return None, None, str(e).splitlines()[0] if str(e) else type(e).__name__
    finally:
        os.remove(path)
    return is_distribution(profile), profile.expiration, ""


def validate_artifact(
    ipa_path: str,
    profile: DistributionProfile,
    *,
    expected_bundle_id: str = "",
) -> ValidationResult | None:
    """按 profile 决定是否执行合规校验；非 app-store 直接返回 `None`。"""
    if profile is not DistributionProfile.APP_STORE:
        logger.info("Compliance validation not required for %s distribution", profile.value)
        return None
    return validate_app_store_ipa(ipa_path, expected_bundle_id=expected_bundle_id)


def validate_app_store_ipa(ipa_path: str, *, expected_bundle_id: str = "") -> ValidationResult:
    """执行 App Store 结构与签名校验。"""
    warnings: list[str] = []

    def warn(message: str) -> None:
        logger.warning("%s", message)
        warnings.append(message)

    def fatal(reason: str, detail: str = "") -> ValidationError:
        logger.error("IPA validation failed: %s%s", reason, f" ({detail})" if detail else "")
        return ValidationError(reason, detail, warnings)

    if not os.path.isfile(ipa_path):
        raise fatal("missing artifact", ipa_path)

    size = os.path.getsize(ipa_path)
    logger.info("Performing App Store compliance validation: %s (%s)",
                os.path.basename(ipa_path), human_size(size))

    try:
        zf = zipfile.ZipFile(ipa_path, "r")
    except (zipfile.BadZipFile, OSError) as e:
        raise fatal("corrupt", str(e)) from e

    with zf:
        try:
            bad = zf.testzip()
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as e:
            raise fatal("corrupt", str(e)) from e
        if bad is not None:
            raise fatal("corrupt", f"bad entry: {bad}")
        logger.info("IPA archive integrity is valid")

        infos = zf.infolist()
        uncompressed = sum(i.file_size for i in infos)
        if uncompressed > APP_STORE_MAX_BYTES:
            raise fatal("oversize", f"{human_size(uncompressed)} uncompressed, max 4G")

        names = [i.filename for i in infos]
        apps = _top_level_apps(names)
        if not apps:
            raise fatal("missing bundle", "no .app under Payload/")
        if len(apps) > 1:
            raise fatal("multiple bundles", ", ".join(apps))
        app_name = apps[0]
        app_prefix = f"Payload/{app_name}/"
        logger.info("App bundle found: %s", app_name)

        info_name = app_prefix + "Info.plist"
        if info_name not in names:
            raise fatal("missing manifest", info_name)
        try:
            info = plistlib.loads(zf.read(info_name))
        except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise fatal("missing manifest", f"unreadable Info.plist: {e}") from e
        if not isinstance(info, dict):
            raise fatal("missing manifest", "Info.plist is not a dict")

        bundle_id = _plist_str(info, "CFBundleIdentifier")
        if not bundle_id:
            raise fatal("missing bundle identifier", "CFBundleIdentifier")
        logger.info("Bundle ID: %s", bundle_id)
        if expected_bundle_id and bundle_id != expected_bundle_id:
            warn(f"Bundle ID mismatch: expected {expected_bundle_id}, found {bundle_id}")

        version = _plist_str(info, "CFBundleShortVersionString")
        build = _plist_str(info, "CFBundleVersion")
        if not version or not build:
            raise fatal("missing version", "CFBundleShortVersionString/CFBundleVersion")
        logger.info("App Version: %s (%s)", version, build)
        if not _VERSION_RE.match(version):
            warn(f"Version format may not be optimal: {version} (recommended: X.Y.Z)")
        if not build.isdigit():
            warn(f"Build number should be numeric: {build}")

        min_os = _plist_str(info, "MinimumOSVersion")
        if min_os:
            logger.info("Minimum iOS Version: %s", min_os)
        else:
            warn("MinimumOSVersion not specified in Info.plist")

        display_name = _plist_str(info, "CFBundleDisplayName") or _plist_str(info, "CFBundleName")
        if not display_name:
            raise fatal("missing name", "CFBundleDisplayName/CFBundleName")
        logger.info("App Name: %s", display_name)

        icon = next((n for n in ICON_NAMES if app_prefix + n in names), "")
        if icon:
            logger.info("App icon found: %s", icon)
        else:
            warn("No app icons found - this may cause App Store validation issues")
        if not any(
            n.startswith(app_prefix) and n.endswith(".png") and "1024" in n for n in names
        ):
            warn("1024x1024 app icon may be missing - required for App Store")

        profile_name = app_prefix + "embedded.mobileprovision"
        profile_data = zf.read(profile_name) if profile_name in names else None

    logger.info("Validating code signing...")
    signed, authorities, sig_error = _inspect_signature(ipa_path, app_name)
    if not signed:
        raise fatal("unsigned", sig_error)
    authority = authorities[0] if authorities else ""
    logger.info("App bundle is properly code signed")
    if authority:
        logger.info("Signing Identity: %s", authority)
    if not codesign.is_distribution_identity(authority):
        warn(f"May not be using proper distribution certificate: {authority or 'unknown'}")

    if profile_data is None:
        raise fatal("missing provisioning profile", profile_name)
    logger.info("Embedded provisioning profile found")
    distribution, expiration, profile_error = _inspect_profile(profile_data)
    if profile_error:
        warn(f"Could not decode embedded provisioning profile: {profile_error}")
    elif not distribution:
        warn("May be using development provisioning profile (get-task-allow is not false)")
    if expiration is not None:
        logger.info("Profile expires: %s", expiration.isoformat())
        if expiration.replace(tzinfo=None) < _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None):
            warn(f"Embedded provisioning profile expired: {expiration.isoformat()}")

    logger.info("App Store compliance validation completed (%d warnings)", len(warnings))
    return ValidationResult(
        ipa_path=ipa_path,
        size_bytes=size,
        uncompressed_bytes=uncompressed,
        app_name=app_name,
        bundle_id=bundle_id,
        version=version,
        build=build,
        min_os_version=min_os,
        display_name=display_name,
        authority=authority,
        warnings=warnings,
    )
