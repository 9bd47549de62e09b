"""
构建配置的唯一入口。

只有 `load_config` 读取环境变量（或任意映射）；其余组件只接收不可变的
`BuildConfig`。
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import ConfigurationError
from .types import (
    ApiKeyCredentials,
    AutomaticSigningCredentials,
    DistributionProfile,
    ManualCertificateCredentials,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "output/ios"
DEFAULT_EXPORT_OPTIONS_PATH = "ios/ExportOptions.plist"
DEFAULT_EXPORT_TIMEOUT = 1800.0
DEFAULT_DOWNLOAD_TIMEOUT = 60.0
DEFAULT_DOWNLOAD_RETRIES = 3

ARCHIVE_NAME = "Runner.xcarchive"
IPA_NAME = "Runner.ipa"
# 未通过 app-store 校验的 IPA 改存为此名
REJECTED_IPA_NAME = "Runner.rejected.ipa"

_BUNDLE_ID_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z0-9.-]+$")


@dataclass(frozen=True)
class BuildConfig:
    """一次构建调用的全部输入。"""

    profile: DistributionProfile
    bundle_id: str
    team_id: str
    output_dir: str = DEFAULT_OUTPUT_DIR
    export_options_path: str = DEFAULT_EXPORT_OPTIONS_PATH
    api_key: ApiKeyCredentials = ApiKeyCredentials()
    manual: ManualCertificateCredentials = ManualCertificateCredentials()
    keychain_path: str = ""
    profiles_dir: str = ""
    app_name: str = ""
    version_name: str = ""
    version_code: str = ""
    build_id: str = ""
    workflow_id: str = ""
    export_timeout: float = DEFAULT_EXPORT_TIMEOUT
    download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT
    download_retries: int = DEFAULT_DOWNLOAD_RETRIES

    @property
    def automatic(self) -> AutomaticSigningCredentials:
        return AutomaticSigningCredentials(team_id=self.team_id, bundle_id=self.bundle_id)

    @property
    def archive_path(self) -> str:
        return os.path.join(self.output_dir, ARCHIVE_NAME)

    @property
    def ipa_path(self) -> str:
        return os.path.join(self.output_dir, IPA_NAME)

    @property
    def rejected_ipa_path(self) -> str:
        return os.path.join(self.output_dir, REJECTED_IPA_NAME)


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    value = env.get(key)
    if value is None:
        return default
    return value.strip()


def _number(env: Mapping[str, str], key: str, default: float, *, integer: bool = False) -> float:
    raw = _get(env, key)
    if not raw:
        return default
    try:
        value = int(raw) if integer else float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got: {raw}") from e
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got: {raw}")
    return value


def default_keychain_path(home: str) -> str:
    """CI 构建机上的签名钥匙串，优先 `-db` 新格式。"""
    base = os.path.join(home, "Library", "Keychains")
    modern = os.path.join(base, "ios-build.keychain-db")
    if os.path.isfile(modern):
        return modern
    return os.path.join(base, "ios-build.keychain")


def load_config(env: Mapping[str, str]) -> BuildConfig:
    """从环境映射构造 `BuildConfig`，必填项缺失时抛出 `ConfigurationError`。"""
    profile_raw = _get(env, "PROFILE_TYPE")
    if not profile_raw:
        raise ConfigurationError(
            "PROFILE_TYPE is required (supported: "
            + ", ".join(p.value for p in DistributionProfile)
            + ")"
        )
    profile = DistributionProfile.parse(profile_raw)

    bundle_id = _get(env, "BUNDLE_ID")
    if not bundle_id:
        raise ConfigurationError("BUNDLE_ID is required")
    if not _BUNDLE_ID_RE.match(bundle_id):
        logger.warning(
            "Bundle ID does not follow reverse domain notation: %s (e.g. com.company.app)",
            bundle_id,
        )

    team_id = _get(env, "APPLE_TEAM_ID")
    if not team_id:
        raise ConfigurationError("APPLE_TEAM_ID is required")

    home = _get(env, "HOME") or os.path.expanduser("~")
    keychain_path = _get(env, "KEYCHAIN_PATH") or default_keychain_path(home)
    profiles_dir = _get(env, "PROVISIONING_PROFILES_DIR") or os.path.join(
        home, "Library", "MobileDevice", "Provisioning Profiles"
    )

    return BuildConfig(
        profile=profile,
        bundle_id=bundle_id,
        team_id=team_id,
        output_dir=_get(env, "OUTPUT_DIR") or DEFAULT_OUTPUT_DIR,
        export_options_path=_get(env, "EXPORT_OPTIONS_PATH") or DEFAULT_EXPORT_OPTIONS_PATH,
        api_key=ApiKeyCredentials(
            issuer_id=_get(env, "APP_STORE_CONNECT_ISSUER_ID"),
            key_id=_get(env, "APP_STORE_CONNECT_KEY_IDENTIFIER"),
            key_location=_get(env, "APP_STORE_CONNECT_API_KEY_PATH"),
        ),
        manual=ManualCertificateCredentials(
            certificate_location=_get(env, "CERT_P12_URL"),
            # 密码原样保留，首尾空白可能是密码的一部分。
            password=env.get("CERT_PASSWORD") or "",
            profile_location=_get(env, "PROFILE_URL"),
        ),
        keychain_path=keychain_path,
        profiles_dir=profiles_dir,
        app_name=_get(env, "APP_NAME"),
        version_name=_get(env, "VERSION_NAME"),
        version_code=_get(env, "VERSION_CODE"),
        build_id=_get(env, "CM_BUILD_ID"),
        workflow_id=_get(env, "WORKFLOW_ID"),
        export_timeout=_number(env, "EXPORT_TIMEOUT", DEFAULT_EXPORT_TIMEOUT),
        download_timeout=_number(env, "DOWNLOAD_TIMEOUT", DEFAULT_DOWNLOAD_TIMEOUT),
        download_retries=int(
            _number(env, "DOWNLOAD_RETRIES", DEFAULT_DOWNLOAD_RETRIES, integer=True)
        ),
    )


def credential_status(config: BuildConfig) -> list[tuple[str, str]]:
    """列出凭据相关变量是否已设置（不暴露取值）。"""
    out: list[tuple[str, str]] = []
    pairs = (
        ("APP_STORE_CONNECT_ISSUER_ID", config.api_key.issuer_id),
        ("APP_STORE_CONNECT_KEY_IDENTIFIER", config.api_key.key_id),
        ("APP_STORE_CONNECT_API_KEY_PATH", config.api_key.key_location),
        ("CERT_P12_URL", config.manual.certificate_location),
        ("PROFILE_URL", config.manual.profile_location),
        ("CERT_PASSWORD", config.manual.password),
    )
    for name, value in pairs:
        out.append((name, "SET" if value else "NOT_SET"))
    return out
