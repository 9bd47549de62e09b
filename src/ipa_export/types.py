"""
导出流程各组件共享的类型定义。
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from .errors import ConfigurationError, CredentialUnavailable


class DistributionProfile(str, Enum):
    """分发 profile：决定导出方式、签名姿态与合规规则集。"""

    APP_STORE = "app-store"
    AD_HOC = "ad-hoc"
    ENTERPRISE = "enterprise"
    DEVELOPMENT = "development"

    @classmethod
    def parse(cls, value: str) -> "DistributionProfile":
        """把外部输入解析为 profile，未知值抛出 `ConfigurationError`。"""
        raw = (value or "").strip()
        for member in cls:
            if member.value == raw:
                return member
        supported = ", ".join(m.value for m in cls)
        raise ConfigurationError(
            f"InvalidProfile: {raw or '<empty>'} (supported: {supported})"
        )


@dataclass(frozen=True)
class ExportConfiguration:
    """`xcodebuild -exportArchive` 使用的导出配置，创建后不可修改。"""

    method: str
    team_id: str
    bundle_id: str
    upload_symbols: bool
    strip_swift_symbols: bool
    upload_bitcode: bool = False
    compile_bitcode: bool = False
    signing_style: str = "automatic"
    thinning: str = "<none>"
    destination: str = "export"
    # 以下字段仅 app-store 使用。
    upload_to_app_store: bool | None = None
    distribution_bundle_id: str | None = None
    icloud_container_environment: str | None = None
    embed_on_demand_resources: bool | None = None
    manage_version_and_build_number: bool | None = None

    def to_plist(self) -> dict[str, Any]:
        """按固定键顺序生成 ExportOptions.plist 字典。"""
        out: dict[str, Any] = {
            "method": self.method,
            "teamID": self.team_id,
            "uploadBitcode": self.upload_bitcode,
            "uploadSymbols": self.upload_symbols,
            "compileBitcode": self.compile_bitcode,
            "signingStyle": self.signing_style,
            "stripSwiftSymbols": self.strip_swift_symbols,
            "thinning": self.thinning,
            "destination": self.destination,
        }
        extras = (
            ("uploadToAppStore", self.upload_to_app_store),
            ("distributionBundleIdentifier", self.distribution_bundle_id),
            ("iCloudContainerEnvironment", self.icloud_container_environment),
            ("embedOnDemandResourcesAssetPacksInBundle", self.embed_on_demand_resources),
            ("manageAppVersionAndBuildNumber", self.manage_version_and_build_number),
        )
        for key, value in extras:
            if value is not None:
                out[key] = value
        return out


class _CredentialBundle:
    """凭据包公共行为：按字段判断完整性。"""

    strategy_name = ""

    def missing_fields(self) -> list[str]:
        out: list[str] = []
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value.strip():
                out.append(f.metadata.get("env", f.name))
        return out

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def require(self) -> None:
        """不完整时抛出 `CredentialUnavailable`。"""
        missing = self.missing_fields()
        if missing:
            raise CredentialUnavailable(self.strategy_name, missing)


def _env(name: str) -> Any:
    """声明凭据字段，并记录其对应的环境变量名。"""
    return field(default="", metadata={"env": name})


@dataclass(frozen=True)
class ApiKeyCredentials(_CredentialBundle):
    """App Store Connect API key 凭据。"""

    strategy_name = "App Store Connect API"

    issuer_id: str = _env("APP_STORE_CONNECT_ISSUER_ID")
    key_id: str = _env("APP_STORE_CONNECT_KEY_IDENTIFIER")
    key_location: str = _env("APP_STORE_CONNECT_API_KEY_PATH")


@dataclass(frozen=True)
class ManualCertificateCredentials(_CredentialBundle):
    """手动证书凭据：p12 证书、密码与 provisioning profile。"""

    strategy_name = "Manual Certificates"

    certificate_location: str = _env("CERT_P12_URL")
    password: str = _env("CERT_PASSWORD")
    profile_location: str = _env("PROFILE_URL")


@dataclass(frozen=True)
class AutomaticSigningCredentials(_CredentialBundle):
    """自动签名只依赖团队与包标识，其余依赖本机钥匙串状态。"""

    strategy_name = "Automatic Signing"

    team_id: str = _env("APPLE_TEAM_ID")
    bundle_id: str = _env("BUNDLE_ID")


@dataclass(frozen=True)
class ExportAttemptResult:
    """单个策略的执行结果。"""

    ok: bool
    artifact_path: str = ""
    reason: str = ""

    @classmethod
    def success(cls, artifact_path: str) -> "ExportAttemptResult":
        return cls(ok=True, artifact_path=artifact_path)

    @classmethod
    def failure(cls, reason: str) -> "ExportAttemptResult":
        return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class StepRecord:
    """级联中某一步的记录，`outcome` 为 skipped / failed / succeeded。"""

    strategy: str
    outcome: str
    detail: str = ""


class ArtifactKind(str, Enum):
    NO_ARTIFACT = "no-artifact"
    ARCHIVE_ONLY = "archive-only"
    PACKAGED = "packaged"


@dataclass(frozen=True)
class BuildArtifactState:
    """一次构建最终拥有的产物。"""

    kind: ArtifactKind
    path: str = ""

    @classmethod
    def none(cls) -> "BuildArtifactState":
        return cls(kind=ArtifactKind.NO_ARTIFACT)

    @classmethod
    def archive_only(cls, archive_path: str) -> "BuildArtifactState":
        return cls(kind=ArtifactKind.ARCHIVE_ONLY, path=archive_path)

    @classmethod
    def packaged(cls, ipa_path: str) -> "BuildArtifactState":
        return cls(kind=ArtifactKind.PACKAGED, path=ipa_path)


@dataclass(frozen=True)
class Patch:
    """对 plist 文档某个 key path 的一次命名修改。"""

    # `kind`：set-string / set-int / set-bool / delete / array-add / array-remove
    kind: str
    key_path: str
    value: str | None = None
