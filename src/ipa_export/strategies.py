"""
IPA 导出的签名策略。

每个策略对应一种凭据组合：
- `ApiKeyStrategy`：App Store Connect API key（仅 app-store）。
- `AutomaticSigningStrategy`：依赖本机钥匙串与 profile 的自动签名，总会尝试。
- `ManualCertificateStrategy`：下载 p12 证书与 profile，安装后导出。

策略只返回 `ExportAttemptResult`；传输、工具与导出错误都在这里被吸收为失败结果，
由级联决定是否继续下一个策略。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from . import transport, xcodebuild
from .config import BuildConfig
from .errors import ExportToolError, ToolingMissing, TransportError
from .keychain import SigningKeychain, transient_dir
from .types import DistributionProfile, ExportAttemptResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportContext:
    """一次级联执行所需的全部输入。"""

    config: BuildConfig
    options_path: str
    keychain: SigningKeychain

    @property
    def archive_path(self) -> str:
        return self.config.archive_path

    @property
    def export_dir(self) -> str:
        return self.config.output_dir

    @property
    def ipa_path(self) -> str:
        return self.config.ipa_path


class ExportStrategy:
    """策略基类：`check` 不满足时抛出 `CredentialUnavailable`。"""

    name = ""

    def applies_to(self, profile: DistributionProfile) -> bool:
        return True

    def check(self, ctx: ExportContext) -> None:
        pass

    def attempt(self, ctx: ExportContext) -> ExportAttemptResult:
        raise NotImplementedError

    def _export(
        self,
        ctx: ExportContext,
        *,
        api_key: xcodebuild.ApiKeyAuth | None = None,
    ) -> ExportAttemptResult:
        try:
            xcodebuild.export_archive(
                ctx.archive_path,
                ctx.export_dir,
                ctx.options_path,
                api_key=api_key,
                timeout=ctx.config.export_timeout,
            )
        except ToolingMissing as e:
            return ExportAttemptResult.failure(str(e))
        except ExportToolError as e:
            return ExportAttemptResult.failure(_first_error_line(str(e)))
        if not os.path.isfile(ctx.ipa_path):
            return ExportAttemptResult.failure(
                f"export finished but {os.path.basename(ctx.ipa_path)} was not produced"
            )
        return ExportAttemptResult.success(ctx.ipa_path)

    def _fetch(self, location: str, dest: str, ctx: ExportContext) -> str:
        logger.info("Retrieving %s", os.path.basename(dest))
        return transport.fetch(
            location,
            dest,
            timeout=ctx.config.download_timeout,
            retries=ctx.config.download_retries,
        )


def _first_error_line(message: str) -> str:
    for line in reversed(message.strip().splitlines()):
        line = line.strip()
        if line.startswith("error:") or line.startswith("** EXPORT FAILED"):
            return line
    lines = message.strip().splitlines()
    return lines[0] if lines else "export failed"


class ApiKeyStrategy(ExportStrategy):
    name = "App Store Connect API"

    def applies_to(self, profile: DistributionProfile) -> bool:
        return profile is DistributionProfile.APP_STORE

    def check(self, ctx: ExportContext) -> None:
        ctx.config.api_key.require()

    def attempt(self, ctx: ExportContext) -> ExportAttemptResult:
        creds = ctx.config.api_key
        with transient_dir("asc_key_") as work:
            key_path = os.path.join(work, f"AuthKey_{creds.key_id}.p8")
            try:
                self._fetch(creds.key_location, key_path, ctx)
            except TransportError as e:
                return ExportAttemptResult.failure(f"API key download failed: {e}")
            return self._export(
                ctx,
                api_key=xcodebuild.ApiKeyAuth(
                    key_path=key_path,
                    key_id=creds.key_id,
                    issuer_id=creds.issuer_id,
                ),
            )


class AutomaticSigningStrategy(ExportStrategy):
    name = "Automatic Signing"

    def attempt(self, ctx: ExportContext) -> ExportAttemptResult:
        for missing in ctx.config.automatic.missing_fields():
            logger.warning("%s not set, automatic signing may fail", missing)
        logger.info("Team ID: %s", ctx.config.team_id or "NOT_SET")
        logger.info("Bundle ID: %s", ctx.config.bundle_id or "NOT_SET")
        return self._export(ctx)


class ManualCertificateStrategy(ExportStrategy):
    name = "Manual Certificates"

    def check(self, ctx: ExportContext) -> None:
        ctx.config.manual.require()

    def attempt(self, ctx: ExportContext) -> ExportAttemptResult:
        creds = ctx.config.manual
        with transient_dir("certs_manual_") as work:
            profile_path = os.path.join(work, "profile.mobileprovision")
            cert_path = os.path.join(work, "certificate.p12")
            try:
                self._fetch(creds.profile_location, profile_path, ctx)
                self._fetch(creds.certificate_location, cert_path, ctx)
            except TransportError as e:
                return ExportAttemptResult.failure(f"credential download failed: {e}")

            try:
                ctx.keychain.import_certificate(cert_path, creds.password)
            except RuntimeError as e:
                return ExportAttemptResult.failure(
                    f"certificate import failed: {_first_error_line(str(e))}"
                )
            try:
                ctx.keychain.install_profile(profile_path)
            except OSError as e:
                return ExportAttemptResult.failure(f"profile install failed: {e}")

            return self._export(ctx)


def default_strategies() -> list[ExportStrategy]:
    """固定的尝试顺序。"""
    return [ApiKeyStrategy(), AutomaticSigningStrategy(), ManualCertificateStrategy()]
