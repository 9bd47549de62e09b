"""
构建结果报告。

每个终态都会写出一份纯文本报告（位于 `OUTPUT_DIR` 下的固定文件名），
供后续流水线步骤收集：
- `ARTIFACTS_SUMMARY.txt`：所有终态都会生成。
- `archive_export/BUILD_INFO.txt` + `EXPORT_STATUS.txt`：仅 archive-only 降级。
- `TROUBLESHOOTING_GUIDE.txt`：导出失败或配置错误时生成。
"""

from __future__ import annotations

import datetime as _dt
import logging
import os
import shutil
from collections.abc import Sequence

from .config import ARCHIVE_NAME, IPA_NAME, REJECTED_IPA_NAME, BuildConfig, credential_status
from .pipeline_utils import human_size, path_size
from .types import ArtifactKind, BuildArtifactState, DistributionProfile, StepRecord
from .validate import ValidationResult

logger = logging.getLogger(__name__)

SUMMARY_NAME = "ARTIFACTS_SUMMARY.txt"
TROUBLESHOOTING_NAME = "TROUBLESHOOTING_GUIDE.txt"
ARCHIVE_EXPORT_DIR = "archive_export"
BUILD_INFO_NAME = "BUILD_INFO.txt"
EXPORT_STATUS_NAME = "EXPORT_STATUS.txt"
ARCHIVE_ONLY_MARKER = "ARCHIVE_ONLY_EXPORT"

STRATEGY_NAMES = ("App Store Connect API", "Automatic Signing", "Manual Certificates")

_MANUAL_EXPORT_STEPS = """\
1. Download {archive} from this build
2. Open Xcode on a Mac with Apple Developer account
3. Go to Window > Organizer
4. Click "+" and select "Import"
5. Select {archive}
6. Click "Distribute App"
7. Choose distribution method: {profile}
8. Follow the signing wizard
"""

_ARCHIVE_ONLY_HINTS = {
    DistributionProfile.APP_STORE: (
        "For App Store distribution:\n"
        '- Choose "App Store Connect"\n'
        '- Select "Upload" or "Export"\n'
        "- Ensure your app version is higher than App Store version\n"
    ),
    DistributionProfile.AD_HOC: (
        "For Ad Hoc distribution:\n"
        '- Choose "Ad Hoc"\n'
        "- Select registered devices\n"
        "- Export IPA for device installation\n"
    ),
    DistributionProfile.ENTERPRISE: (
        "For Enterprise distribution:\n"
        '- Choose "Enterprise"\n'
        "- Export IPA for internal distribution\n"
        "- Ensure enterprise provisioning profile is valid\n"
    ),
    DistributionProfile.DEVELOPMENT: (
        "For Development distribution:\n"
        '- Choose "Development"\n'
        "- Select development team\n"
        "- Export IPA for development testing\n"
    ),
}

_MANUAL_CERT_STEPS = (
    "   - Set CERT_P12_URL to your {cert} certificate\n"
    "   - Set PROFILE_URL to your {kind} provisioning profile\n"
    "   - Set CERT_PASSWORD to your certificate password\n"
)

_REMEDIATION = {
    DistributionProfile.APP_STORE: (
        "For App Store Distribution:\n"
        "1. App Store Connect API (Recommended):\n"
        "   - Set APP_STORE_CONNECT_ISSUER_ID\n"
        "   - Set APP_STORE_CONNECT_KEY_IDENTIFIER\n"
        "   - Set APP_STORE_CONNECT_API_KEY_PATH to a valid URL or path\n"
        "   - Ensure API key has App Manager role\n"
        "\n"
        "2. Manual Certificates (Alternative):\n"
        + _MANUAL_CERT_STEPS.format(cert="distribution", kind="App Store")
        + "   - Ensure certificate matches provisioning profile\n"
        "\n"
        "3. Automatic Signing (Limited):\n"
        "   - Requires Apple Developer account in Xcode\n"
        "   - Requires valid App Store provisioning profile\n"
        "   - May not work in CI/CD environments\n"
        "\n"
        "Common Issues:\n"
        '- "No Accounts": Apple Developer account not configured\n'
        '- "No profiles found": Missing App Store provisioning profile\n'
        '- "API key download failed": Check URL accessibility and permissions\n'
    ),
    DistributionProfile.AD_HOC: (
        "For Ad Hoc Distribution:\n"
        "1. Manual Certificates (Recommended):\n"
        + _MANUAL_CERT_STEPS.format(cert="distribution", kind="Ad Hoc")
        + "   - Ensure profile includes target device UDIDs\n"
        "\n"
        "2. Automatic Signing (Alternative):\n"
        "   - Requires Apple Developer account in Xcode\n"
        "   - Requires valid Ad Hoc provisioning profile\n"
        "   - May not work in CI/CD environments\n"
        "\n"
        "Common Issues:\n"
        '- "No profiles found": Missing Ad Hoc provisioning profile\n'
        '- "Device not registered": Add device UDIDs to provisioning profile\n'
        '- "Certificate mismatch": Ensure certificate matches profile\n'
    ),
    DistributionProfile.ENTERPRISE: (
        "For Enterprise Distribution:\n"
        "1. Manual Certificates (Required):\n"
        + _MANUAL_CERT_STEPS.format(cert="enterprise distribution", kind="enterprise")
        + "   - Ensure enterprise account is active\n"
        "\n"
        "2. Automatic Signing (Limited):\n"
        "   - Requires enterprise Apple Developer account\n"
        "   - Requires valid enterprise provisioning profile\n"
        "   - May not work in CI/CD environments\n"
        "\n"
        "Common Issues:\n"
        '- "Enterprise account required": Need enterprise Apple Developer account\n'
        '- "No profiles found": Missing enterprise provisioning profile\n'
        '- "Certificate expired": Renew enterprise distribution certificate\n'
    ),
    DistributionProfile.DEVELOPMENT: (
        "For Development Distribution:\n"
        "1. Manual Certificates (Recommended):\n"
        + _MANUAL_CERT_STEPS.format(cert="development", kind="development")
        + "   - Ensure profile includes target device UDIDs\n"
        "\n"
        "2. Automatic Signing (Alternative):\n"
        "   - Requires Apple Developer account in Xcode\n"
        "   - Requires valid development provisioning profile\n"
        "   - May not work in CI/CD environments\n"
        "\n"
        "Common Issues:\n"
        '- "No profiles found": Missing development provisioning profile\n'
        '- "Device not registered": Add device UDIDs to provisioning profile\n'
        '- "Certificate mismatch": Ensure certificate matches profile\n'
    ),
}

_ALTERNATIVES = """\
1. Use Fastlane (if available):
   - Install fastlane: gem install fastlane
   - Run: fastlane gym --archive_path {archive}

2. Use Xcode Command Line:
   - xcodebuild -exportArchive -archivePath {archive} -exportPath . -exportOptionsPlist ExportOptions.plist

3. Use Transporter App:
   - Download archive
   - Use Apple Transporter app for upload
"""


def _now() -> str:
    return _dt.datetime.now().strftime("%a %b %d %H:%M:%S %Y")


def _or(value: str, default: str = "unknown") -> str:
    return value if value else default


def _write(path: str, text: str) -> str:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def _app_section(config: BuildConfig) -> list[str]:
    version = f"{_or(config.version_name)} ({_or(config.version_code)})"
    return [
        f"App Name: {_or(config.app_name)}",
        f"Bundle ID: {_or(config.bundle_id)}",
        f"Version: {version}",
        f"Team ID: {_or(config.team_id)}",
    ]


def _availability(config: BuildConfig) -> dict[str, str]:
    api = "Available" if config.api_key.is_complete() else "Not available"
    if config.profile is not DistributionProfile.APP_STORE:
        api = f"Not used for {config.profile.value}"
    return {
        "App Store Connect API": api,
        "Automatic Signing": "Available",
        "Manual Certificates": "Available" if config.manual.is_complete() else "Not available",
    }


def _strategy_section(config: BuildConfig | None, steps: Sequence[StepRecord]) -> list[str]:
    by_name = {s.strategy: s for s in steps}
    available = _availability(config) if config is not None else {}
    lines: list[str] = []
    for i, name in enumerate(STRATEGY_NAMES, start=1):
        line = f"{i}. {name}: {available.get(name, 'unknown')}"
        step = by_name.get(name)
        if step is not None:
            line += f" -> {step.outcome}"
            if step.detail:
                line += f" ({step.detail})"
        else:
            line += " -> not attempted"
        lines.append(line)
    lines.append(f"{len(STRATEGY_NAMES) + 1}. Archive Only: Fallback")
    return lines


def _env_section(config: BuildConfig) -> list[str]:
    lines = [
        f"PROFILE_TYPE: {config.profile.value}",
        f"BUNDLE_ID: {_or(config.bundle_id, 'NOT_SET')}",
        f"APPLE_TEAM_ID: {_or(config.team_id, 'NOT_SET')}",
    ]
    lines += [f"{name}: {status}" for name, status in credential_status(config)]
    return lines


def write_summary(
    config: BuildConfig,
    state: BuildArtifactState,
    steps: Sequence[StepRecord],
    *,
    validation: ValidationResult | None = None,
    failure: str = "",
) -> str:
    """写出 `ARTIFACTS_SUMMARY.txt`。"""
    lines = [
        "=== iOS Build Artifacts Summary ===",
        f"Build Date: {_now()}",
        f"Build ID: {_or(config.build_id)}",
        f"Workflow: {_or(config.workflow_id, 'ios-workflow')}",
        f"Profile Type: {config.profile.value}",
        "",
        "=== App Information ===",
        *_app_section(config),
        "",
        "=== Build Results ===",
    ]

    if state.kind is ArtifactKind.PACKAGED and not failure:
        lines += [
            "Build Status: SUCCESS",
            "Export Result: IPA created successfully",
            f"IPA File: {os.path.basename(state.path)} ({human_size(path_size(state.path))})",
            f"Distribution: Ready for {config.profile.value} distribution",
        ]
    elif state.kind is ArtifactKind.ARCHIVE_ONLY:
        lines += [
            "Build Status: PARTIAL SUCCESS",
            "Export Result: Archive created, IPA export failed",
            f"Archive: {os.path.basename(state.path)} ({human_size(path_size(state.path))})",
            "Next Steps: Manual IPA export required "
            f"(see {ARCHIVE_EXPORT_DIR}/{BUILD_INFO_NAME})",
        ]
    else:
        lines += [
            "Build Status: FAILED",
            f"Export Result: {failure or 'No artifacts created'}",
            f"Next Steps: See {TROUBLESHOOTING_NAME} and the build logs",
        ]

    if validation is not None:
        lines += [
            "",
            "=== App Store Validation ===",
            f"App Bundle: {validation.app_name}",
            f"Bundle ID: {validation.bundle_id}",
            f"Version: {validation.version} ({validation.build})",
            f"Minimum iOS Version: {_or(validation.min_os_version, 'not specified')}",
            f"Signing Identity: {_or(validation.authority)}",
            f"Uncompressed Size: {human_size(validation.uncompressed_bytes)}",
        ]
        if validation.warnings:
            lines.append("Warnings:")
            lines += [f"- {w}" for w in validation.warnings]
        else:
            lines.append("Warnings: none")

    lines += [
        "",
        "=== Export Methods Attempted ===",
        *_strategy_section(config, steps),
        "",
        "=== Environment Variables ===",
        *_env_section(config),
        "",
        f"Build completed at: {_now()}",
        "",
    ]
    path = _write(os.path.join(config.output_dir, SUMMARY_NAME), "\n".join(lines))
    logger.info("Artifacts summary created: %s", path)
    return path


def create_archive_only_export(config: BuildConfig) -> str:
    """复制 archive 并写出手动导出说明，返回导出目录。"""
    export_dir = os.path.join(config.output_dir, ARCHIVE_EXPORT_DIR)
    os.makedirs(export_dir, exist_ok=True)
    target = os.path.join(export_dir, ARCHIVE_NAME)
    if os.path.exists(target):
        shutil.rmtree(target)
    shutil.copytree(config.archive_path, target, symlinks=True)
    logger.info("Archive copied to %s", target)

    profile = config.profile
    lines = [
        "=== iOS Build Information ===",
        f"Build Date: {_now()}",
        f"Build ID: {_or(config.build_id)}",
        *_app_section(config),
        f"Profile Type: {profile.value}",
        "",
        "=== Export Status ===",
        "Status: Archive Only Export",
        "Reason: IPA export failed, manual export required",
        "",
        "=== Manual Export Instructions ===",
        _MANUAL_EXPORT_STEPS.format(archive=ARCHIVE_NAME, profile=profile.value),
        "=== Profile Type Specific Instructions ===",
        _ARCHIVE_ONLY_HINTS[profile],
        "=== Troubleshooting ===",
        "- Verify Apple Developer account access",
        "- Check certificates and provisioning profiles",
        "- Ensure bundle ID matches provisioning profile",
        "- Verify app version is higher than previous version",
        "",
        f"Build completed at: {_now()}",
        "",
    ]
    _write(os.path.join(export_dir, BUILD_INFO_NAME), "\n".join(lines))
    _write(os.path.join(export_dir, EXPORT_STATUS_NAME), ARCHIVE_ONLY_MARKER + "\n")
    logger.info("Archive-only export created: %s", export_dir)
    return export_dir


def write_troubleshooting_guide(
    output_dir: str,
    *,
    config: BuildConfig | None,
    steps: Sequence[StepRecord] = (),
    reason: str = "",
) -> str:
    """写出 `TROUBLESHOOTING_GUIDE.txt`；`config` 为空时列出所有 profile 的处理办法。"""
    lines = [
        "=== iOS IPA Export Troubleshooting Guide ===",
        f"Build Date: {_now()}",
    ]
    if config is not None:
        lines += [
            f"Profile Type: {config.profile.value}",
            f"Bundle ID: {_or(config.bundle_id)}",
            f"Team ID: {_or(config.team_id)}",
        ]
    if reason:
        lines += ["", "=== Failure Reason ===", reason]

    lines += ["", "=== Export Methods Attempted ===", *_strategy_section(config, steps)]

    if config is not None:
        lines += ["", "=== Environment Variables Status ===", *_env_section(config)]
        missing: list[str] = []
        if config.profile is DistributionProfile.APP_STORE:
            missing += config.api_key.missing_fields()
        missing += config.manual.missing_fields()
        if missing:
            lines += ["", "Missing credentials:", *[f"- {name}" for name in missing]]
        profiles = [config.profile]
    else:
        profiles = list(DistributionProfile)

    lines += ["", "=== Solutions by Profile Type ===", ""]
    for profile in profiles:
        lines.append(_REMEDIATION[profile])

    profile_label = config.profile.value if config is not None else "<PROFILE_TYPE>"
    lines += [
        "=== Manual Export Instructions ===",
        _MANUAL_EXPORT_STEPS.format(archive=ARCHIVE_NAME, profile=profile_label),
        "=== Alternative Solutions ===",
        _ALTERNATIVES.format(archive=ARCHIVE_NAME),
        "=== Contact Support ===",
        "If you need assistance:",
        "1. Check build logs for detailed error messages",
        "2. Verify all environment variables are set correctly",
        "3. Ensure certificates and profiles are valid",
        "4. Contact your development team with build ID",
        "",
        f"Build completed at: {_now()}",
        "",
    ]
    path = _write(os.path.join(output_dir, TROUBLESHOOTING_NAME), "\n".join(lines))
    logger.info("Troubleshooting guide created: %s", path)
    return path


def stale_outputs(output_dir: str) -> list[str]:
    """上一次运行可能留下、本次运行前必须清除的产物。"""
    return [
        os.path.join(output_dir, IPA_NAME),
        os.path.join(output_dir, REJECTED_IPA_NAME),
        os.path.join(output_dir, SUMMARY_NAME),
        os.path.join(output_dir, TROUBLESHOOTING_NAME),
        os.path.join(output_dir, ARCHIVE_EXPORT_DIR),
    ]
