"""
ExportOptions.plist 生成。

每个分发 profile 对应一组固定的导出参数；同样的输入总是生成逐字节相同的文件
（不含时间戳），便于缓存与比对。
"""

from __future__ import annotations

import logging
import os
import plistlib
from xml.parsers.expat import ExpatError

from .errors import ConfigurationError
from .types import DistributionProfile, ExportConfiguration

logger = logging.getLogger(__name__)

# profile -> (uploadSymbols, stripSwiftSymbols)
_SYMBOL_POLICY: dict[DistributionProfile, tuple[bool, bool]] = {
    DistributionProfile.APP_STORE: (True, True),
    DistributionProfile.AD_HOC: (False, True),
    DistributionProfile.ENTERPRISE: (False, True),
    DistributionProfile.DEVELOPMENT: (False, False),
}


def build_export_configuration(
    profile: DistributionProfile | str,
    *,
    bundle_id: str,
    team_id: str,
) -> ExportConfiguration:
    """根据 profile 与身份字段推导导出配置。"""
    if not isinstance(profile, DistributionProfile):
        profile = DistributionProfile.parse(profile)
    upload_symbols, strip_swift_symbols = _SYMBOL_POLICY[profile]

    if profile is DistributionProfile.APP_STORE:
        return ExportConfiguration(
            method=profile.value,
            team_id=team_id,
            bundle_id=bundle_id,
            upload_symbols=upload_symbols,
            strip_swift_symbols=strip_swift_symbols,
            upload_to_app_store=False,
            distribution_bundle_id=bundle_id,
            icloud_container_environment="Production",
            embed_on_demand_resources=True,
            manage_version_and_build_number=True,
        )
    return ExportConfiguration(
        method=profile.value,
        team_id=team_id,
        bundle_id=bundle_id,
        upload_symbols=upload_symbols,
        strip_swift_symbols=strip_swift_symbols,
    )


def render_export_options(config: ExportConfiguration) -> bytes:
    """序列化为 XML plist（保持字段顺序）。"""
    return plistlib.dumps(config.to_plist(), fmt=plistlib.FMT_XML, sort_keys=False)


def write_export_options(config: ExportConfiguration, path: str) -> str:
    """写入（覆盖）导出配置文件，并严格回读校验。"""
    data = render_export_options(config)
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)

    try:
        with open(path, "rb") as f:
            parsed = plistlib.load(f, fmt=plistlib.FMT_XML)
    except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise ConfigurationError(f"ExportOptions.plist is not a valid plist: {e}") from e
    if parsed != config.to_plist():
        raise ConfigurationError("ExportOptions.plist does not match the export configuration")

    logger.info("Export options written: %s", path)
    logger.info("  method=%s signingStyle=%s uploadSymbols=%s stripSwiftSymbols=%s",
                config.method, config.signing_style,
                config.upload_symbols, config.strip_swift_symbols)
    for line in data.decode("utf-8").splitlines():
        logger.debug("  %s", line)
    return path
