"""
签名描述文件（`mobileprovision`）解析辅助模块。

`.mobileprovision` 本质是 CMS 封装的 plist，这里通过 macOS `security cms` 解码。
"""

from __future__ import annotations

import datetime as _dt
import plistlib
from dataclasses import dataclass, field
from typing import Any

from .pipeline_utils import require_tool, run_cmd


@dataclass(frozen=True)
class ProvisioningProfile:
    """描述已解析签名描述文件的关键信息。"""

    raw: dict[str, Any]
    team_id: str
    uuid: str = ""
    name: str = ""
    entitlements: dict[str, Any] = field(default_factory=dict)
    expiration: _dt.datetime | None = None


def parse_profile_plist(raw: Any) -> ProvisioningProfile:
    """从已解码的 profile plist 提取团队标识、UUID、签名权限与过期时间。"""
    if not isinstance(raw, dict):
        raise RuntimeError("Provisioning profile is not a dict")
    ents = raw.get("Entitlements", {})
    if not isinstance(ents, dict):
        ents = {}

    team_id = ""
    v = ents.get("com.apple.developer.team-identifier")
    if isinstance(v, str) and v:
        team_id = v
    if not team_id:
        app_id = ents.get("application-identifier")
        if isinstance(app_id, str) and "." in app_id:
            team_id = app_id.split(".", 1)[0]
    if not team_id:
        ids = raw.get("TeamIdentifier")
        if isinstance(ids, list) and ids and isinstance(ids[0], str):
            team_id = ids[0]

    expiration = raw.get("ExpirationDate")
    return ProvisioningProfile(
        raw=raw,
        team_id=team_id,
        uuid=raw.get("UUID") if isinstance(raw.get("UUID"), str) else "",
        name=raw.get("Name") if isinstance(raw.get("Name"), str) else "",
        entitlements=ents,
        expiration=expiration if isinstance(expiration, _dt.datetime) else None,
    )


def load_mobileprovision(path: str) -> ProvisioningProfile:
    """用 `security cms -D -i` 解码 `.mobileprovision`。"""
    p = run_cmd([require_tool("security"), "cms", "-D", "-i", path], timeout=60)
    return parse_profile_plist(plistlib.loads(p.stdout))


def is_distribution(profile: ProvisioningProfile) -> bool:
    """`get-task-allow` 为 false 的 profile 才是分发类 profile。"""
    return profile.entitlements.get("get-task-allow") is False
