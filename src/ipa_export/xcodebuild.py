"""
对 `xcodebuild -exportArchive` 的轻量封装。

每次调用都是一次阻塞的外部调用，成功即返回，失败抛出 `ExportToolError`；
这里从不重试，重试只通过级联切换到下一个策略完成。
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ExportToolError, ToolingMissing
from .pipeline_utils import require_tool, run_cmd


@dataclass(frozen=True)
class ApiKeyAuth:
    """App Store Connect API key 认证参数。"""

    key_path: str
    key_id: str
    issuer_id: str


def export_command(
    archive_path: str,
    export_dir: str,
    options_path: str,
    *,
    api_key: ApiKeyAuth | None = None,
) -> list[str]:
    cmd = [
        require_tool("xcodebuild"),
        "-exportArchive",
        "-archivePath",
        archive_path,
        "-exportPath",
        export_dir,
        "-exportOptionsPlist",
        options_path,
    ]
    if api_key is not None:
        cmd += [
            "-authenticationKeyPath",
            api_key.key_path,
            "-authenticationKeyID",
            api_key.key_id,
            "-authenticationKeyIssuerID",
            api_key.issuer_id,
        ]
    cmd.append("-allowProvisioningUpdates")
    return cmd


def export_archive(
    archive_path: str,
    export_dir: str,
    options_path: str,
    *,
    api_key: ApiKeyAuth | None = None,
    timeout: float | None = None,
) -> None:
    """导出 IPA；工具缺失时抛出 `ToolingMissing`。"""
    cmd = export_command(archive_path, export_dir, options_path, api_key=api_key)
    try:
        run_cmd(cmd, timeout=timeout)
    except ToolingMissing:
        raise
    except RuntimeError as e:
        raise ExportToolError(str(e)) from e
