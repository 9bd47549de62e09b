"""
导出流程的异常分类。

只有配置错误、全部策略失败且无任何产物、以及 app-store 产物的致命校验失败
会让进程以非零状态退出；其余异常在所属步骤内被吸收并记录。
"""

from __future__ import annotations


class ExportError(RuntimeError):
    """所有导出流程异常的基类。"""


class ConfigurationError(ExportError):
    """缺失或非法的 profile / 身份输入，在任何策略执行前终止。"""


class CredentialUnavailable(ExportError):
    """某个策略所需的凭据不完整，该策略被跳过。"""

    def __init__(self, strategy: str, missing: list[str]) -> None:
        self.strategy = strategy
        self.missing = list(missing)
        super().__init__(f"{strategy}: missing {', '.join(self.missing)}")


class TransportError(ExportError):
    """下载凭据材料失败（已用尽重试）。"""


class ExportToolError(ExportError):
    """外部导出工具返回失败或超时。"""


class ToolingMissing(ExportError):
    """所需的外部命令不存在。"""


class ValidationError(ExportError):
    """产物未通过结构/合规校验。"""

    def __init__(self, reason: str, detail: str = "", warnings: list[str] | None = None) -> None:
        self.reason = reason
        self.detail = detail
        self.warnings = list(warnings or [])
        msg = f"Invalid: {reason}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
