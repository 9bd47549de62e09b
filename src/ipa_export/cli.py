"""
`ipa-export` 的命令行入口模块。

子命令：
- `export`：完整导出流程（导出配置 -> 签名策略级联 -> 校验 -> 报告）。
- `options`：只生成 ExportOptions.plist。
- `validate`：对已有 IPA 执行合规校验。
- `patch`：按 key path 修改工程 plist。

身份与路径参数默认取自环境变量，命令行参数优先。
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterator, Mapping, Sequence

from .config import DEFAULT_OUTPUT_DIR, load_config
from .errors import ConfigurationError, ValidationError
from .export_options import build_export_configuration, write_export_options
from .patcher import patch_file
from .pipeline import EXIT_FAILED, EXIT_OK, run_export
from .report import write_troubleshooting_guide
from .types import DistributionProfile, Patch
from .validate import validate_artifact

_LOGGER_NAME = "ipa_export"

# 命令行参数 -> 环境变量
_ENV_FLAGS = (
    ("profile_type", "PROFILE_TYPE"),
    ("bundle_id", "BUNDLE_ID"),
    ("team_id", "APPLE_TEAM_ID"),
    ("output_dir", "OUTPUT_DIR"),
    ("export_options", "EXPORT_OPTIONS_PATH"),
)

_PATCH_FLAGS = (
    ("set", "set-string"),
    ("set_int", "set-int"),
    ("set_bool", "set-bool"),
    ("delete", "delete"),
    ("array_add", "array-add"),
    ("array_remove", "array-remove"),
)


class _StepFormatter(logging.Formatter):
    """INFO 只输出消息，WARNING 及以上带级别前缀。"""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname}: {message}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return f"[ipa-export] {message}"


class _StderrHandler(logging.StreamHandler):
    """每次输出时取当前的 `sys.stderr`。"""

    def __init__(self) -> None:
        logging.Handler.__init__(self)

    @property
    def stream(self):  # type: ignore[override]
        return sys.stderr


def _setup_logging(verbose: bool) -> None:
    """给包 logger 挂一个 stderr handler（重复调用不会叠加）。"""
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if any(isinstance(h, _StderrHandler) for h in logger.handlers):
        return
    handler = _StderrHandler()
    handler.setFormatter(_StepFormatter())
    logger.addHandler(handler)


def _log_step(message: str) -> None:
    logging.getLogger(_LOGGER_NAME).info("%s", message)


def _exit_on_sigterm(signum: int, frame) -> None:
    logging.getLogger(_LOGGER_NAME).warning("Terminated (signal %d), cleaning up", signum)
    raise SystemExit(128 + signum)


@contextlib.contextmanager
def _sigterm_exits() -> Iterator[None]:
    """导出期间把 SIGTERM 转为 `SystemExit`，签名会话与临时目录照常清理。"""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGTERM, _exit_on_sigterm)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _add_identity_args(
parser: argparse.ArgumentParser) -> None:
    """注册可覆盖环境变量的身份/路径参数。"""
    parser.add_argument(
        "--profile-type",
        default="",
        choices=["", *(p.value for p in DistributionProfile)],
        metavar="PROFILE",
        help="Distribution profile: app-store, ad-hoc, enterprise, development "
        "(env PROFILE_TYPE)",
    )
    parser.add_argument("--bundle-id", default="", help="Bundle identifier (env BUNDLE_ID)")
    parser.add_argument("--team-id", default="", help="Apple team id (env APPLE_TEAM_ID)")
    parser.add_argument(
        "--output-dir",
        default="",
        help=f"Artifacts and reports directory (env OUTPUT_DIR, default {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--export-options",
        default="",
        help="ExportOptions.plist path (env EXPORT_OPTIONS_PATH, default ios/ExportOptions.plist)",
    )


def _layer_env(ns: argparse.Namespace, environ: Mapping[str, str]) -> dict[str, str]:
    """把命令行参数覆盖到环境映射上。"""
    env = dict(environ)
    for attr, key in _ENV_FLAGS:
        value = getattr(ns, attr, "") or ""
        if value:
            env[key] = value
    return env


def _add_patch(patches: list[Patch], kind: str, spec: str) -> None:
    """将一条 `KEY_PATH=VALUE` / `KEY_PATH` 规范转换为 `Patch`。"""
    if kind == "delete":
        if not spec:
            raise SystemExit(f"Error: missing KEY_PATH for {kind}")
        patches.append(Patch(kind=kind, key_path=spec))
        return
    if "=" not in spec:
        raise SystemExit(f"Error: expected KEY_PATH=VALUE, got: {spec}")
    k, v = spec.split("=", 1)
    if not k:
        raise SystemExit(f"Error: empty KEY_PATH in: {spec}")
    patches.append(Patch(kind=kind, key_path=k, value=v))


def _parse_patches(ns: argparse.Namespace) -> list[Patch]:
    patches: list[Patch] = []
    for attr, kind in _PATCH_FLAGS:
        for spec in getattr(ns, attr):
            _add_patch(patches, kind, spec)
    return patches


def build_parser() -> argparse.ArgumentParser:
    """构建并返回 `ipa-export` 命令行参数解析器。"""
    p = argparse.ArgumentParser(
        prog="ipa-export",
        formatter_class=argparse.RawTextHelpFormatter,
        description=(
            "Export an IPA from Runner.xcarchive, falling back through\n"
            "App Store Connect API -> automatic signing -> manual certificates,\n"
            "then validate it and write build reports."
        ),
    )
    p.add_argument("--verbose", action="store_true", help="Verbose logging (echo commands)")
    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    export = sub.add_parser("export", help="Run the full export pipeline")
    _add_identity_args(export)

    options = sub.add_parser("options", help="Only write ExportOptions.plist")
    _add_identity_args(options)

    validate = sub.add_parser("validate", help="Validate an existing ipa for a profile")
    validate.add_argument("ipa", help="Path to the .ipa file")
    _add_identity_args(validate)

    patch = sub.add_parser("patch", help="Patch keys of a plist document")
    patch.add_argument("plist", help="Path to the plist file (e.g. ios/Runner/Info.plist)")
    patch.add_argument("--set", action="append", default=[], metavar="KEY_PATH=VALUE",
                       help="Set value as string")
    patch.add_argument("--set-int", action="append", default=[], metavar="KEY_PATH=VALUE",
                       help="Set value as integer")
    patch.add_argument("--set-bool", action="append", default=[], metavar="KEY_PATH=VALUE",
                       help="Set value as bool (true/false/1/0)")
    patch.add_argument("--delete", action="append", default=[], metavar="KEY_PATH",
                       help="Delete key/path")
    patch.add_argument("--array-add", action="append", default=[], metavar="KEY_PATH=VALUE",
                       help="Append a string element to an array at KEY_PATH")
    patch.add_argument("--array-remove", action="append", default=[], metavar="KEY_PATH=VALUE",
                       help="Remove string elements matching VALUE from array at KEY_PATH")

    return p


def _cmd_export(ns: argparse.Namespace, environ: Mapping[str, str]) -> int:
    env = _layer_env(ns, environ)
    _log_step("Loading build configuration")
    try:
        config = load_config(env)
    except ConfigurationError as e:
        logging.getLogger(_LOGGER_NAME).error("%s", e)
        output_dir = env.get("OUTPUT_DIR") or DEFAULT_OUTPUT_DIR
        write_troubleshooting_guide(output_dir, config=None, reason=f"Configuration error: {e}")
        return EXIT_FAILED

    with _sigterm_exits():
        run = run_export(config)
    _log_step(f"Terminal state: {run.state.kind.value} (exit {run.exit_code})")
    return run.exit_code


def _cmd_options(ns: argparse.Namespace, environ: Mapping[str, str]) -> int:
    try:
        config = load_config(_layer_env(ns, environ))
        export_config = build_export_configuration(
            config.profile, bundle_id=config.bundle_id, team_id=config.team_id
        )
        path = write_export_options(export_config, config.export_options_path)
    except ConfigurationError as e:
        raise SystemExit(f"Error: {e}") from e
    print(path)
    return EXIT_OK


def _cmd_validate(ns: argparse.Namespace, environ: Mapping[str, str]) -> int:
    env = _layer_env(ns, environ)
    ipa = os.path.abspath(os.path.expanduser(ns.ipa))
    if not os.path.isfile(ipa):
        raise SystemExit(f"Error: ipa not found: {ipa}")
    try:
        profile = DistributionProfile.parse(env.get("PROFILE_TYPE", ""))
    except ConfigurationError as e:
        raise SystemExit(f"Error: {e}") from e

    try:
        result = validate_artifact(ipa, profile, expected_bundle_id=env.get("BUNDLE_ID", ""))
    except ValidationError as e:
        print(f"IPA validation failed: {e}")
        for w in e.warnings:
            print(f"  Warning: {w}")
        return EXIT_FAILED

    if result is None:
        print(f"Validation not required for {profile.value} distribution")
        return EXIT_OK
    print("IPA Validation:")
    print(f"  App Bundle       : {result.app_name}")
    print(f"  Bundle ID        : {result.bundle_id}")
    print(f"  Version          : {result.version} ({result.build})")
    print(f"  Minimum OS       : {result.min_os_version or '-'}")
    print(f"  Display Name     : {result.display_name}")
    print(f"  Signing Identity : {result.authority or '-'}")
    print(f"  Warnings         : {len(result.warnings)}")
    for w in result.warnings:
        print(f"    - {w}")
    return EXIT_OK


def _cmd_patch(ns: argparse.Namespace) -> int:
    patches = _parse_patches(ns)
    if not patches:
        raise SystemExit("Error: no patch given (use --set/--set-int/--set-bool/--delete/...)")
    path = os.path.abspath(os.path.expanduser(ns.plist))
    if not os.path.isfile(path):
        raise SystemExit(f"Error: plist not found: {path}")
    try:
        patch_file(path, patches)
    except ConfigurationError as e:
        raise SystemExit(f"Error: {e}") from e
    return EXIT_OK


def main(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    """CLI 入口：解析参数并分派子命令，返回进程退出码。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    _setup_logging(bool(ns.verbose))
    if environ is None:
        environ = os.environ

    if ns.command == "export":
        return _cmd_export(ns, environ)
    if ns.command == "options":
        return _cmd_options(ns, environ)
    if ns.command == "validate":
        return _cmd_validate(ns, environ)
    return _cmd_patch(ns)
