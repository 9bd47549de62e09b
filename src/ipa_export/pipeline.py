"""
IPA export pipeline.

One build is one linear pass:
1) Truncate outputs left behind by an earlier run (the upstream archive stays).
2) Write ExportOptions.plist for the distribution profile.
3) Run the signing strategy cascade.
4) Validate the IPA (app-store only).
5) Report. Every terminal state writes its report before returning:
   - IPA exported and valid            -> summary, exit 0
   - cascade exhausted, archive exists -> archive-only package + summary, exit 0
   - cascade exhausted, no archive     -> troubleshooting guide + summary, exit 1
   - app-store IPA fails validation    -> IPA moved to Runner.rejected.ipa,
                                          troubleshooting guide + summary, exit 1
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Sequence
from dataclasses import dataclass

from .cascade import CascadeOutcome, run_cascade
from .config import BuildConfig
from .errors import ConfigurationError, ValidationError
from .export_options import build_export_configuration, write_export_options
from .keychain import SigningKeychain
from .report import (
    create_archive_only_export,
    stale_outputs,
    write_summary,
    write_troubleshooting_guide,
)
from .strategies import ExportContext, ExportStrategy
from .types import BuildArtifactState
from .validate import ValidationResult, validate_artifact

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1


@dataclass(frozen=True)
class ExportRun:
    state: BuildArtifactState
    exit_code: int
    outcome: CascadeOutcome | None = None
    validation: ValidationResult | None = None
    failure: str = ""


def prepare_output_dir(output_dir: str) -> None:
    """清除旧产物，保证本次结果不会与上一次混淆。"""
    os.makedirs(output_dir, exist_ok=True)
    for path in stale_outputs(output_dir):
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
            logger.debug("Removed stale output: %s", path)
        elif os.path.lexists(path):
            os.remove(path)
            logger.debug("Removed stale output: %s", path)


def run_export(
    config: BuildConfig,
    *,
    strategies: Sequence[ExportStrategy] | None = None,
) -> ExportRun:
    """执行完整导出流程并返回终态。"""
    logger.info("Starting IPA export for %s distribution", config.profile.value)
    prepare_output_dir(config.output_dir)

    if os.path.isdir(config.archive_path):
        logger.info("Archive found: %s", config.archive_path)
    else:
        logger.warning("Archive not found: %s", config.archive_path)

    try:
        export_config = build_export_configuration(
            config.profile, bundle_id=config.bundle_id, team_id=config.team_id
        )
        options_path = write_export_options(export_config, config.export_options_path)
    except (ConfigurationError, OSError) as e:
        failure = f"Failed to create ExportOptions.plist: {e}"
        logger.error("%s", failure)
        write_troubleshooting_guide(config.output_dir, config=config, reason=failure)
        write_summary(config, BuildArtifactState.none(), (), failure=failure)
        return ExportRun(BuildArtifactState.none(), EXIT_FAILED, failure=failure)

    ctx = ExportContext(
        config=config,
        options_path=options_path,
        keychain=SigningKeychain(config.keychain_path, config.profiles_dir),
    )
    outcome = run_cascade(ctx, strategies)

    if outcome.succeeded:
        return _finish_packaged(config, outcome)
    return _finish_exhausted(config, outcome)


def _reject_artifact(config: BuildConfig, ipa_path: str) -> str:
    """把未通过校验的 IPA 移出 `Runner.ipa`，返回附加到失败原因的说明。"""
    try:
        os.replace(ipa_path, config.rejected_ipa_path)
    except OSError as e:
        logger.error("Could not move rejected IPA aside: %s", e)
        return f"; could not move rejected IPA: {e}"
    logger.warning("Rejected IPA moved to %s", config.rejected_ipa_path)
    return f"; IPA moved to {os.path.basename(config.rejected_ipa_path)}"


def _finish_packaged(config: BuildConfig, outcome: CascadeOutcome) -> ExportRun:
    state = BuildArtifactState.packaged(outcome.artifact_path)
    try:
        validation = validate_artifact(
            outcome.artifact_path, config.profile, expected_bundle_id=config.bundle_id
        )
    except ValidationError as e:
        detail = str(e) + _reject_artifact(config, outcome.artifact_path)
        if not os.path.exists(outcome.artifact_path):
            state = BuildArtifactState.none()
        failure = f"IPA validation failed: {detail}"
        if e.warnings:
            failure += "\nWarnings:\n" + "\n".join(f"- {w}" for w in e.warnings)
        write_troubleshooting_guide(
            config.output_dir, config=config, steps=outcome.steps, reason=failure
        )
        write_summary(config, state, outcome.steps, failure=detail)
        return ExportRun(state, EXIT_FAILED, outcome=outcome, failure=detail)

    logger.info("IPA export completed successfully: %s", outcome.artifact_path)
    write_summary(config, state, outcome.steps, validation=validation)
    return ExportRun(state, EXIT_OK, outcome=outcome, validation=validation)


def _finish_exhausted(config: BuildConfig, outcome: CascadeOutcome) -> ExportRun:
    for step in outcome.steps:
        logger.info("  %s: %s%s", step.strategy, step.outcome,
                    f" ({step.detail})" if step.detail else "")
    reason = "All export methods failed"
    write_troubleshooting_guide(
        config.output_dir, config=config, steps=outcome.steps, reason=reason
    )

    if os.path.isdir(config.archive_path):
        logger.warning("IPA export failed, creating archive-only export")
        try:
            create_archive_only_export(config)
        except OSError as e:
            failure = f"{reason}; archive-only export failed: {e}"
            logger.error("%s", failure)
        else:
            state = BuildArtifactState.archive_only(config.archive_path)
            write_summary(config, state, outcome.steps)
            return ExportRun(state, EXIT_OK, outcome=outcome, failure=reason)
    else:
        failure = f"{reason} and no archive is available"
        logger.error("%s", failure)

    state = BuildArtifactState.none()
    write_summary(config, state, outcome.steps, failure=failure)
    return ExportRun(state, EXIT_FAILED, outcome=outcome, failure=failure)
