"""
签名策略级联：按固定顺序逐个尝试，首个成功即停止。

策略严格串行执行，它们共享同一个钥匙串与 profile 目录。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import CredentialUnavailable
from .keychain import signing_session
from .strategies import ExportContext, ExportStrategy, default_strategies
from .types import StepRecord

logger = logging.getLogger(__name__)

SUCCEEDED = "Succeeded"
EXHAUSTED = "Exhausted"


@dataclass(frozen=True)
class CascadeOutcome:
    succeeded: bool
    artifact_path: str
    steps: tuple[StepRecord, ...]

    @property
    def terminal(self) -> str:
        return SUCCEEDED if self.succeeded else EXHAUSTED

    def outcome_of(self, strategy: str) -> StepRecord | None:
        for step in self.steps:
            if step.strategy == strategy:
                return step
        return None


def run_cascade(
    ctx: ExportContext,
    strategies: Sequence[ExportStrategy] | None = None,
) -> CascadeOutcome:
    """执行级联并返回终态与每一步的记录。"""
    if strategies is None:
        strategies = default_strategies()

    steps: list[StepRecord] = []
    with signing_session(ctx.keychain):
        for strategy in strategies:
            if not strategy.applies_to(ctx.config.profile):
                detail = f"not used for {ctx.config.profile.value} distribution"
                logger.info("Skipping %s: %s", strategy.name, detail)
                steps.append(StepRecord(strategy.name, "skipped", detail))
                continue
            try:
                strategy.check(ctx)
            except CredentialUnavailable as e:
                detail = f"credentials incomplete ({', '.join(e.missing)})"
                logger.warning("Skipping %s: %s", strategy.name, detail)
                steps.append(StepRecord(strategy.name, "skipped", detail))
                continue

            logger.info("Attempting export with %s...", strategy.name)
            result = strategy.attempt(ctx)
            if result.ok:
                logger.info("%s export successful: %s", strategy.name, result.artifact_path)
                steps.append(StepRecord(strategy.name, "succeeded", result.artifact_path))
                return CascadeOutcome(True, result.artifact_path, tuple(steps))

            logger.warning("%s export failed: %s", strategy.name, result.reason)
            steps.append(StepRecord(strategy.name, "failed", result.reason))

    logger.error("All export methods failed")
    return CascadeOutcome(False, "", tuple(steps))
