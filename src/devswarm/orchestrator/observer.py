"""Run オブザーバー

進捗表示などの副作用を Orchestrator から切り離し、外部から注入する。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..agents.models import PlanTask, ReviewResult
    from ..context.compactor import CompactionOutcome
    from .state import RunPhase

logger = logging.getLogger(__name__)


class RunObserver(Protocol):
    """Orchestrator の遷移点で呼ばれるコールバック"""

    def on_phase_change(self, previous: RunPhase, current: RunPhase) -> None: ...

    def on_task_status(self, task: PlanTask) -> None: ...

    def on_compaction(self, outcome: CompactionOutcome) -> None: ...

    def on_review(self, review: ReviewResult) -> None: ...

    def on_report(self, report: str) -> None: ...


class LoggingObserver:
    """logging に出力する既定のオブザーバー"""

    def on_phase_change(self, previous: RunPhase, current: RunPhase) -> None:
        logger.info("フェーズ遷移: %s -> %s", previous.value, current.value)

    def on_task_status(self, task: PlanTask) -> None:
        if task.last_error:
            logger.info(
                "タスク %s: %s (attempts=%d, error=%s)",
                task.id,
                task.status.value,
                task.attempts,
                task.last_error,
            )
        else:
            logger.info("タスク %s: %s (attempts=%d)", task.id, task.status.value, task.attempts)

    def on_compaction(self, outcome: CompactionOutcome) -> None:
        logger.info(
            "コンテキスト圧縮: %s, %.1f%% -> %.1f%% (%dトークン削減)",
            outcome.method.value,
            outcome.usage_before,
            outcome.usage_after,
            outcome.tokens_saved,
        )

    def on_review(self, review: ReviewResult) -> None:
        logger.info(
            "レビュー: %s, completion=%d%%, quality=%d/100",
            "承認" if review.approved else "未承認",
            review.completion_percentage,
            review.code_quality.score,
        )
        for blocker in review.blockers:
            logger.warning("ブロッカー: %s", blocker)

    def on_report(self, report: str) -> None:
        logger.info("納品レポート生成完了 (%d文字)", len(report))
