"""コンテキスト圧縮ドライバ

ContextManager と Summarizer を組み合わせ、使用率がしきい値以上のときに
要約による圧縮を行う。要約で十分に減らない場合は強制切り詰めにフォールバックする。
要約の完了と compact の適用は、次の add_message より前に直列で行われる。
"""

from __future__ import annotations

import enum
import logging

from pydantic import BaseModel, ConfigDict

from .manager import ContextManager
from .summarizer import Summarizer

logger = logging.getLogger(__name__)


class CompactionMethod(str, enum.Enum):
    """実施した圧縮方法"""

    NONE = "none"
    SUMMARY = "summary"
    HARD_TRUNCATION = "hard_truncation"


class CompactionOutcome(BaseModel):
    """圧縮結果"""

    model_config = ConfigDict(frozen=True)

    performed: bool
    method: CompactionMethod = CompactionMethod.NONE
    usage_before: float
    usage_after: float
    tokens_saved: int = 0
    messages_compacted: int = 0
    dropped_messages: int = 0


class ContextCompactor:
    """予算確保の手続き

    Args:
        manager: 対象の ContextManager
        summarizer: 要約器
    """

    def __init__(self, manager: ContextManager, summarizer: Summarizer) -> None:
        self.manager = manager
        self.summarizer = summarizer

    async def ensure_budget(self) -> CompactionOutcome:
        """しきい値以上なら圧縮し、しきい値未満の状態に戻す"""
        manager = self.manager
        usage_before = manager.get_usage_percentage()
        tokens_before = manager.cumulative_tokens

        if not manager.needs_compaction():
            return CompactionOutcome(
                performed=False, usage_before=usage_before, usage_after=usage_before
            )

        method = CompactionMethod.SUMMARY
        compacted = 0
        to_summarize, count = manager.messages_for_compaction()
        if count > 0:
            summary = await self.summarizer.summarize(to_summarize, manager.project_memory)
            if manager.compact(summary, count):
                compacted = count
            else:
                method = CompactionMethod.HARD_TRUNCATION

        dropped = 0
        if compacted == 0 or manager.needs_compaction():
            method = CompactionMethod.HARD_TRUNCATION
            dropped = manager.hard_truncate()

        outcome = CompactionOutcome(
            performed=True,
            method=method,
            usage_before=usage_before,
            usage_after=manager.get_usage_percentage(),
            tokens_saved=tokens_before - manager.cumulative_tokens,
            messages_compacted=compacted,
            dropped_messages=dropped,
        )
        logger.info(
            "予算確保: method=%s, %.1f%% -> %.1f%%",
            outcome.method.value,
            outcome.usage_before,
            outcome.usage_after,
        )
        return outcome
