"""コンテキストマネージャー

会話履歴とプロジェクトメモリのトークン予算を管理する。
ContextState を唯一書き換えるコンポーネントであり、
圧縮（compact）と強制切り詰め（hard_truncate）もここで行う。

予算状態の遷移:
- HEALTHY -> COMPACTION_DUE (使用率がしきい値以上)
- COMPACTION_DUE -> HEALTHY (compact 成功)
- COMPACTION_DUE -> HARD_TRUNCATION (compact 失敗・削減不足)
- HARD_TRUNCATION -> HEALTHY (古いメッセージを破棄して回復)
"""

from __future__ import annotations

import logging

from ..core.config import ContextConfig, get_settings
from .model_configs import ModelConfig, lookup
from .models import (
    BudgetState,
    ContextState,
    ConversationMessage,
    MessageRole,
    ProjectMemory,
    Summary,
)
from .tokens import TokenEstimator, estimate_max_chars, format_token_count

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... (truncated)"


class ContextManager:
    """1回のRunの会話コンテキストを管理する

    Args:
        model: モデルID または ModelConfig
        config: コンテキスト設定（省略時はグローバル設定を使用）
    """

    def __init__(self, model: str | ModelConfig, config: ContextConfig | None = None) -> None:
        self._config = config or get_settings().context
        model_config = lookup(model) if isinstance(model, str) else model
        self._estimator = TokenEstimator(model_config.provider)
        self._state = ContextState(model=model_config)
        self._budget_state = BudgetState.HEALTHY
        self._recompute()

        logger.debug(
            "ContextManager初期化: model=%s, context=%s, usable=%s",
            model_config.display_name,
            format_token_count(model_config.context_window_tokens),
            format_token_count(model_config.usable_budget),
        )

    # ─── 参照系 ─────────────────────────────────────────

    @property
    def model(self) -> ModelConfig:
        return self._state.model

    @property
    def config(self) -> ContextConfig:
        return self._config

    @property
    def usable_budget(self) -> int:
        return self._state.model.usable_budget

    @property
    def cumulative_tokens(self) -> int:
        return self._state.cumulative_tokens

    @property
    def compaction_count(self) -> int:
        return self._state.compaction_count

    @property
    def budget_state(self) -> BudgetState:
        return self._budget_state

    @property
    def messages(self) -> list[ConversationMessage]:
        """メッセージ列のコピー（メッセージ自体は不変）"""
        return list(self._state.messages)

    @property
    def project_memory(self) -> ProjectMemory:
        """プロジェクトメモリのコピー"""
        return self._state.project_memory.model_copy(deep=True)

    @property
    def threshold_percentage(self) -> float:
        return self._config.compaction_threshold * 100

    def count_tokens(self, text: str) -> int:
        """このマネージャーの推定器でトークン数を数える"""
        return self._estimator.count(text)

    def get_usage_percentage(self) -> float:
        """使用可能予算に対する使用率 [0, 100]"""
        usage = self._state.cumulative_tokens / self.usable_budget * 100
        return max(0.0, min(usage, 100.0))

    def needs_compaction(self) -> bool:
        """圧縮が必要か（使用率がしきい値以上）"""
        return self.get_usage_percentage() >= self.threshold_percentage

    def get_status_summary(self) -> str:
        """表示用の状態スナップショット"""
        memory = self._state.project_memory
        summaries = sum(1 for m in self._state.messages if m.role == MessageRole.SUMMARY)
        return (
            f"Context: {format_token_count(self.cumulative_tokens)}/"
            f"{format_token_count(self.usable_budget)} ({self.get_usage_percentage():.1f}%) | "
            f"Messages: {len(self._state.messages)} | Summaries: {summaries} | "
            f"Compactions: {self.compaction_count} | "
            f"Decisions: {len(memory.decisions)} | Files: {len(memory.files_touched)} | "
            f"Tech: {len(memory.tech_stack)} | State: {self._budget_state.value}"
        )

    def serialize_memory(self) -> str:
        """プロジェクトメモリのプロンプト表現"""
        return self._state.project_memory.serialize(
            max_decisions=self._config.max_decisions_in_memory_view,
            max_files=self._config.max_files_in_memory_view,
        )

    def build_context(self) -> str:
        """プロンプトに注入するコンテキストを構築

        メモリ → 要約済み履歴 → 直近の会話 の順に並べる。
        """
        return self._render_context(self._state.messages)

    def build_prompt(self, request: ConversationMessage) -> str:
        """記録済みの依頼を末尾に置いた送信用プロンプトを構築する

        依頼より前の会話をコンテキストとして前置する。送信サイズが使用可能予算を
        超える場合は古いメッセージから破棄し、それでも超える場合は依頼本文を切り詰める。

        Args:
            request: add_message で追加した現在の依頼
        """
        while True:
            history = [m for m in self._state.messages if m.id != request.id]
            prompt = self._render_prompt(history, request.content)
            if self._estimator.count(prompt) <= self.usable_budget or not history:
                break
            self._state.messages.remove(history[0])
            self._recompute()
            logger.warning("送信プロンプトが予算を超えるため最古のメッセージを破棄しました")
        self._evaluate_state()

        if self._estimator.count(prompt) <= self.usable_budget:
            return prompt
        overhead = self._estimator.count(self._render_prompt([], ""))
        return self._render_prompt([], self._clip(request.content, self.usable_budget - overhead))

    # ─── プロジェクトメモリ ─────────────────────────────

    def set_project_info(self, name: str, description: str, tech_stack: list[str]) -> None:
        """プロジェクト情報を置き換える（冪等）"""
        memory = self._state.project_memory
        memory.project_name = name
        memory.description = description
        memory.tech_stack = []
        memory.add_tech(list(tech_stack))
        self._after_change()

    def add_decision(self, text: str) -> None:
        """設計判断を記録"""
        self._state.project_memory.decisions.append(text)
        self._after_change()

    def add_file(self, path: str) -> None:
        """触れたファイルを記録（重複は除外しない）"""
        self._state.project_memory.files_touched.append(path)
        self._after_change()

    # ─── 会話 ───────────────────────────────────────────

    def add_message(
        self,
        role: MessageRole | str,
        content: str,
        agent_name: str | None = None,
    ) -> ConversationMessage:
        """メッセージを追加する

        しきい値を超えた場合は COMPACTION_DUE にするだけで呼び出し側はブロックしない。
        100% を超える場合のみ、その場で古いメッセージを破棄する。
        """
        role = MessageRole(role)
        content = self._fit_content(content)
        message = ConversationMessage(
            role=role,
            content=content,
            token_count=self._estimator.count(content),
            agent_name=agent_name,
        )
        self._state.messages.append(message)
        self._after_change()
        return message

    def discard_message(self, message: ConversationMessage) -> bool:
        """追加済みのメッセージを取り消す（応答が得られなかった依頼など）

        Returns:
            取り消した場合 True（既に破棄・要約済みなら False）
        """
        remaining = [m for m in self._state.messages if m.id != message.id]
        if len(remaining) == len(self._state.messages):
            return False
        self._state.messages = remaining
        self._recompute()
        self._evaluate_state()
        return True

    def update_model(self, model: str | ModelConfig) -> None:
        """使用モデルを切り替え、新しいモデルの予算で数え直す

        ロールごとにモデルが異なる場合、呼び出し前に切り替える。
        既存メッセージのトークン数は新しいプロバイダーの推定器で再計算する。
        """
        model_config = lookup(model) if isinstance(model, str) else model
        previous = self._state.model
        if model_config == previous:
            return

        self._state.model = model_config
        if model_config.provider != previous.provider:
            self._estimator = TokenEstimator(model_config.provider)
            self._state.messages = [
                m.model_copy(update={"token_count": self._estimator.count(m.content)})
                for m in self._state.messages
            ]
        logger.info(
            "モデル切り替え: %s -> %s (使用可能予算 %s -> %s)",
            previous.display_name,
            model_config.display_name,
            format_token_count(previous.usable_budget),
            format_token_count(model_config.usable_budget),
        )
        self._after_change()

    def messages_for_compaction(self) -> tuple[list[ConversationMessage], int]:
        """要約対象となる古いメッセージ列とその件数

        直近 keep_last_messages 件は原文のまま残す。会話がそれより短い場合は
        最新1件だけを残す。
        """
        messages = self._state.messages
        keep = self._config.keep_last_messages
        if len(messages) > keep:
            count = len(messages) - keep
        elif len(messages) > 1:
            count = len(messages) - 1
        else:
            count = 0
        return list(messages[:count]), count

    def compact(self, summary: Summary, replace_count: int) -> bool:
        """先頭 replace_count 件を要約メッセージ1件で置き換える

        要約の files_created / tech_stack はプロジェクトメモリへ統合する。
        累積トークンが厳密に減らなかった場合は元の状態に戻して False を返す。

        Raises:
            ValueError: replace_count が範囲外の場合
        """
        messages = self._state.messages
        if not 0 < replace_count <= len(messages):
            raise ValueError(
                f"replace_count は 1〜{len(messages)} の範囲で指定してください: {replace_count}"
            )

        before = self._state.cumulative_tokens
        saved_messages = list(messages)
        saved_memory = self._state.project_memory.model_copy(deep=True)

        summary_message = ConversationMessage(
            role=MessageRole.SUMMARY,
            content=summary.content,
            token_count=self._estimator.count(summary.content),
            agent_name="Summarizer",
        )
        memory = self._state.project_memory
        for path in summary.files_created:
            if path not in memory.files_touched:
                memory.files_touched.append(path)
        memory.add_tech(summary.tech_stack or [])

        self._state.messages = [summary_message, *messages[replace_count:]]
        self._recompute()

        if self._state.cumulative_tokens >= before:
            logger.warning(
                "圧縮でトークンが減りませんでした: %d -> %d（ロールバック）",
                before,
                self._state.cumulative_tokens,
            )
            self._state.messages = saved_messages
            self._state.project_memory = saved_memory
            self._recompute()
            return False

        self._state.compaction_count += 1
        self._evaluate_state()
        logger.info(
            "圧縮完了: %d件を要約, %sトークン削減 (使用率 %.1f%%)",
            replace_count,
            format_token_count(before - self._state.cumulative_tokens),
            self.get_usage_percentage(),
        )
        return True

    def hard_truncate(self, keep_latest: bool = False) -> int:
        """古いメッセージから破棄して使用率をしきい値未満に戻す

        プロジェクトメモリは対象外。

        Args:
            keep_latest: 最新のメッセージ1件を必ず残す

        Returns:
            破棄したメッセージ数
        """
        self._budget_state = BudgetState.HARD_TRUNCATION
        floor = 1 if keep_latest else 0
        dropped = 0
        while len(self._state.messages) > floor and (
            self.needs_compaction() or self._state.cumulative_tokens > self.usable_budget
        ):
            self._state.messages.pop(0)
            dropped += 1
            self._recompute()

        logger.warning(
            "強制切り詰め: %d件のメッセージを破棄 (使用率 %.1f%%)",
            dropped,
            self.get_usage_percentage(),
        )
        self._evaluate_state()
        return dropped

    # ─── ライフサイクル ─────────────────────────────────

    def reset(self) -> None:
        """会話とプロジェクトメモリを初期化（Run開始時）"""
        self._state.messages = []
        self._state.project_memory = ProjectMemory()
        self._state.compaction_count = 0
        self._recompute()
        self._budget_state = BudgetState.HEALTHY
        logger.debug("コンテキストをクリアしました")

    def snapshot(self) -> ContextState:
        """実行中Runの再開用に状態を複製"""
        return self._state.model_copy(deep=True)

    @classmethod
    def restore(cls, state: ContextState, config: ContextConfig | None = None) -> ContextManager:
        """スナップショットからマネージャーを復元"""
        manager = cls(state.model, config)
        manager._state = state.model_copy(deep=True)
        manager._recompute()
        manager._evaluate_state()
        return manager

    # ─── 内部処理 ───────────────────────────────────────

    def _recompute(self) -> None:
        """累積トークンを最初から再計算する"""
        message_tokens = sum(m.token_count for m in self._state.messages)
        memory_tokens = self._estimator.count(self.serialize_memory())
        self._state.cumulative_tokens = message_tokens + memory_tokens

    def _evaluate_state(self) -> None:
        if self.needs_compaction():
            self._budget_state = BudgetState.COMPACTION_DUE
        else:
            self._budget_state = BudgetState.HEALTHY

    def _after_change(self) -> None:
        self._recompute()
        if self._state.cumulative_tokens > self.usable_budget:
            logger.warning(
                "使用可能予算を超過: %d > %d",
                self._state.cumulative_tokens,
                self.usable_budget,
            )
            self.hard_truncate(keep_latest=True)
            return

        previous = self._budget_state
        self._evaluate_state()
        if self._budget_state == BudgetState.COMPACTION_DUE and previous != self._budget_state:
            logger.info("コンテキスト使用率がしきい値に到達: %.1f%%", self.get_usage_percentage())

    def _render_context(self, messages: list[ConversationMessage]) -> str:
        sections: list[str] = []

        memory = self.serialize_memory()
        if memory:
            sections.append(f"<working_memory>\n{memory}\n</working_memory>")

        summaries = [m for m in messages if m.role == MessageRole.SUMMARY]
        if summaries:
            joined = "\n\n---\n\n".join(m.content for m in summaries)
            sections.append(
                f"<conversation_history_summary>\n{joined}\n</conversation_history_summary>"
            )

        recent = [m for m in messages if m.role != MessageRole.SUMMARY]
        if recent:
            joined = "\n\n".join(m.render() for m in recent)
            sections.append(f"<recent_conversation>\n{joined}\n</recent_conversation>")

        return "\n\n".join(sections)

    def _render_prompt(self, history: list[ConversationMessage], request: str) -> str:
        context = self._render_context(history)
        if not context:
            return request
        return f"{context}\n\n## 現在の依頼\n{request}"

    def _fit_content(self, content: str) -> str:
        """単独で予算を超える本文を切り詰める"""
        room = self.usable_budget - self._estimator.count(self.serialize_memory())
        return self._clip(content, room)

    def _clip(self, content: str, room: int) -> str:
        """本文を room トークン以内に切り詰める（マーカー込み）"""
        if self._estimator.count(content) <= room:
            return content

        if room <= self._estimator.count(TRUNCATION_MARKER):
            return TRUNCATION_MARKER.strip()

        limit = estimate_max_chars(room, self._state.model.provider)
        clipped = content[:limit] + TRUNCATION_MARKER
        while limit > 0 and self._estimator.count(clipped) > room:
            limit = int(limit * 0.9)
            clipped = content[:limit] + TRUNCATION_MARKER
        logger.warning("予算を超える本文を切り詰めました: %d -> %d文字", len(content), limit)
        return clipped
