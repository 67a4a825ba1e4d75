"""要約器

会話履歴の先頭区間をモデルで要約し、Summary を生成する。
モデル呼び出しや解析に失敗した場合は決定的なフォールバック要約を返し、
summarize() が例外を送出することはない。
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from ..core.config import ContextConfig, get_settings
from ..llm.prompts import SUMMARIZER_SYSTEM
from ..llm.response_parser import StrList, parse_model
from ..llm.transport import ModelTransport
from .models import ConversationMessage, ProjectMemory, Summary
from .tokens import TokenEstimator

logger = logging.getLogger(__name__)

FALLBACK_HEADER = "[要約失敗 - 会話の抜粋を保持]"


class SummarizerOutput(BaseModel):
    """要約モデルの出力"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    summary: str = ""
    key_facts: StrList = Field(default_factory=list, alias="keyFacts")
    decisions: StrList = Field(default_factory=list)
    files_created: StrList = Field(default_factory=list, alias="filesCreated")
    tech_stack: StrList | None = Field(default=None, alias="techStack")
    active_issues: StrList = Field(default_factory=list, alias="activeIssues")


def format_summary_content(output: SummarizerOutput) -> str:
    """要約出力を読みやすいテキストに整形"""
    sections: list[str] = []
    if output.summary:
        sections.append(f"## Summary\n{output.summary}")
    if output.tech_stack:
        sections.append(f"## Tech Stack\n{', '.join(output.tech_stack)}")
    if output.key_facts:
        sections.append("## Key Facts\n" + "\n".join(f"• {f}" for f in output.key_facts))
    if output.decisions:
        sections.append("## Decisions Made\n" + "\n".join(f"• {d}" for d in output.decisions))
    if output.files_created:
        sections.append(
            "## Files Created/Modified\n" + "\n".join(f"• {f}" for f in output.files_created)
        )
    if output.active_issues:
        sections.append("## Active Issues\n" + "\n".join(f"• {i}" for i in output.active_issues))
    return "\n\n".join(sections)


class Summarizer:
    """モデル支援の会話圧縮

    Args:
        transport: モデル呼び出しトランスポート
        model_id: 要約に使うモデル（省略時は設定の summarization_model）
        config: コンテキスト設定
        estimator: トークン推定器
    """

    def __init__(
        self,
        transport: ModelTransport,
        model_id: str | None = None,
        config: ContextConfig | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or get_settings().context
        self.model_id = model_id or self._config.summarization_model
        self._estimator = estimator or TokenEstimator()

    async def summarize(
        self,
        messages: list[ConversationMessage],
        memory: ProjectMemory | None = None,
    ) -> Summary:
        """メッセージ列を1つの Summary に要約する"""
        original_tokens = self._estimator.count("\n\n".join(m.content for m in messages))
        prompt = self._build_prompt(messages, memory)

        try:
            result = await self._transport.invoke(
                prompt, self.model_id, system_prompt=SUMMARIZER_SYSTEM
            )
        except Exception:
            logger.error("要約モデル呼び出しで例外発生、フォールバック要約を使用", exc_info=True)
            return self.fallback_summary(messages, memory, original_tokens)

        if not result.success:
            logger.warning("要約モデル呼び出し失敗、フォールバック要約を使用: %s", result.error)
            return self.fallback_summary(messages, memory, original_tokens)

        output = parse_model(result.content, SummarizerOutput)
        content = format_summary_content(output) if output else ""
        if output is None or not content:
            logger.warning("要約レスポンスを解析できません、フォールバック要約を使用")
            return self.fallback_summary(messages, memory, original_tokens)

        token_count = self._estimator.count(content)
        logger.debug(
            "%d件を要約: %d -> %dトークン", len(messages), original_tokens, token_count
        )
        return Summary(
            content=content,
            token_count=token_count,
            original_token_count=original_tokens,
            key_facts=output.key_facts + output.decisions,
            files_created=output.files_created,
            tech_stack=output.tech_stack,
            message_count=len(messages),
        )

    def fallback_summary(
        self,
        messages: list[ConversationMessage],
        memory: ProjectMemory | None = None,
        original_tokens: int | None = None,
    ) -> Summary:
        """モデルを使わない決定的な要約

        各メッセージの先頭 fallback_chars_per_message 文字を連結する。
        """
        limit = self._config.fallback_chars_per_message
        lines = [FALLBACK_HEADER]
        for message in messages:
            excerpt = message.content[:limit]
            suffix = "..." if len(message.content) > limit else ""
            lines.append(f"{message.role.value}: {excerpt}{suffix}")
        content = "\n".join(lines)

        files: list[str] = []
        if memory is not None:
            for path in memory.files_touched:
                if path not in files:
                    files.append(path)

        if original_tokens is None:
            original_tokens = self._estimator.count("\n\n".join(m.content for m in messages))

        return Summary(
            content=content,
            token_count=self._estimator.count(content),
            original_token_count=original_tokens,
            key_facts=[],
            files_created=files,
            tech_stack=[],
            message_count=len(messages),
            is_fallback=True,
        )

    @staticmethod
    def _build_prompt(messages: list[ConversationMessage], memory: ProjectMemory | None) -> str:
        conversation = "\n\n---\n\n".join(
            f"[{m.role.value.upper()}{f' - {m.agent_name}' if m.agent_name else ''}]:\n{m.content}"
            for m in messages
        )

        prefix = ""
        if memory is not None and memory.project_name:
            prefix = (
                "## 既存のプロジェクト情報\n"
                f"Project: {memory.project_name}\n"
                f"Description: {memory.description}\n"
                f"Tech Stack: {', '.join(memory.tech_stack)}\n"
                f"Previous Decisions: {'; '.join(memory.decisions[-20:])}\n\n"
                "---\n\n## 要約対象の会話\n"
            )

        return (
            f"{prefix}{conversation}\n\n---\n\n"
            "ファイルパス・技術選定・判断事項を漏らさずに、この会話を要約してください。"
        )
