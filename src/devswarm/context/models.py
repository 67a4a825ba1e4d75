"""コンテキスト管理のデータモデル

会話メッセージ、プロジェクトメモリ、要約、コンテキスト状態。
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from ..core.ids import generate_id
from .model_configs import ModelConfig


class MessageRole(str, enum.Enum):
    """会話メッセージのロール"""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    SUMMARY = "summary"


class BudgetState(str, enum.Enum):
    """トークン予算の状態"""

    HEALTHY = "healthy"
    COMPACTION_DUE = "compaction_due"
    HARD_TRUNCATION = "hard_truncation"


class ConversationMessage(BaseModel):
    """会話メッセージ

    追加後は不変。token_count は追加時に一度だけ計算される。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    token_count: int = Field(..., ge=0)
    agent_name: str | None = None

    def render(self) -> str:
        """プロンプト埋め込み用の表現"""
        prefix = f"[{self.agent_name}]" if self.agent_name else f"[{self.role.value.upper()}]"
        return f"{prefix}:\n{self.content}"


class ProjectMemory(BaseModel):
    """圧縮されない永続的なプロジェクト知識

    ヘッダー（名前・説明・技術スタック）以外は追記のみ。
    """

    project_name: str = ""
    description: str = ""
    tech_stack: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    files_touched: list[str] = Field(default_factory=list)

    def add_tech(self, items: list[str]) -> None:
        """技術スタックに未登録の項目を追加"""
        for item in items:
            if item and item not in self.tech_stack:
                self.tech_stack.append(item)

    def serialize(self, max_decisions: int = 20, max_files: int = 10) -> str:
        """プロンプトに注入するメモリブロックを生成"""
        parts: list[str] = []
        if self.project_name:
            parts.append(f"Project: {self.project_name}")
        if self.description:
            parts.append(f"Description: {self.description}")
        if self.tech_stack:
            parts.append(f"Tech Stack: {', '.join(self.tech_stack)}")
        if self.decisions:
            shown = self.decisions[-max_decisions:]
            parts.append("Key Decisions:\n" + "\n".join(f"  • {d}" for d in shown))
        if self.files_touched:
            parts.append(f"Recent Files: {', '.join(self.files_touched[-max_files:])}")
        return "\n".join(parts)


class Summary(BaseModel):
    """会話の先頭区間を置き換える要約"""

    model_config = ConfigDict(frozen=True)

    content: str
    token_count: int = Field(..., ge=0)
    original_token_count: int = Field(..., ge=0)
    key_facts: list[str] = Field(default_factory=list)
    files_created: list[str] = Field(default_factory=list)
    tech_stack: list[str] | None = None
    message_count: int = Field(default=0, ge=0)
    is_fallback: bool = False

    @property
    def reduction_ratio(self) -> float:
        """元トークン数に対する削減率（0.0〜1.0、増加時は負）"""
        if self.original_token_count == 0:
            return 0.0
        return 1 - self.token_count / self.original_token_count


class ContextState(BaseModel):
    """ContextManager が単独で所有する会話状態"""

    model: ModelConfig
    messages: list[ConversationMessage] = Field(default_factory=list)
    project_memory: ProjectMemory = Field(default_factory=ProjectMemory)
    cumulative_tokens: int = Field(default=0, ge=0)
    compaction_count: int = Field(default=0, ge=0)
