"""エージェント基底クラス

全ロール共通の1往復（プロンプト送信 → 応答受信）を提供する。
ContextManager が割り当てられている場合は、依頼を会話に記録してから
管理下のコンテキストで送信プロンプトを組み立てる。応答が得られなかった
依頼は会話から取り消し、成功時のみアシスタントのターンを記録する。
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..context.manager import ContextManager
from ..context.models import ConversationMessage, MessageRole
from ..llm.prompts import get_system_prompt
from ..llm.transport import ModelTransport
from .models import AgentResponse, AgentRole

logger = logging.getLogger(__name__)

TRUNCATED_MARKER = "\n... (truncated)"


def render_files(files: dict[str, str], max_chars: int | None = None) -> str:
    """ファイル集合をプロンプト埋め込み用に整形する

    Args:
        files: パス -> 内容
        max_chars: ファイルごとの最大文字数（超過分は切り詰めマーカーに置換）
    """
    blocks: list[str] = []
    for path, content in files.items():
        body = content
        if max_chars is not None and len(content) > max_chars:
            body = content[:max_chars] + TRUNCATED_MARKER
        blocks.append(f"--- FILE: {path} ---\n{body}\n--- END FILE ---")
    return "\n\n".join(blocks)


class BaseAgent:
    """ロール特化エージェントの基底

    Args:
        transport: モデル呼び出しトランスポート
        model_id: 使用するモデルID
        context_manager: 会話コンテキスト（None の場合はステートレス）
        name: 表示名（省略時はクラスの既定名）
    """

    role: AgentRole = AgentRole.CODER
    default_name: str = "Agent"

    def __init__(
        self,
        transport: ModelTransport,
        model_id: str,
        context_manager: ContextManager | None = None,
        name: str | None = None,
    ) -> None:
        self._transport = transport
        self.model_id = model_id
        self.context_manager = context_manager
        self.name = name or self.default_name
        self.system_prompt = get_system_prompt(self.role.value)

    async def process_task(self, task: str, context: dict[str, Any] | None = None) -> AgentResponse:
        """1回のモデル往復を行う

        Args:
            task: 依頼内容
            context: プロンプトに付加する補助情報（JSONとして埋め込む）

        Returns:
            AgentResponse（失敗時も例外にせず success=False で返す）
        """
        prompt = task
        if context:
            context_json = json.dumps(context, ensure_ascii=False, indent=2, default=str)
            prompt += f"\n\n## コンテキスト\n{context_json}"
        return await self._chat(prompt)

    async def _chat(self, prompt: str) -> AgentResponse:
        manager = self.context_manager
        full_prompt = prompt
        request: ConversationMessage | None = None
        if manager is not None:
            # 送信内容は記録後の（切り詰め・破棄済みの）状態から組み立てる
            request = manager.add_message(MessageRole.USER, prompt, agent_name=self.name)
            full_prompt = manager.build_prompt(request)

        try:
            result = await self._transport.invoke(
                full_prompt, self.model_id, system_prompt=self.system_prompt
            )
        except Exception as exc:
            logger.error("%s: モデル呼び出しで例外発生", self.name, exc_info=True)
            self._discard(request)
            return self._failure(f"{type(exc).__name__}: {exc}")

        if not result.success:
            logger.warning("%s: モデル呼び出し失敗: %s", self.name, result.error)
            self._discard(request)
            return self._failure(result.error or "不明なエラー")

        if manager is not None:
            manager.add_message(MessageRole.ASSISTANT, result.content, agent_name=self.name)

        return AgentResponse(
            success=True,
            content=result.content,
            agent_name=self.name,
            role=self.role,
        )

    def _discard(self, request: ConversationMessage | None) -> None:
        if request is not None and self.context_manager is not None:
            self.context_manager.discard_message(request)

    def _failure(self, error: str) -> AgentResponse:
        return AgentResponse(success=False, error=error, agent_name=self.name, role=self.role)
