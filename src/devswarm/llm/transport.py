"""モデル呼び出しトランスポート

コアが利用する唯一のモデル呼び出し契約:
``invoke(prompt, model_id) -> TransportResult``

失敗（タイムアウト・HTTPエラー・空応答）は例外ではなく
``TransportResult(success=False, error=...)`` として返す。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..core.config import get_settings
from .client import LLMClient, Message

logger = logging.getLogger(__name__)


class TransportResult(BaseModel):
    """1回のモデル呼び出し結果"""

    model_config = ConfigDict(frozen=True)

    success: bool
    content: str = ""
    error: str | None = Field(default=None, description="失敗理由")

    @classmethod
    def ok(cls, content: str) -> TransportResult:
        return cls(success=True, content=content)

    @classmethod
    def failure(cls, error: str) -> TransportResult:
        return cls(success=False, error=error)


@runtime_checkable
class ModelTransport(Protocol):
    """モデル呼び出しの外部協調者"""

    async def invoke(
        self,
        prompt: str,
        model_id: str,
        system_prompt: str | None = None,
    ) -> TransportResult: ...


class LLMTransport:
    """LLMClient を ModelTransport 契約に適合させるアダプタ

    呼び出しごとに待機時間の上限を設け、途中キャンセルはしない。
    """

    def __init__(self, client: LLMClient | None = None, timeout_seconds: float | None = None):
        self._client = client or LLMClient()
        self._timeout = timeout_seconds or get_settings().llm.request_timeout_seconds

    async def invoke(
        self,
        prompt: str,
        model_id: str,
        system_prompt: str | None = None,
    ) -> TransportResult:
        messages: list[Message] = []
        if system_prompt:
            messages.append(Message(role="system", content=system_prompt))
        messages.append(Message(role="user", content=prompt))

        try:
            response = await asyncio.wait_for(
                self._client.chat(messages, model=model_id),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.error("モデル呼び出しタイムアウト: model=%s, timeout=%.0fs", model_id, self._timeout)
            return TransportResult.failure(f"タイムアウト ({self._timeout:.0f}秒)")
        except httpx.HTTPError as exc:
            logger.error("モデル呼び出しHTTPエラー: model=%s, %s", model_id, exc)
            return TransportResult.failure(f"{type(exc).__name__}: {exc}")
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("モデル呼び出し失敗: model=%s, %s", model_id, exc)
            return TransportResult.failure(f"{type(exc).__name__}: {exc}")

        if not response.content:
            return TransportResult.failure("空の応答")
        return TransportResult.ok(response.content)

    async def close(self) -> None:
        await self._client.close()
