"""LLMクライアント

OpenRouter/OpenAI/Anthropic APIを統一インターフェースで呼び出す。
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from ..core.config import LLMConfig, get_settings

logger = logging.getLogger(__name__)

# 429リトライ上限
MAX_429_RETRIES = 3

# 5xx サーバーエラーリトライ上限
MAX_SERVER_ERROR_RETRIES = 2

# リトライ対象のHTTPステータスコード
_RETRYABLE_STATUS_CODES = {500, 502, 503, 529}

_OPENAI_COMPATIBLE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    "openai": "https://api.openai.com/v1/chat/completions",
}

_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


@dataclass
class Message:
    """チャットメッセージ"""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class LLMResponse:
    """LLM応答"""

    content: str | None
    finish_reason: str
    usage: dict[str, int] = field(default_factory=dict)


def _provider_model_name(provider: str, model: str) -> str:
    """プロバイダーAPIに渡すモデル名

    OpenRouter は provider/name 形式をそのまま使い、
    直接APIでは provider 接頭辞を外す。
    """
    if provider == "openrouter":
        return model
    return model.split("/", 1)[1] if "/" in model else model


class LLMClient:
    """LLMクライアント

    運用上の注意:
        - APIキーは環境変数で管理（config.api_key_env で指定）
        - キー未設定時は初回API呼び出しで ValueError が発生
        - 429 (Rate Limit) は最大3回リトライ（Retry-Afterヘッダーに従う）
        - 5xx (Server Error) は最大2回リトライ（指数バックオフ）
    """

    def __init__(self, config: LLMConfig | None = None):
        """初期化

        Args:
            config: LLM設定（省略時はグローバル設定を使用）
        """
        self.config = config or get_settings().llm
        self._http_client: httpx.AsyncClient | None = None

    def check_api_key(self) -> bool:
        """APIキーが設定されているかチェック（起動時バリデーション用）"""
        return bool(os.environ.get(self.config.api_key_env, ""))

    async def _get_client(self) -> httpx.AsyncClient:
        """HTTPクライアントを取得"""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.request_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """クライアントを閉じる"""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request_with_retry(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        provider_name: str,
    ) -> httpx.Response:
        """429/5xxリトライ付きHTTPリクエスト

        Raises:
            httpx.HTTPStatusError: リトライ上限超過または非リトライ対象エラー
        """
        client = await self._get_client()
        server_error_count = 0

        for attempt in range(MAX_429_RETRIES + 1):
            response = await client.post(url, headers=headers, json=body)

            if response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", 60))
                logger.warning(
                    "%s 429 レートリミット: retry_after=%.1fs, attempt=%d/%d, model=%s",
                    provider_name,
                    retry_after,
                    attempt + 1,
                    MAX_429_RETRIES,
                    body.get("model"),
                )
                if attempt >= MAX_429_RETRIES:
                    raise httpx.HTTPStatusError(
                        f"429リトライ上限超過 ({MAX_429_RETRIES}回)",
                        request=response.request,
                        response=response,
                    )
                await asyncio.sleep(retry_after)
                continue

            if response.status_code in _RETRYABLE_STATUS_CODES:
                server_error_count += 1
                if server_error_count > MAX_SERVER_ERROR_RETRIES:
                    logger.error(
                        "%s %dエラー: リトライ上限超過 (%d回), model=%s",
                        provider_name,
                        response.status_code,
                        MAX_SERVER_ERROR_RETRIES,
                        body.get("model"),
                    )
                    response.raise_for_status()

                # 指数バックオフ: 1s, 2s
                backoff = 2 ** (server_error_count - 1)
                logger.warning(
                    "%s %dサーバーエラー: %ds後にリトライ, attempt=%d/%d",
                    provider_name,
                    response.status_code,
                    backoff,
                    server_error_count,
                    MAX_SERVER_ERROR_RETRIES,
                )
                await asyncio.sleep(backoff)
                continue

            break

        response.raise_for_status()
        return response

    def _get_api_key(self) -> str:
        """APIキーを取得"""
        api_key = os.environ.get(self.config.api_key_env, "")
        if not api_key:
            raise ValueError(f"環境変数 {self.config.api_key_env} が設定されていません")
        return api_key

    async def chat(self, messages: list[Message], model: str | None = None) -> LLMResponse:
        """チャット完了を呼び出す

        Args:
            messages: メッセージリスト
            model: モデルID（省略時は設定値）

        Returns:
            LLM応答
        """
        model_id = model or self.config.model
        if self.config.provider in _OPENAI_COMPATIBLE_URLS:
            return await self._chat_openai_compatible(messages, model_id)
        elif self.config.provider == "anthropic":
            return await self._chat_anthropic(messages, model_id)
        else:
            raise ValueError(f"未サポートのプロバイダー: {self.config.provider}")

    async def _chat_openai_compatible(self, messages: list[Message], model_id: str) -> LLMResponse:
        """OpenAI互換API呼び出し（OpenRouter / OpenAI）"""
        api_key = self._get_api_key()
        provider = self.config.provider

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if provider == "openrouter":
            headers["X-Title"] = "DevSwarm"

        body: dict[str, Any] = {
            "model": _provider_model_name(provider, model_id),
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

        response = await self._request_with_retry(
            url=_OPENAI_COMPATIBLE_URLS[provider],
            headers=headers,
            body=body,
            provider_name="OpenRouter" if provider == "openrouter" else "OpenAI",
        )

        data = response.json()
        choice = data["choices"][0]
        return LLMResponse(
            content=choice["message"].get("content"),
            finish_reason=choice.get("finish_reason") or "stop",
            usage=data.get("usage", {}),
        )

    async def _chat_anthropic(self, messages: list[Message], model_id: str) -> LLMResponse:
        """Anthropic API呼び出し"""
        api_key = self._get_api_key()

        # システムメッセージを抽出
        system_content = ""
        anthropic_messages = []
        for msg in messages:
            if msg.role == "system":
                system_content = msg.content
            else:
                anthropic_messages.append({"role": msg.role, "content": msg.content})

        body: dict[str, Any] = {
            "model": _provider_model_name("anthropic", model_id),
            "messages": anthropic_messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if system_content:
            body["system"] = system_content

        response = await self._request_with_retry(
            url=_ANTHROPIC_URL,
            headers={
                "x-api-key": api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            body=body,
            provider_name="Anthropic",
        )

        data = response.json()
        content = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        return LLMResponse(
            content=content if content else None,
            finish_reason=data.get("stop_reason", "end_turn"),
            usage=data.get("usage", {}),
        )
