"""モデル設定レジストリ

モデルIDからコンテキストウィンドウ・出力予約トークン等を引く。
未知のモデルIDは失敗せず、保守的なデフォルト設定に解決される。
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["anthropic", "openai", "google", "meta", "mistral", "deepseek", "other"]


class ModelConfig(BaseModel):
    """モデルごとのトークン上限とコスト"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="モデルID（provider/name形式）")
    display_name: str = Field(..., description="表示名")
    context_window_tokens: int = Field(..., gt=0, description="コンテキストウィンドウ")
    reserved_output_tokens: int = Field(..., ge=0, description="出力用に予約するトークン数")
    provider: Provider = Field(default="other")
    cost_per_1k_input: float = Field(default=0.0, ge=0.0, description="入力1Kトークンあたりの料金(USD)")
    cost_per_1k_output: float = Field(default=0.0, ge=0.0, description="出力1Kトークンあたりの料金(USD)")

    @property
    def usable_budget(self) -> int:
        """プロンプトに使えるトークン数"""
        return max(self.context_window_tokens - self.reserved_output_tokens, 1)


def _cfg(
    model_id: str,
    name: str,
    provider: Provider,
    context: int,
    output: int,
    cost_in: float,
    cost_out: float,
) -> ModelConfig:
    return ModelConfig(
        id=model_id,
        display_name=name,
        provider=provider,
        context_window_tokens=context,
        reserved_output_tokens=output,
        cost_per_1k_input=cost_in,
        cost_per_1k_output=cost_out,
    )


# ─── レジストリ ─────────────────────────────────────────

# (id, 表示名, provider, コンテキスト, 出力予約, 入力単価, 出力単価)
_REGISTRY: list[tuple[str, str, Provider, int, int, float, float]] = [
    # Anthropic
    ("anthropic/claude-opus-4", "Claude Opus 4", "anthropic", 200_000, 32_000, 0.015, 0.075),
    ("anthropic/claude-sonnet-4", "Claude Sonnet 4", "anthropic", 200_000, 64_000, 0.003, 0.015),
    (
        "anthropic/claude-sonnet-4.5", "Claude Sonnet 4.5", "anthropic", 1_000_000, 64_000, 0.003, 0.015,
    ),
    (
        "anthropic/claude-haiku-4.5", "Claude Haiku 4.5", "anthropic", 200_000, 12_000, 0.00025, 0.00125,
    ),
    ("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", "anthropic", 200_000, 8_192, 0.003, 0.015),
    ("anthropic/claude-3.5-haiku", "Claude 3.5 Haiku", "anthropic", 200_000, 8_192, 0.0008, 0.004),
    ("anthropic/claude-3-opus", "Claude 3 Opus", "anthropic", 200_000, 4_096, 0.015, 0.075),
    # OpenAI
    ("openai/gpt-4o", "GPT-4o", "openai", 128_000, 16_384, 0.005, 0.015),
    ("openai/gpt-4o-mini", "GPT-4o Mini", "openai", 128_000, 16_384, 0.00015, 0.0006),
    ("openai/gpt-4-turbo", "GPT-4 Turbo", "openai", 128_000, 4_096, 0.01, 0.03),
    ("openai/gpt-4", "GPT-4", "openai", 8_192, 4_096, 0.03, 0.06),
    ("openai/o1", "o1", "openai", 200_000, 100_000, 0.015, 0.06),
    ("openai/o1-mini", "o1 Mini", "openai", 128_000, 65_536, 0.003, 0.012),
    # Google
    ("google/gemini-pro-1.5", "Gemini Pro 1.5", "google", 2_000_000, 8_192, 0.00125, 0.005),
    ("google/gemini-flash-1.5", "Gemini Flash 1.5", "google", 1_000_000, 8_192, 0.000075, 0.0003),
    ("google/gemini-2.0-flash", "Gemini 2.0 Flash", "google", 1_000_000, 8_192, 0.0001, 0.0004),
    # Meta
    ("meta-llama/llama-3.1-405b-instruct", "Llama 3.1 405B", "meta", 131_072, 4_096, 0.003, 0.003),
    ("meta-llama/llama-3.1-70b-instruct", "Llama 3.1 70B", "meta", 131_072, 4_096, 0.0008, 0.0008),
    ("meta-llama/llama-3.3-70b-instruct", "Llama 3.3 70B", "meta", 131_072, 4_096, 0.0008, 0.0008),
    # Mistral
    ("mistralai/mistral-large", "Mistral Large", "mistral", 128_000, 4_096, 0.003, 0.009),
    ("mistralai/mistral-medium", "Mistral Medium", "mistral", 32_000, 4_096, 0.0027, 0.0081),
    ("mistralai/codestral", "Codestral", "mistral", 32_000, 4_096, 0.001, 0.003),
    # DeepSeek
    ("deepseek/deepseek-chat", "DeepSeek Chat", "deepseek", 64_000, 4_096, 0.00014, 0.00028),
    ("deepseek/deepseek-coder", "DeepSeek Coder", "deepseek", 64_000, 4_096, 0.00014, 0.00028),
    ("deepseek/deepseek-r1", "DeepSeek R1", "deepseek", 64_000, 8_192, 0.00055, 0.00219),
]

MODEL_CONFIGS: dict[str, ModelConfig] = {row[0]: _cfg(*row) for row in _REGISTRY}

# 未知モデル用の保守的なデフォルト
DEFAULT_CONTEXT_WINDOW = 32_000
DEFAULT_RESERVED_OUTPUT = 4_096


def default_config(model_id: str) -> ModelConfig:
    """未知モデル向けのデフォルト設定を生成"""
    return ModelConfig(
        id=model_id,
        display_name=model_id or "unknown",
        provider="other",
        context_window_tokens=DEFAULT_CONTEXT_WINDOW,
        reserved_output_tokens=DEFAULT_RESERVED_OUTPUT,
        cost_per_1k_input=0.01,
        cost_per_1k_output=0.03,
    )


def lookup(model_id: str) -> ModelConfig:
    """モデルIDから設定を取得する

    完全一致 → provider 接頭辞を除いた名前の一致 → デフォルト の順で解決する。
    例外は送出しない。
    """
    config = MODEL_CONFIGS.get(model_id)
    if config is not None:
        return config

    wanted = model_id.strip().lower()
    bare = wanted.split("/")[-1]
    for key, candidate in MODEL_CONFIGS.items():
        if key.lower() == wanted or key.split("/")[-1].lower() == bare:
            return candidate

    return default_config(model_id)


def list_models() -> list[ModelConfig]:
    """登録済みモデルの一覧"""
    return list(MODEL_CONFIGS.values())


def get_model_summary(model_id: str) -> str:
    """モデル性能の要約文字列"""
    config = lookup(model_id)
    context_k = round(config.context_window_tokens / 1000)
    output_k = round(config.reserved_output_tokens / 1000)
    context_str = f"{context_k / 1000:.1f}M" if context_k >= 1000 else f"{context_k}K"
    return (
        f"{config.display_name}: {context_str} context, {output_k}K output, "
        f"${config.cost_per_1k_input}/${config.cost_per_1k_output} per 1K"
    )


def calculate_cost(input_tokens: int, output_tokens: int, config: ModelConfig) -> dict[str, float]:
    """トークン使用量から料金を計算"""
    input_cost = input_tokens / 1000 * config.cost_per_1k_input
    output_cost = output_tokens / 1000 * config.cost_per_1k_output
    return {
        "input_cost": round(input_cost, 4),
        "output_cost": round(output_cost, 4),
        "total_cost": round(input_cost + output_cost, 4),
    }
