"""トークン推定

文字数ベースの近似でトークン数を見積もる。モデル呼び出しは行わない。
実トークナイザとの誤差は ModelConfig.reserved_output_tokens の余裕で吸収する。
"""

from __future__ import annotations

import hashlib
import math
import re

# プロバイダー別の1トークンあたり平均文字数
CHARS_PER_TOKEN: dict[str, float] = {
    "anthropic": 3.5,
    "openai": 4.0,
    "google": 4.0,
    "meta": 4.0,
    "mistral": 4.0,
    "deepseek": 3.8,
    "other": 4.0,
}

# コードブロックを含むテキストの補正率
CODE_BLOCK_FACTOR = 1.15

# JSON記号1文字あたりの追加トークン
JSON_PUNCT_WEIGHT = 0.3

_JSON_PUNCT = re.compile(r'[{}\[\]:,"]')


def _chars_per_token(provider: str) -> float:
    return CHARS_PER_TOKEN.get(provider, CHARS_PER_TOKEN["other"])


def estimate_tokens(text: str, provider: str = "anthropic") -> int:
    """テキストのトークン数を見積もる

    末尾に文字を追加して見積もりが減ることはない（単調非減少）。
    """
    if not text:
        return 0

    estimate = math.ceil(len(text) / _chars_per_token(provider))

    # コードは記号が多くトークンが増えやすい
    if text.count("```") >= 2:
        estimate = math.ceil(estimate * CODE_BLOCK_FACTOR)

    if "{" in text and "}" in text:
        estimate += math.ceil(len(_JSON_PUNCT.findall(text)) * JSON_PUNCT_WEIGHT)

    return estimate


def estimate_max_chars(tokens: int, provider: str = "anthropic") -> int:
    """トークン予算に収まるおおよその文字数（10%の安全マージン込み）"""
    return max(int(tokens * _chars_per_token(provider) * 0.9), 0)


def format_token_count(tokens: int) -> str:
    """表示用にトークン数を整形"""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.1f}K"
    return str(tokens)


class TokenEstimator:
    """キャッシュ付きトークン推定器

    プロバイダーごとに1インスタンスを使う。
    """

    def __init__(self, provider: str = "anthropic", max_cache_size: int = 1000) -> None:
        self.provider = provider
        self.max_cache_size = max_cache_size
        self._cache: dict[str, int] = {}

    def count(self, text: str) -> int:
        """トークン数を返す（キャッシュ利用）"""
        if not text:
            return 0

        key = self._cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        tokens = estimate_tokens(text, self.provider)

        if len(self._cache) >= self.max_cache_size:
            # 古いエントリを1割捨てる
            for stale in list(self._cache)[: max(self.max_cache_size // 10, 1)]:
                del self._cache[stale]
        self._cache[key] = tokens
        return tokens

    def count_many(self, texts: list[str]) -> int:
        return sum(self.count(t) for t in texts)

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @staticmethod
    def _cache_key(text: str) -> str:
        if len(text) <= 100:
            return text
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
        return f"sha1:{digest}:{len(text)}"
