"""LLMレスポンスの構造化データ抽出

モデル出力は散文やコードフェンスでJSONを包むことが多いため、
次の順に抽出を試みる:

1. テキスト全体をJSONとして解釈
2. ```json ... ``` フェンス内部を解釈
3. 最初の対応が取れた {...} 部分文字列を解釈

すべて失敗した場合は例外ではなく Unparsed を返す。
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, BeforeValidator, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def _as_str_list(value: Any) -> list[str]:
    """null や単一値を文字列リストに正規化する"""
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        return [str(value)]
    if isinstance(value, list):
        return [
            item if isinstance(item, str) else json.dumps(item, ensure_ascii=False)
            for item in value
            if item is not None
        ]
    return value


# モデル出力の配列フィールド用（欠落・null は空リスト）
StrList = Annotated[list[str], BeforeValidator(_as_str_list)]

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)


@dataclass(frozen=True)
class Parsed:
    """抽出成功"""

    value: Any
    strategy: str


@dataclass(frozen=True)
class Unparsed:
    """抽出失敗"""

    reason: str


ParseResult = Parsed | Unparsed


def _loads(text: str) -> Any:
    return json.loads(text)


def _whole_text(text: str) -> str | None:
    stripped = text.strip()
    return stripped or None


def _fenced_block(text: str) -> str | None:
    match = _FENCE_PATTERN.search(text)
    return match.group(1).strip() if match else None


def _first_balanced_object(text: str) -> str | None:
    """最初の対応が取れた {...} を返す（文字列リテラル内の括弧は無視）"""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        # 閉じ括弧が見つからない場合は次の開始位置を試す
        start = text.find("{", start + 1)
    return None


# 試行順の抽出戦略
STRATEGIES: list[tuple[str, Callable[[str], str | None]]] = [
    ("whole", _whole_text),
    ("fenced", _fenced_block),
    ("braces", _first_balanced_object),
]


def parse_json_response(text: str | None) -> ParseResult:
    """モデル出力からJSON値を抽出する

    Args:
        text: モデルの生出力

    Returns:
        Parsed: いずれかの戦略で解釈できた場合
        Unparsed: すべての戦略が失敗した場合
    """
    if not text:
        return Unparsed(reason="空のレスポンス")

    for name, extract in STRATEGIES:
        candidate = extract(text)
        if candidate is None:
            continue
        try:
            return Parsed(value=_loads(candidate), strategy=name)
        except json.JSONDecodeError:
            continue

    return Unparsed(reason="JSONを抽出できませんでした")


def parse_model(text: str | None, model_cls: type[T]) -> T | None:
    """JSONを抽出して Pydantic モデルとして検証する

    抽出失敗・検証失敗のどちらも None を返す。
    """
    result = parse_json_response(text)
    if isinstance(result, Unparsed):
        logger.warning("レスポンス解析失敗 (%s): %s", model_cls.__name__, result.reason)
        return None

    if not isinstance(result.value, dict):
        logger.warning("レスポンスがオブジェクトではありません (%s)", model_cls.__name__)
        return None

    try:
        return model_cls.model_validate(result.value)
    except ValidationError as exc:
        logger.warning(
            "レスポンス検証失敗 (%s): %d件のエラー", model_cls.__name__, exc.error_count()
        )
        return None
