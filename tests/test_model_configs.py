"""モデル設定レジストリのテスト"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from devswarm.context.model_configs import (
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_RESERVED_OUTPUT,
    ModelConfig,
    calculate_cost,
    get_model_summary,
    list_models,
    lookup,
)


class TestLookup:
    """lookup のテスト"""

    def test_exact_match(self):
        """登録済みIDは完全一致で解決される"""
        # Act
        config = lookup("openai/gpt-4o")

        # Assert
        assert config.context_window_tokens == 128_000
        assert config.reserved_output_tokens == 16_384
        assert config.provider == "openai"

    def test_bare_name_match(self):
        """provider接頭辞なしの名前でも解決される"""
        # Act
        config = lookup("gpt-4o-mini")

        # Assert
        assert config.id == "openai/gpt-4o-mini"

    def test_unknown_model_defaults(self):
        """未知モデルは例外を出さず保守的なデフォルトになる"""
        # Act
        config = lookup("acme/unknown-model")

        # Assert
        assert config.id == "acme/unknown-model"
        assert config.context_window_tokens == DEFAULT_CONTEXT_WINDOW
        assert config.reserved_output_tokens == DEFAULT_RESERVED_OUTPUT
        assert config.provider == "other"

    def test_registry_ids_unique_and_consistent(self):
        """レジストリのIDは一意で、予約は常にウィンドウ未満"""
        # Act
        models = list_models()

        # Assert
        assert len({m.id for m in models}) == len(models)
        assert all(m.reserved_output_tokens < m.context_window_tokens for m in models)


class TestUsableBudget:
    """使用可能予算のテスト"""

    def test_usable_budget(self):
        """ウィンドウから出力予約を引いた値"""
        # Act & Assert
        assert lookup("openai/gpt-4").usable_budget == 8_192 - 4_096

    def test_usable_budget_never_below_one(self):
        """予約がウィンドウ以上でも1を下回らない"""
        # Arrange
        config = ModelConfig(
            id="x/y", display_name="XY", context_window_tokens=100, reserved_output_tokens=500
        )

        # Act & Assert
        assert config.usable_budget == 1

    def test_config_is_frozen(self):
        """ModelConfig は不変"""
        # Arrange
        config = lookup("openai/gpt-4o")

        # Act & Assert
        with pytest.raises(ValidationError):
            config.context_window_tokens = 1


class TestSummaryAndCost:
    """要約文字列と料金計算のテスト"""

    def test_model_summary(self):
        """コンテキスト・出力トークンが要約に含まれる"""
        # Act
        summary = get_model_summary("openai/gpt-4o")

        # Assert
        assert summary.startswith("GPT-4o: 128K context, 16K output")

    def test_calculate_cost(self):
        """入出力トークンから料金を計算する"""
        # Arrange
        config = lookup("openai/gpt-4")

        # Act
        cost = calculate_cost(1000, 500, config)

        # Assert
        assert cost == {"input_cost": 0.03, "output_cost": 0.03, "total_cost": 0.06}
