"""DevSwarm 設定管理モジュール

Pydantic Settingsを使用した型安全な設定管理。
devswarm.config.yaml と環境変数から設定を読み込む。
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class LLMConfig(BaseModel):
    """LLM設定"""

    provider: Literal["openrouter", "openai", "anthropic"] = Field(default="openrouter")
    model: str = Field(default="anthropic/claude-sonnet-4.5")
    api_key_env: str = Field(default="OPENROUTER_API_KEY", description="APIキーの環境変数名")
    max_tokens: int = Field(default=4096, ge=100)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(
        default=120.0, ge=1.0, description="1回のモデル呼び出しの最大待機秒数"
    )


class ContextConfig(BaseModel):
    """コンテキスト予算設定"""

    compaction_threshold: float = Field(
        default=0.8, ge=0.5, le=0.95, description="圧縮を開始する使用率（使用可能予算比）"
    )
    keep_last_messages: int = Field(
        default=6, ge=1, le=50, description="圧縮時に原文のまま残す直近メッセージ数"
    )
    fallback_chars_per_message: int = Field(
        default=200, ge=20, description="フォールバック要約でメッセージごとに残す文字数"
    )
    summarization_model: str = Field(default="anthropic/claude-haiku-4.5")
    max_decisions_in_memory_view: int = Field(default=20, ge=1)
    max_files_in_memory_view: int = Field(default=10, ge=1)


class OrchestratorConfig(BaseModel):
    """オーケストレータ設定

    ロール別モデルは未設定時にグローバルの llm.model を使用する。
    """

    max_task_retries: int = Field(default=3, ge=1, le=10, description="タスクごとの最大試行回数")
    max_review_reworks: int = Field(
        default=2, ge=0, le=10, description="レビュー差し戻しによる最大手戻り回数"
    )
    escalate_failed_tasks: bool = Field(
        default=True, description="試行回数切れのタスクを Planner で簡略化して1回だけ再実行"
    )
    scaffold: bool = Field(default=False, description="タスク実行前に雛形ファイルを生成")
    security_scan: bool = Field(default=False, description="レビュー前にセキュリティ監査を実行")
    planner_model: str | None = Field(default=None)
    coder_model: str | None = Field(default=None)
    tester_model: str | None = Field(default=None)
    reviewer_model: str | None = Field(default=None)

    def model_for(self, role: str, default: str) -> str:
        """ロールに対応するモデルIDを返す"""
        override = getattr(self, f"{role}_model", None)
        return override if override is not None else default


class LoggingConfig(BaseModel):
    """ロギング設定"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class DevSwarmSettings(BaseSettings):
    """DevSwarm全体設定

    設定の優先順位:
    1. 環境変数
    2. devswarm.config.yaml
    3. デフォルト値
    """

    model_config = SettingsConfigDict(
        env_prefix="DEVSWARM_",
        env_nested_delimiter="__",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML の値は init 引数として渡るため、環境変数を先に評価する
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, config_path: Path | str | None = None) -> "DevSwarmSettings":
        """YAMLファイルから設定を読み込む

        Args:
            config_path: 設定ファイルパス。Noneの場合はデフォルトパスを探索

        Returns:
            DevSwarmSettings インスタンス
        """
        if config_path is None:
            search_paths = [
                Path.cwd() / "devswarm.config.yaml",
                Path.cwd() / "devswarm.config.yml",
                Path.home() / ".devswarm" / "config.yaml",
            ]
            for path in search_paths:
                if path.exists():
                    config_path = path
                    break

        if config_path and Path(config_path).exists():
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
            return cls(**yaml_config)

        return cls()


# グローバル設定インスタンス（遅延初期化）
_settings: DevSwarmSettings | None = None


def get_settings() -> DevSwarmSettings:
    """設定シングルトンを取得"""
    global _settings
    if _settings is None:
        _settings = DevSwarmSettings.from_yaml()
    return _settings


def reload_settings(config_path: Path | str | None = None) -> DevSwarmSettings:
    """設定を再読み込み"""
    global _settings
    _settings = DevSwarmSettings.from_yaml(config_path)
    return _settings
