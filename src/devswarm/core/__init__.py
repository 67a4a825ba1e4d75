"""DevSwarm Core モジュール

- Config: 設定管理
- IDs: ULID識別子生成
"""

from .config import (
    ContextConfig,
    DevSwarmSettings,
    LLMConfig,
    LoggingConfig,
    OrchestratorConfig,
    get_settings,
    reload_settings,
)
from .ids import generate_id

__all__ = [
    # Config
    "get_settings",
    "reload_settings",
    "DevSwarmSettings",
    "LLMConfig",
    "ContextConfig",
    "OrchestratorConfig",
    "LoggingConfig",
    # IDs
    "generate_id",
]
