"""コンテキスト管理モジュール

トークン予算の追跡、要約による圧縮、永続的なプロジェクトメモリ。
"""

from .compactor import CompactionMethod, CompactionOutcome, ContextCompactor
from .manager import ContextManager
from .model_configs import ModelConfig, lookup
from .models import (
    BudgetState,
    ContextState,
    ConversationMessage,
    MessageRole,
    ProjectMemory,
    Summary,
)
from .summarizer import Summarizer
from .tokens import TokenEstimator, estimate_tokens, format_token_count

__all__ = [
    "ModelConfig",
    "lookup",
    "TokenEstimator",
    "estimate_tokens",
    "format_token_count",
    "BudgetState",
    "ContextState",
    "ConversationMessage",
    "MessageRole",
    "ProjectMemory",
    "Summary",
    "ContextManager",
    "Summarizer",
    "ContextCompactor",
    "CompactionMethod",
    "CompactionOutcome",
]
