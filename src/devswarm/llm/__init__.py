"""LLMモジュール

モデル呼び出しトランスポートとレスポンス解析。
"""

from .client import LLMClient, LLMResponse, Message
from .response_parser import Parsed, ParseResult, Unparsed, parse_json_response, parse_model
from .transport import LLMTransport, ModelTransport, TransportResult

__all__ = [
    "LLMClient",
    "LLMResponse",
    "Message",
    "LLMTransport",
    "ModelTransport",
    "TransportResult",
    "Parsed",
    "Unparsed",
    "ParseResult",
    "parse_json_response",
    "parse_model",
]
