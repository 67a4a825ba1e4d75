"""識別子生成"""

from ulid import ULID


def generate_id() -> str:
    """一意IDを生成 (ULID形式)"""
    return str(ULID())
