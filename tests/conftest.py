"""DevSwarm テスト設定

モデル呼び出しは ScriptedTransport で置き換える。
system_prompt からロールを判別し、ロールごとの台本を順に返す
（台本の最後の応答はその後も繰り返し返す）。
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from devswarm.context.model_configs import ModelConfig
from devswarm.core.config import ContextConfig, DevSwarmSettings, OrchestratorConfig
from devswarm.llm.prompts import (
    CODER_SYSTEM,
    PLANNER_SYSTEM,
    REVIEWER_SYSTEM,
    SUMMARIZER_SYSTEM,
    TESTER_SYSTEM,
)
from devswarm.llm.transport import TransportResult

_ROLE_BY_SYSTEM_PROMPT = {
    PLANNER_SYSTEM: "planner",
    CODER_SYSTEM: "coder",
    TESTER_SYSTEM: "tester",
    REVIEWER_SYSTEM: "reviewer",
    SUMMARIZER_SYSTEM: "summarizer",
}

Reply = str | TransportResult | Exception | Callable[[str], "str | TransportResult"]


@dataclass
class TransportCall:
    """記録されたモデル呼び出し"""

    role: str
    model_id: str
    prompt: str


@dataclass
class ScriptedTransport:
    """台本どおりに応答する ModelTransport"""

    scripts: dict[str, list[Reply]] = field(default_factory=dict)
    calls: list[TransportCall] = field(default_factory=list)

    def script(self, role: str, *replies: Reply) -> ScriptedTransport:
        self.scripts[role] = list(replies)
        return self

    def calls_for(self, role: str) -> list[TransportCall]:
        return [c for c in self.calls if c.role == role]

    async def invoke(
        self,
        prompt: str,
        model_id: str,
        system_prompt: str | None = None,
    ) -> TransportResult:
        role = _ROLE_BY_SYSTEM_PROMPT.get(system_prompt or "", "unknown")
        self.calls.append(TransportCall(role=role, model_id=model_id, prompt=prompt))

        queue = self.scripts.get(role)
        if not queue:
            return TransportResult.failure(f"no script for {role}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]

        if callable(reply) and not isinstance(reply, TransportResult):
            reply = reply(prompt)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, TransportResult):
            return reply
        return TransportResult.ok(reply)


# ─── 応答JSONの組み立て ─────────────────────────────────


def make_plan_reply(tasks: list[dict[str, Any]], **extra: Any) -> str:
    data = {
        "projectName": "todo-api",
        "description": "シンプルなTODO API",
        "techStack": ["Python", "FastAPI"],
        "fileTree": [
            {
                "name": "src",
                "type": "directory",
                "path": "src",
                "children": [{"name": "main.py", "type": "file", "path": "src/main.py"}],
            }
        ],
        "tasks": tasks,
        "decisions": ["FastAPIを採用"],
    }
    data.update(extra)
    return json.dumps(data, ensure_ascii=False)


def make_code_reply(files: dict[str, str], commands: list[str] | None = None) -> str:
    return json.dumps(
        {
            "operations": [
                {"type": "create", "path": path, "content": content}
                for path, content in files.items()
            ],
            "terminalCommands": commands or [],
            "notes": "",
        },
        ensure_ascii=False,
    )


def make_tester_reply(passed: bool, bugs: list[dict[str, Any]] | None = None, summary: str = "") -> str:
    return json.dumps(
        {
            "overallStatus": "pass" if passed else "fail",
            "bugs": bugs or [],
            "suggestions": [],
            "passedChecks": ["syntax"] if passed else [],
            "summary": summary,
        },
        ensure_ascii=False,
    )


def make_review_reply(approved: bool, blockers: list[str] | None = None, **extra: Any) -> str:
    data = {
        "approved": approved,
        "completionPercentage": 100 if approved else 60,
        "requirementsCoverage": [{"requirement": "CRUD", "status": "fulfilled", "notes": ""}],
        "codeQuality": {"score": 85, "strengths": ["読みやすい"], "weaknesses": []},
        "missingItems": [],
        "blockers": blockers or [],
        "summary": "レビュー完了",
    }
    data.update(extra)
    return json.dumps(data, ensure_ascii=False)


def make_summary_reply() -> str:
    return json.dumps(
        {
            "summary": "計画を作成し実装を進めた",
            "keyFacts": ["FastAPIを使用"],
            "decisions": ["SQLiteで永続化"],
            "filesCreated": ["src/main.py"],
            "techStack": ["Python"],
            "activeIssues": [],
        },
        ensure_ascii=False,
    )


# ─── フィクスチャ ───────────────────────────────────────


@pytest.fixture
def transport():
    """台本付きの偽トランスポート"""
    return ScriptedTransport()


@pytest.fixture
def context_config():
    """テスト用のコンテキスト設定"""
    return ContextConfig()


@pytest.fixture
def settings():
    """テスト用の設定（環境・設定ファイルに依存しない既定値）"""
    return DevSwarmSettings(
        context=ContextConfig(),
        orchestrator=OrchestratorConfig(),
    )


@pytest.fixture
def tiny_model():
    """使用可能予算 1,000 トークンの小さなモデル"""
    return ModelConfig(
        id="test/tiny",
        display_name="Tiny",
        context_window_tokens=1_200,
        reserved_output_tokens=200,
        provider="other",
    )
