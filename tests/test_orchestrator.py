"""Orchestrator のテスト

台本付きトランスポートで Run を最後まで実行し、
タスクの再試行・レビュー差し戻し・コンテキスト圧縮を検証する。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest
from conftest import (
    make_code_reply,
    make_plan_reply,
    make_review_reply,
    make_summary_reply,
    make_tester_reply,
)

from devswarm.agents.models import TaskStatus
from devswarm.context import ContextManager, MessageRole, ModelConfig
from devswarm.context.tokens import estimate_tokens
from devswarm.core.config import ContextConfig, DevSwarmSettings, OrchestratorConfig
from devswarm.llm.transport import TransportResult
from devswarm.orchestrator import Orchestrator, RunPhase, RunStatus

TWO_TASKS = [
    {"id": "task-1", "title": "モデル定義", "description": "Todoモデル"},
    {"id": "task-2", "title": "APIエンドポイント", "dependencies": ["task-1"]},
]


@dataclass
class RecordingObserver:
    """通知を記録するオブザーバー"""

    phases: list[tuple[RunPhase, RunPhase]] = field(default_factory=list)
    tasks: list[tuple[str, TaskStatus, int]] = field(default_factory=list)
    compactions: list = field(default_factory=list)
    reviews: list = field(default_factory=list)
    reports: list[str] = field(default_factory=list)

    def on_phase_change(self, previous, current):
        self.phases.append((previous, current))

    def on_task_status(self, task):
        self.tasks.append((task.id, task.status, task.attempts))

    def on_compaction(self, outcome):
        self.compactions.append(outcome)

    def on_review(self, review):
        self.reviews.append(review)

    def on_report(self, report):
        self.reports.append(report)


def _current(prompt: str, marker: str) -> str:
    """プロンプト末尾の「現在の依頼」部分（会話履歴を除く）"""
    return prompt.rsplit(marker, 1)[-1]


def _task_id(prompt: str, marker: str) -> str:
    return _current(prompt, marker).split(maxsplit=1)[0].rstrip(":")


def coder_by_task(prompt: str) -> str:
    """タスクIDごとに1ファイルを作成する Coder"""
    task_id = _task_id(prompt, "Task ID: ")
    return make_code_reply({f"src/{task_id}.py": f"# {task_id}\n"})


def tester_failing(*failing: str):
    """指定タスクだけ不合格にする Tester"""

    def reply(prompt: str) -> str:
        task_id = _task_id(prompt, "## 直前に実装したタスク\n")
        if task_id in failing:
            bug = {"severity": "high", "file": f"src/{task_id}.py", "description": "構文エラー"}
            return make_tester_reply(False, bugs=[bug], summary="1件の重大な不具合")
        return make_tester_reply(True)

    return reply


def _settings(**orchestrator) -> DevSwarmSettings:
    return DevSwarmSettings(
        context=ContextConfig(),
        orchestrator=OrchestratorConfig(**orchestrator),
    )


@pytest.fixture
def observer():
    return RecordingObserver()


# =============================================================================
# 正常系・計画失敗
# =============================================================================


class TestRunBasics:
    """Run の基本フローのテスト"""

    @pytest.mark.asyncio
    async def test_delivered(self, transport, settings, observer):
        """全タスク合格・レビュー承認で DELIVERED"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "# todo-api 納品レポート")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert outcome.status == RunStatus.DELIVERED
        assert orchestrator.phase == RunPhase.DELIVERED
        assert set(outcome.files) == {"src/task-1.py", "src/task-2.py"}
        assert outcome.completed_count == 2
        assert outcome.failed_count == 0
        assert outcome.blockers == []
        assert outcome.rework_rounds == 0
        assert outcome.report == "# todo-api 納品レポート"
        assert outcome.summary == "todo-api: 2/2 タスク完了 [delivered]"
        assert "| task-2 | APIエンドポイント | completed | task-1 |" in outcome.design_doc
        assert observer.reports == [outcome.report]

    @pytest.mark.asyncio
    async def test_phase_sequence(self, transport, settings, observer):
        """1タスクのフェーズ遷移が順に通知される"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        await orchestrator.run("TODO APIを作って")

        # Assert
        assert observer.phases == [
            (RunPhase.PLANNING, RunPhase.EXECUTING),
            (RunPhase.EXECUTING, RunPhase.TESTING),
            (RunPhase.TESTING, RunPhase.EXECUTING),
            (RunPhase.EXECUTING, RunPhase.REVIEWING),
            (RunPhase.REVIEWING, RunPhase.DELIVERING),
            (RunPhase.DELIVERING, RunPhase.DELIVERED),
        ]
        assert observer.tasks == [
            ("task-1", TaskStatus.IN_PROGRESS, 1),
            ("task-1", TaskStatus.COMPLETED, 1),
        ]

    @pytest.mark.asyncio
    async def test_plan_failure(self, transport, settings, observer):
        """計画を作成できなければ FAILED で終了する"""
        # Arrange
        transport.script("planner", "計画は作成できません")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert outcome.status == RunStatus.FAILED
        assert outcome.plan is None
        assert outcome.review is None
        assert len(outcome.blockers) == 1
        assert outcome.summary.endswith("計画を作成できませんでした")
        assert orchestrator.phase == RunPhase.FAILED
        assert transport.calls_for("coder") == []

    @pytest.mark.asyncio
    async def test_memory_holds_project_info(self, transport, settings, observer):
        """計画の情報と触れたファイルがプロジェクトメモリに残る"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        await orchestrator.run("TODO APIを作って")

        # Assert
        memory = orchestrator.context.project_memory
        assert memory.project_name == "todo-api"
        assert memory.tech_stack == ["Python", "FastAPI"]
        assert memory.decisions == ["FastAPIを採用"]
        assert memory.files_touched == ["src/task-1.py", "src/task-2.py"]

    @pytest.mark.asyncio
    async def test_role_models(self, transport, observer):
        """ロールごとのモデル上書きが呼び出しに反映される"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        settings = _settings(reviewer_model="openai/gpt-4o")
        orchestrator = Orchestrator(transport, settings, observer, model="openai/gpt-4o-mini")

        # Act
        await orchestrator.run("TODO APIを作って")

        # Assert
        assert {c.model_id for c in transport.calls_for("coder")} == {"openai/gpt-4o-mini"}
        assert {c.model_id for c in transport.calls_for("reviewer")} == {"openai/gpt-4o"}


# =============================================================================
# タスクの再試行
# =============================================================================


class TestTaskRetries:
    """タスク単位の再試行のテスト"""

    @pytest.mark.asyncio
    async def test_task_abandoned_after_max_attempts(self, transport, observer):
        """不合格が続くタスクは上限回数で打ち切り、次のタスクへ進む"""
        # Arrange
        tasks = [
            TWO_TASKS[0],
            {"id": "task-2", "title": "APIエンドポイント"},
            {"id": "task-3", "title": "README"},
        ]
        transport.script("planner", make_plan_reply(tasks))
        transport.script("coder", coder_by_task)
        transport.script("tester", tester_failing("task-2"))
        transport.script("reviewer", make_review_reply(False, blockers=["APIが未完成"]), "report")
        orchestrator = Orchestrator(transport, _settings(max_review_reworks=0), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        plan = outcome.plan
        assert plan.get_task("task-1").status == TaskStatus.COMPLETED
        assert plan.get_task("task-2").status == TaskStatus.FAILED
        assert plan.get_task("task-2").attempts == 3
        assert plan.get_task("task-3").status == TaskStatus.COMPLETED
        assert len(transport.calls_for("tester")) == 5
        assert outcome.status == RunStatus.BLOCKED
        assert outcome.blockers == ["APIが未完成"]
        assert outcome.summary == "todo-api: 2/3 タスク完了（1 件失敗） [blocked]"

        review_prompt = transport.calls_for("reviewer")[0].prompt
        assert "- [x] モデル定義" in review_prompt
        assert "- [ ] APIエンドポイント (failed: 1件の重大な不具合)" in review_prompt

    @pytest.mark.asyncio
    async def test_test_feedback_passed_to_coder(self, transport, observer):
        """不合格の指摘は次の試行の Coder プロンプトに含まれる"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script(
            "tester",
            make_tester_reply(False, bugs=[{"severity": "critical", "description": "起動しない"}]),
            make_tester_reply(True),
        )
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        coder_calls = transport.calls_for("coder")
        assert len(coder_calls) == 2
        assert "## 修正が必要な指摘" not in _current(coder_calls[0].prompt, "Task ID: ")
        retry_prompt = _current(coder_calls[1].prompt, "Task ID: ")
        assert "## 修正が必要な指摘\n" in retry_prompt
        assert "- [critical] 起動しない" in retry_prompt
        assert outcome.plan.tasks[0].attempts == 2
        assert outcome.status == RunStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_coder_failure_consumes_attempt(self, transport, observer):
        """Coder の失敗も1回の試行として数える"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", "すみません、実装できません", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert outcome.plan.tasks[0].attempts == 2
        assert outcome.plan.tasks[0].status == TaskStatus.COMPLETED
        assert len(transport.calls_for("tester")) == 1
        assert (RunPhase.EXECUTING, RunPhase.REWORKING) in observer.phases


# =============================================================================
# レビュー差し戻し
# =============================================================================


class TestReviewRework:
    """レビュー差し戻しのテスト"""

    @pytest.mark.asyncio
    async def test_rework_only_mentioned_tasks(self, transport, observer):
        """ブロッカーで言及されたタスクだけを再実装する"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script(
            "reviewer",
            make_review_reply(False, blockers=["task-2 の削除エンドポイントが不足"]),
            make_review_reply(True),
            "report",
        )
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        coder_tasks = [_task_id(c.prompt, "Task ID: ") for c in transport.calls_for("coder")]
        assert coder_tasks == ["task-1", "task-2", "task-2"]
        rework_prompt = _current(transport.calls_for("coder")[2].prompt, "Task ID: ")
        assert "## レビュー指摘\n- ブロッカー: task-2 の削除エンドポイントが不足" in rework_prompt
        assert outcome.status == RunStatus.DELIVERED
        assert outcome.rework_rounds == 1
        assert outcome.plan.get_task("task-2").attempts == 1
        assert "レビュー差し戻し1回目: task-2 を再実装" in (
            orchestrator.context.project_memory.decisions
        )

    @pytest.mark.asyncio
    async def test_reviewer_unavailable_blocks(self, transport, observer):
        """レビューが毎回失敗すると差し戻し上限の後 BLOCKED"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", TransportResult.failure("503 Service Unavailable"))
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert outcome.status == RunStatus.BLOCKED
        assert orchestrator.phase == RunPhase.BLOCKED
        assert outcome.rework_rounds == 2
        assert outcome.review.approved is False
        assert outcome.review.completion_percentage == 0
        assert outcome.blockers == ["Review failed: 503 Service Unavailable"]
        assert outcome.report.startswith("# todo-api - Delivery Report")
        assert len(transport.calls_for("coder")) == 3
        assert len(observer.reviews) == 3


# =============================================================================
# コンテキスト圧縮
# =============================================================================


class TestCompactionDuringRun:
    """Run 中のコンテキスト予算管理のテスト"""

    @pytest.fixture
    def manager(self):
        model = ModelConfig(
            id="test/small",
            display_name="Small",
            context_window_tokens=12_000,
            reserved_output_tokens=2_000,
            provider="other",
        )
        return ContextManager(model, ContextConfig())

    @pytest.mark.asyncio
    async def test_budget_kept_below_threshold(self, transport, observer, manager):
        """会話を伸ばす呼び出しの前に常にしきい値未満へ戻す"""
        # Arrange
        tasks = [{"id": f"task-{i}", "title": f"モジュール{i}"} for i in range(1, 7)]
        transport.script("planner", make_plan_reply(tasks))
        transport.script(
            "coder",
            lambda prompt: make_code_reply(
                {f"src/{_task_id(prompt, 'Task ID: ')}.py": "a" * 1_500}
            ),
        )
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        transport.script("summarizer", make_summary_reply())

        user_turn_over_threshold: list[bool] = []
        events: list[str] = []
        original_add = manager.add_message
        original_compact = manager.compact

        def spy_add(role, content, agent_name=None):
            if MessageRole(role) == MessageRole.USER:
                user_turn_over_threshold.append(manager.needs_compaction())
                events.append("user")
            return original_add(role, content, agent_name)

        def spy_compact(summary, replace_count):
            events.append("compact")
            return original_compact(summary, replace_count)

        manager.add_message = spy_add
        manager.compact = spy_compact
        orchestrator = Orchestrator(
            transport, _settings(), observer, model=manager.model.id, context_manager=manager
        )

        # Act
        outcome = await orchestrator.run("6つのモジュールを作って")

        # Assert
        assert outcome.status == RunStatus.DELIVERED
        assert user_turn_over_threshold
        assert not any(user_turn_over_threshold)
        assert observer.compactions
        assert manager.compaction_count >= 1
        assert outcome.compactions == manager.compaction_count
        threshold = manager.threshold_percentage
        for compaction in observer.compactions:
            assert compaction.usage_before >= threshold
            assert compaction.usage_after < threshold
        assert len(transport.calls_for("summarizer")) >= 1
        assert "compact" in events
        assert all(
            not (a == b == "compact") for a, b in zip(events, events[1:], strict=False)
        )

    @pytest.mark.asyncio
    async def test_prompts_fit_each_role_model(self, transport, observer):
        """小さいモデルのロールにも、そのモデルの予算内のプロンプトを送る"""
        # Arrange
        tasks = [{"id": f"task-{i}", "title": f"モジュール{i}"} for i in range(1, 4)]
        transport.script("planner", make_plan_reply(tasks))
        transport.script(
            "coder",
            lambda prompt: make_code_reply(
                {f"src/{_task_id(prompt, 'Task ID: ')}.py": "a" * 6_000}
            ),
        )
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        transport.script("summarizer", make_summary_reply())
        settings = _settings(tester_model="openai/gpt-4")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        outcome = await orchestrator.run("3つのモジュールを作って")

        # Assert
        assert outcome.status == RunStatus.DELIVERED
        tester_calls = transport.calls_for("tester")
        assert len(tester_calls) == 3
        assert {c.model_id for c in tester_calls} == {"openai/gpt-4"}
        for call in tester_calls:
            assert estimate_tokens(call.prompt, "openai") <= 4_096
        assert "## 直前に実装したタスク\ntask-3: モジュール3" in tester_calls[-1].prompt


# =============================================================================
# 計画修正・雛形・タスク簡略化・セキュリティ監査
# =============================================================================


def make_simplify_reply(title: str, description: str = "") -> str:
    return json.dumps(
        {
            "simplifiedTask": {"title": title, "description": description or title},
            "notes": "範囲を縮小",
        },
        ensure_ascii=False,
    )


class TestPlanFeedback:
    """plan_feedback による計画修正のテスト"""

    @pytest.mark.asyncio
    async def test_revised_plan_is_executed(self, transport, observer):
        """修正後の計画のタスクを実行する"""
        # Arrange
        transport.script(
            "planner",
            make_plan_reply(TWO_TASKS),
            make_plan_reply([{"id": "task-9", "title": "認証"}]),
        )
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って", plan_feedback="認証だけにして")

        # Assert
        assert [t.id for t in outcome.plan.tasks] == ["task-9"]
        coder_tasks = [_task_id(c.prompt, "Task ID: ") for c in transport.calls_for("coder")]
        assert coder_tasks == ["task-9"]
        assert "## ユーザーからの変更依頼\n認証だけにして" in (
            transport.calls_for("planner")[1].prompt
        )
        assert outcome.status == RunStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_original_plan_kept_when_revision_fails(self, transport, observer):
        """修正に失敗した場合は元の計画で進める"""
        # Arrange
        transport.script(
            "planner", make_plan_reply(TWO_TASKS), TransportResult.failure("timeout")
        )
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って", plan_feedback="認証だけにして")

        # Assert
        assert [t.id for t in outcome.plan.tasks] == ["task-1", "task-2"]
        assert outcome.status == RunStatus.DELIVERED


class TestScaffolding:
    """雛形生成のテスト"""

    @pytest.mark.asyncio
    async def test_scaffold_files_before_tasks(self, transport, observer):
        """scaffold 有効時はタスク実行前に雛形を作成する"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", make_code_reply({"README.md": "# todo-api\n"}), coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(scaffold=True), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        coder_calls = transport.calls_for("coder")
        assert len(coder_calls) == 2
        assert "初期雛形" in coder_calls[0].prompt
        assert outcome.files == {"README.md": "# todo-api\n", "src/task-1.py": "# task-1\n"}
        assert orchestrator.context.project_memory.files_touched[0] == "README.md"

    @pytest.mark.asyncio
    async def test_scaffold_disabled_by_default(self, transport, observer):
        """既定では雛形を作成しない"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert len(transport.calls_for("coder")) == 1
        assert outcome.files == {"src/task-1.py": "# task-1\n"}


class TestTaskEscalation:
    """試行回数切れのタスク簡略化のテスト"""

    @pytest.mark.asyncio
    async def test_simplified_task_completes(self, transport, observer):
        """簡略化したタスクを再実行し、合格すれば完了"""
        # Arrange
        failing = make_tester_reply(False, bugs=[{"severity": "high", "description": "未実装"}])
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]), make_simplify_reply("GET のみ"))
        transport.script("coder", coder_by_task)
        transport.script("tester", failing, failing, failing, make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        task = outcome.plan.get_task("task-1")
        assert task.status == TaskStatus.COMPLETED
        assert task.title == "GET のみ"
        assert task.attempts == 1
        assert len(transport.calls_for("tester")) == 4
        assert "Title: GET のみ" in _current(transport.calls_for("coder")[3].prompt, "Task ID: ")
        assert "タスク task-1 を簡略化: GET のみ" in orchestrator.context.project_memory.decisions
        assert outcome.status == RunStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_escalates_once_per_task(self, transport, observer):
        """簡略化後も失敗が続けば failed（簡略化は1回まで）"""
        # Arrange
        failing = make_tester_reply(False, bugs=[{"severity": "high", "description": "未実装"}])
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]), make_simplify_reply("GET のみ"))
        transport.script("coder", coder_by_task)
        transport.script("tester", failing)
        transport.script("reviewer", make_review_reply(False, blockers=["未完成"]), "report")
        orchestrator = Orchestrator(transport, _settings(max_review_reworks=0), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        task = outcome.plan.get_task("task-1")
        assert task.status == TaskStatus.FAILED
        assert task.attempts == 3
        assert len(transport.calls_for("planner")) == 2
        assert len(transport.calls_for("tester")) == 6
        assert outcome.status == RunStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_escalation_disabled(self, transport, observer):
        """escalate_failed_tasks が無効なら簡略化しない"""
        # Arrange
        failing = make_tester_reply(False, bugs=[{"severity": "high", "description": "未実装"}])
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]), make_simplify_reply("GET のみ"))
        transport.script("coder", coder_by_task)
        transport.script("tester", failing)
        transport.script("reviewer", make_review_reply(False), "report")
        settings = _settings(max_review_reworks=0, escalate_failed_tasks=False)
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert outcome.plan.get_task("task-1").status == TaskStatus.FAILED
        assert len(transport.calls_for("planner")) == 1
        assert len(transport.calls_for("tester")) == 3


class TestSecurityScan:
    """レビュー前のセキュリティ監査のテスト"""

    @pytest.mark.asyncio
    async def test_findings_passed_to_review(self, transport, observer):
        """監査の指摘はレビューに渡り、結果にも残る"""
        # Arrange
        issues = json.dumps(
            {"issues": [{"severity": "high", "type": "XSS", "file": "src/task-1.py"}]}
        )

        def tester(prompt: str) -> str:
            if "このコードベースのセキュリティ監査" in prompt:
                return issues
            return make_tester_reply(True)

        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", tester)
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, _settings(security_scan=True), observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert len(transport.calls_for("tester")) == 2
        assert [issue.type for issue in outcome.security_issues] == ["XSS"]
        review_prompt = transport.calls_for("reviewer")[0].prompt
        assert "## セキュリティ監査\n- [high] XSS (src/task-1.py): " in review_prompt

    @pytest.mark.asyncio
    async def test_no_scan_by_default(self, transport, observer, settings):
        """既定では監査しない"""
        # Arrange
        transport.script("planner", make_plan_reply(TWO_TASKS[:1]))
        transport.script("coder", coder_by_task)
        transport.script("tester", make_tester_reply(True))
        transport.script("reviewer", make_review_reply(True), "report")
        orchestrator = Orchestrator(transport, settings, observer)

        # Act
        outcome = await orchestrator.run("TODO APIを作って")

        # Assert
        assert len(transport.calls_for("tester")) == 1
        assert outcome.security_issues == []
        assert "## セキュリティ監査" not in transport.calls_for("reviewer")[0].prompt
