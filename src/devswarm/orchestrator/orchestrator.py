"""Orchestrator: 計画・実装・テスト・レビュー・納品の進行管理

1回の Run を単一の制御フローで進める。タスクは計画の順に1件ずつ処理し、
会話を伸ばすエージェント呼び出しの直前には、そのロールのモデルで
コンテキスト予算を数え直し、しきい値未満に戻してから呼び出す。

失敗は例外ではなく状態として扱う:
- 計画失敗のみ Run 全体の失敗 (FAILED)
- タスクの失敗は試行回数の上限まで再実行し、超えたら Planner が1回だけ簡略化を試み、
  それでも失敗したら failed として次へ進む
- レビュー差し戻しは Run 全体の上限まで再実行し、超えたら BLOCKED
"""

from __future__ import annotations

import logging

from ..agents.base import BaseAgent
from ..agents.coder import CoderAgent
from ..agents.models import (
    CodeResult,
    PlanTask,
    ProjectPlan,
    ReviewResult,
    SecurityIssue,
    TaskStatus,
    TestingResult,
)
from ..agents.planner import PlannerAgent
from ..agents.reviewer import ReviewerAgent
from ..agents.tester import TesterAgent
from ..context.compactor import ContextCompactor
from ..context.manager import ContextManager
from ..context.model_configs import ModelConfig, lookup
from ..context.summarizer import Summarizer
from ..context.tokens import TokenEstimator
from ..core.config import DevSwarmSettings, get_settings
from ..llm.transport import ModelTransport
from .observer import LoggingObserver, RunObserver
from .result import RunOutcome, RunStatus, build_summary
from .retry import ReworkBudget, RetryManager, RetryPolicy
from .state import RunEvent, RunPhase, RunStateMachine

logger = logging.getLogger(__name__)


class Orchestrator:
    """エージェントチームの進行役

    Args:
        transport: モデル呼び出しトランスポート
        settings: 設定（省略時はグローバル設定）
        observer: 進捗通知先（省略時は LoggingObserver）
        model: 既定モデルID（省略時は settings.llm.model）
        context_manager: 会話コンテキスト（省略時は Coder のモデルで作成し、
            以降は呼び出すロールのモデルに切り替えて使う）
    """

    def __init__(
        self,
        transport: ModelTransport,
        settings: DevSwarmSettings | None = None,
        observer: RunObserver | None = None,
        model: str | None = None,
        context_manager: ContextManager | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.observer: RunObserver = observer or LoggingObserver()
        default_model = model or self.settings.llm.model
        roles = self.settings.orchestrator

        self.context = context_manager or ContextManager(
            roles.model_for("coder", default_model), self.settings.context
        )
        summarizer = Summarizer(
            transport,
            config=self.settings.context,
            estimator=TokenEstimator(self.context.model.provider),
        )
        self.compactor = ContextCompactor(self.context, summarizer)

        self.planner = PlannerAgent(
            transport, roles.model_for("planner", default_model), self.context
        )
        self.coder = CoderAgent(transport, roles.model_for("coder", default_model), self.context)
        self.tester = TesterAgent(transport, roles.model_for("tester", default_model), self.context)
        # レビューは会話に含めない単発呼び出し
        self.reviewer = ReviewerAgent(transport, roles.model_for("reviewer", default_model))

        # 注入されたマネージャーのモデル設定は、同じIDのロールでそのまま使う
        known = {self.context.model.id: self.context.model}
        self._model_configs: dict[str, ModelConfig] = {
            agent.model_id: known.get(agent.model_id) or lookup(agent.model_id)
            for agent in (self.planner, self.coder, self.tester)
        }

        self._machine = RunStateMachine()
        self._escalated: set[str] = set()

    @property
    def phase(self) -> RunPhase:
        return self._machine.current_state

    async def run(self, request: str, plan_feedback: str | None = None) -> RunOutcome:
        """依頼を1回の Run として最後まで実行する

        Args:
            request: ユーザーの依頼
            plan_feedback: 作成した計画への変更依頼（指定時は実行前に計画を修正）

        Returns:
            RunOutcome（delivered / blocked / failed）
        """
        config = self.settings.orchestrator
        budget = ReworkBudget(max_reworks=config.max_review_reworks)
        retries = RetryManager(policy=RetryPolicy(max_retries=config.max_task_retries))
        self._machine = RunStateMachine(can_rework=budget.has_remaining)
        self._escalated = set()
        self.context.reset()
        files: dict[str, str] = {}

        logger.info("Run開始: %s", request[:80])

        # ─── 計画 ───
        await self._prepare(self.planner)
        plan = await self.planner.create_project_plan(request)
        if plan is not None and plan_feedback:
            await self._prepare(self.planner)
            revised = await self.planner.revise_plan(plan, plan_feedback)
            if revised is None:
                logger.warning("計画を修正できなかったため元の計画で進めます")
            else:
                plan = revised
        if plan is None:
            self._advance(RunEvent.PLAN_FAILED)
            blockers = ["計画を作成できませんでした（モデル応答なし、または解析不能）"]
            return RunOutcome(
                status=RunStatus.FAILED,
                request=request,
                blockers=blockers,
                compactions=self.context.compaction_count,
                summary=build_summary(RunStatus.FAILED, request, None),
            )
        self._advance(RunEvent.PLAN_CREATED)

        self.context.set_project_info(plan.project_name, plan.description, plan.tech_stack)
        for decision in plan.decisions:
            self.context.add_decision(decision)
        design_doc = self.planner.generate_design_document(plan)

        if config.scaffold:
            await self._prepare(self.coder)
            scaffold = await self.coder.generate_scaffolding(plan)
            if scaffold.success:
                self._apply_changes(scaffold, files)
            else:
                logger.warning("雛形を生成できなかったためタスク実行に進みます: %s", scaffold.error)

        # ─── 実装・テスト・レビュー ───
        pending = list(plan.tasks)
        feedback: str | None = None
        last_test: TestingResult | None = None
        security_issues: list[SecurityIssue] | None = None
        while True:
            for task in pending:
                result = await self._execute_task(task, plan, design_doc, files, retries, feedback)
                last_test = result or last_test
            self._advance(RunEvent.ALL_TASKS_PROCESSED)

            if config.security_scan:
                await self._prepare(self.tester)
                security_issues = await self.tester.security_scan(files)

            review = await self.reviewer.review_project(
                plan,
                files,
                design_doc,
                last_test,
                request=request,
                security_issues=security_issues,
            )
            self.observer.on_review(review)

            if review.approved:
                self._advance(RunEvent.REVIEW_APPROVED)
                status = RunStatus.DELIVERED
                break
            if not budget.has_remaining():
                self._advance(RunEvent.REWORK_EXHAUSTED)
                status = RunStatus.BLOCKED
                break

            self._advance(RunEvent.REVIEW_REJECTED)
            round_no = budget.consume()
            pending = self._select_rework(plan, review)
            feedback = self._review_feedback(review)
            for task in pending:
                task.status = TaskStatus.PENDING
                task.attempts = 0
                task.last_error = None
                retries.reset_task(task.id)
            self.context.add_decision(
                f"レビュー差し戻し{round_no}回目: {', '.join(t.id for t in pending)} を再実装"
            )
            logger.info(
                "レビュー差し戻し %d/%d: %d タスクを再実行",
                round_no,
                budget.max_reworks,
                len(pending),
            )
            self._advance(RunEvent.RETRY_TASK)

        # ─── 納品 ───
        report = await self.reviewer.generate_delivery_report(plan, review)
        self.observer.on_report(report)
        if status == RunStatus.DELIVERED:
            self._advance(RunEvent.DELIVERED)

        outcome = RunOutcome(
            status=status,
            request=request,
            plan=plan,
            design_doc=self.planner.generate_design_document(plan),
            files=dict(files),
            review=review,
            security_issues=security_issues or [],
            report=report,
            blockers=list(review.blockers) if status != RunStatus.DELIVERED else [],
            rework_rounds=budget.used,
            compactions=self.context.compaction_count,
            summary=build_summary(status, request, plan),
        )
        logger.info("Run終了: %s | %s", outcome.summary, self.context.get_status_summary())
        return outcome

    # ─── タスク実行 ─────────────────────────────────────

    async def _execute_task(
        self,
        task: PlanTask,
        plan: ProjectPlan,
        design_doc: str,
        files: dict[str, str],
        retries: RetryManager,
        feedback: str | None,
    ) -> TestingResult | None:
        """1タスクを合格または試行回数切れまで実行する

        Returns:
            最後のテスト結果（テストまで到達しなかった場合は None）
        """
        last_test: TestingResult | None = None
        while True:
            task.status = TaskStatus.IN_PROGRESS
            task.attempts += 1
            self.observer.on_task_status(task)

            await self._prepare(self.coder)
            code = await self.coder.implement_task(task, plan, design_doc, files, feedback)

            if code.success:
                changed = self._apply_changes(code, files)
                self._advance(RunEvent.CODE_READY)

                await self._prepare(self.tester)
                last_test = await self.tester.run_tests(changed, design_doc, task)
                if last_test.passed:
                    self._advance(RunEvent.TESTS_PASSED)
                    task.status = TaskStatus.COMPLETED
                    task.last_error = None
                    self.observer.on_task_status(task)
                    return last_test

                self._advance(RunEvent.TESTS_FAILED)
                error = last_test.summary or "テスト不合格"
                feedback = last_test.feedback() or error
            else:
                self._advance(RunEvent.CODE_FAILED)
                error = code.error or "実装に失敗しました"

            retries.record_failure(task.id, error)
            task.last_error = error
            if retries.is_exhausted(task.id) and await self._escalate(task, retries):
                self._advance(RunEvent.RETRY_TASK)
                continue
            if retries.is_exhausted(task.id):
                task.status = TaskStatus.FAILED
                logger.warning(
                    "タスク %s は %d 回失敗したため打ち切り: %s",
                    task.id,
                    retries.get_attempt_count(task.id),
                    error,
                )
                self.observer.on_task_status(task)
                self._advance(RunEvent.TASK_ABANDONED)
                return last_test

            logger.info(
                "タスク %s を再実行 (%d/%d): %s",
                task.id,
                retries.get_attempt_count(task.id),
                retries.policy.max_retries,
                error,
            )
            self._advance(RunEvent.RETRY_TASK)

    async def _escalate(self, task: PlanTask, retries: RetryManager) -> bool:
        """試行回数切れのタスクを Planner に簡略化させる（タスクごとに Run 中1回まで）

        Returns:
            簡略化したタスクで再実行する場合 True
        """
        if not self.settings.orchestrator.escalate_failed_tasks or task.id in self._escalated:
            return False
        self._escalated.add(task.id)

        state = retries.get_retry_state(task.id)
        await self._prepare(self.planner)
        simplified = await self.planner.simplify_task(task, list(state.errors) if state else [])
        if simplified is None:
            return False

        task.title = simplified.title
        task.description = simplified.description
        task.attempts = 0
        retries.reset_task(task.id)
        self.context.add_decision(f"タスク {task.id} を簡略化: {simplified.title}")
        logger.info("タスク %s を簡略化して再実行: %s", task.id, simplified.title)
        return True

    def _apply_changes(self, code: CodeResult, files: dict[str, str]) -> dict[str, str]:
        """Coder の変更をファイル集合に反映し、変更されたファイルを返す"""
        for path in code.deleted:
            files.pop(path, None)
        for path, content in code.files.items():
            files[path] = content
            self.context.add_file(path)
        return dict(code.files)

    # ─── レビュー差し戻し ───────────────────────────────

    @staticmethod
    def _select_rework(plan: ProjectPlan, review: ReviewResult) -> list[PlanTask]:
        """差し戻しで再実行するタスクを選ぶ

        失敗タスクと、ブロッカー・不足項目で言及されたタスク。
        特定できない場合は全タスク。
        """
        mentions = " ".join(review.blockers + review.missing_items).lower()
        selected = [
            task
            for task in plan.tasks
            if task.status == TaskStatus.FAILED
            or task.id.lower() in mentions
            or (task.title and task.title.lower() in mentions)
        ]
        return selected or list(plan.tasks)

    @staticmethod
    def _review_feedback(review: ReviewResult) -> str:
        lines = ["## レビュー指摘"]
        lines.extend(f"- ブロッカー: {b}" for b in review.blockers)
        lines.extend(f"- 不足: {m}" for m in review.missing_items)
        lines.extend(f"- 改善点: {w}" for w in review.code_quality.weaknesses)
        if review.summary:
            lines.append(review.summary)
        return "\n".join(lines)

    # ─── 共通処理 ───────────────────────────────────────

    async def _prepare(self, agent: BaseAgent) -> None:
        """エージェントのモデルで予算を数え直し、呼び出し前にしきい値未満へ戻す"""
        self.context.update_model(self._model_configs[agent.model_id])
        await self._ensure_budget()

    async def _ensure_budget(self) -> None:
        """モデル呼び出し前にコンテキスト使用率をしきい値未満に戻す"""
        outcome = await self.compactor.ensure_budget()
        if outcome.performed:
            self.observer.on_compaction(outcome)

    def _advance(self, event: RunEvent) -> RunPhase:
        previous = self._machine.current_state
        current = self._machine.transition(event)
        self.observer.on_phase_change(previous, current)
        return current
