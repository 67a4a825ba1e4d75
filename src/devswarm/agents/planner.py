"""Planner エージェント: 依頼をプロジェクト計画に分解する

計画のタスク順がそのまま実行順になるため、depends_on を満たすように
安定なトポロジカル順序へ並べ替えてから返す。
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from ..llm.response_parser import StrList, parse_model
from .base import BaseAgent
from .models import AgentRole, FileTreeNode, LenientModel, PlanTask, ProjectPlan

logger = logging.getLogger(__name__)


# ─── モデル出力 ─────────────────────────────────────────


class PlannedTaskOutput(LenientModel):
    """モデルが返すタスク1件"""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    title: str = ""
    description: str = ""
    depends_on: StrList = Field(default_factory=list)
    dependencies: StrList = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return f"task-{value}"
        return value


class PlannerOutput(LenientModel):
    """Planner のJSON出力"""

    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(default="", alias="projectName")
    description: str = ""
    tech_stack: StrList = Field(default_factory=list, alias="techStack")
    file_tree: list[FileTreeNode] = Field(default_factory=list, alias="fileTree")
    tasks: list[PlannedTaskOutput] = Field(default_factory=list)
    decisions: StrList = Field(default_factory=list)


class SimplifyOutput(LenientModel):
    """タスク簡略化のJSON出力"""

    model_config = ConfigDict(populate_by_name=True)

    simplified_task: PlannedTaskOutput | None = Field(default=None, alias="simplifiedTask")
    notes: str = ""


# ─── 並べ替え ───────────────────────────────────────────


def order_tasks(tasks: list[PlanTask]) -> list[PlanTask]:
    """依存関係を満たす安定なトポロジカル順序を返す

    Kahn's algorithm で、実行可能なタスクのうち元の順序が最も早いものを
    常に先に取り出す。依存関係が既に満たされていれば元の順序のまま。
    不明な依存先は無視し、循環依存がある場合は元の順序を維持する。
    """
    index = {t.id: i for i, t in enumerate(tasks)}
    in_degree = {t.id: 0 for t in tasks}
    dependents: dict[str, list[str]] = {t.id: [] for t in tasks}
    for task in tasks:
        for dep in dict.fromkeys(task.depends_on):
            if dep in index and dep != task.id:
                in_degree[task.id] += 1
                dependents[dep].append(task.id)

    ready = sorted((tid for tid, deg in in_degree.items() if deg == 0), key=index.__getitem__)
    ordered: list[str] = []
    while ready:
        tid = ready.pop(0)
        ordered.append(tid)
        for child in dependents[tid]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)
        ready.sort(key=index.__getitem__)

    if len(ordered) != len(tasks):
        cyclic = [t.id for t in tasks if t.id not in ordered]
        logger.warning("タスクに循環依存があるため元の順序を維持します: %s", ", ".join(cyclic))
        return list(tasks)

    by_id = {t.id: t for t in tasks}
    return [by_id[tid] for tid in ordered]


# ─── PlannerAgent ───────────────────────────────────────


class PlannerAgent(BaseAgent):
    """プロジェクト計画を作成するエージェント"""

    role = AgentRole.PLANNER
    default_name = "Planner"

    async def create_project_plan(self, request: str) -> ProjectPlan | None:
        """依頼から ProjectPlan を作成する

        モデル呼び出し・解析に失敗した場合、またはタスクが1件もない場合は None。
        """
        logger.info("計画作成開始: %s", request[:80])
        response = await self.process_task(
            f"## 依頼\n{request}\n\n"
            "この依頼を実装するためのプロジェクト計画を作成してください。"
        )
        if not response.success:
            logger.error("計画作成失敗: %s", response.error)
            return None

        output = parse_model(response.content, PlannerOutput)
        if output is None or not output.tasks:
            logger.error("計画を解析できない、またはタスクが空です")
            return None

        plan = self._to_plan(output, request)
        logger.info(
            "計画作成完了: %s (%dタスク, %dファイル)",
            plan.project_name,
            len(plan.tasks),
            len(plan.file_paths()),
        )
        return plan

    @staticmethod
    def _to_plan(output: PlannerOutput, request: str) -> ProjectPlan:
        tasks: list[PlanTask] = []
        seen: set[str] = set()
        for i, raw in enumerate(output.tasks, start=1):
            task_id = raw.id or f"task-{i}"
            if task_id in seen:
                task_id = f"task-{i}"
            seen.add(task_id)
            tasks.append(
                PlanTask(
                    id=task_id,
                    title=raw.title or raw.description[:60] or task_id,
                    description=raw.description or raw.title,
                    depends_on=raw.depends_on or raw.dependencies,
                )
            )

        return ProjectPlan(
            project_name=output.project_name or "project",
            description=output.description or request,
            tech_stack=list(dict.fromkeys(output.tech_stack)),
            file_tree=output.file_tree,
            tasks=order_tasks(tasks),
            decisions=output.decisions,
        )

    async def revise_plan(self, plan: ProjectPlan, feedback: str) -> ProjectPlan | None:
        """ユーザーの変更依頼に従って計画を作り直す

        応答で省略された項目は元の計画を引き継ぐ。失敗した場合は None を返し、
        元の計画は変更しない。
        """
        logger.info("計画修正開始: %s", feedback[:80])
        tasks = "\n".join(
            f"{i}. {t.id} {t.title}: {t.description}" for i, t in enumerate(plan.tasks, start=1)
        )
        response = await self.process_task(
            "## 現在の計画\n"
            f"Project: {plan.project_name}\n"
            f"Description: {plan.description}\n"
            f"Tech Stack: {', '.join(plan.tech_stack)}\n\n"
            f"Tasks:\n{tasks}\n\n"
            f"## ユーザーからの変更依頼\n{feedback}\n\n"
            "変更依頼に従って計画を修正し、同じJSON形式で計画全体を返してください。"
        )
        if not response.success:
            logger.error("計画修正失敗: %s", response.error)
            return None

        output = parse_model(response.content, PlannerOutput)
        if output is None or not output.tasks:
            logger.error("修正後の計画を解析できない、またはタスクが空です")
            return None

        revised = self._to_plan(output, plan.description)
        logger.info("計画修正完了: %s (%dタスク)", revised.project_name, len(revised.tasks))
        return ProjectPlan(
            project_name=output.project_name or plan.project_name,
            description=output.description or plan.description,
            tech_stack=revised.tech_stack or plan.tech_stack,
            file_tree=output.file_tree or plan.file_tree,
            tasks=revised.tasks,
            decisions=output.decisions or plan.decisions,
        )

    async def simplify_task(self, task: PlanTask, errors: list[str]) -> PlanTask | None:
        """失敗を繰り返したタスクを、より達成しやすい内容に書き直す

        Returns:
            ID と依存関係を引き継いだ pending のタスク。
            簡略化できなかった（内容が変わらない・失敗した）場合は None
        """
        logger.info("タスク簡略化: %s %s", task.id, task.title)
        history = "\n".join(f"Attempt {i}: {e}" for i, e in enumerate(errors, start=1))
        response = await self.process_task(
            f"タスクが {len(errors)} 回失敗しました。Coder はこのタスクを完了できていません。\n\n"
            "## タスク\n"
            f"- ID: {task.id}\n- Title: {task.title}\n- Description: {task.description}\n\n"
            f"## エラー履歴\n{history or '(なし)'}\n\n"
            "失敗の原因を分析し、より小さく具体的な手順に簡略化したタスクを返してください。\n"
            "次の形式のJSONのみで回答してください: "
            f'{{"simplifiedTask": {{"id": "{task.id}", "title": "...", "description": "..."}}, '
            '"notes": "簡略化の説明"}'
        )
        if not response.success:
            logger.warning("タスク簡略化失敗: %s", response.error)
            return None

        output = parse_model(response.content, SimplifyOutput)
        if output is None or output.simplified_task is None:
            logger.warning("簡略化の応答を解析できません: %s", task.id)
            return None

        simplified = output.simplified_task
        title = simplified.title or task.title
        description = simplified.description or task.description
        if title == task.title and description == task.description:
            return None

        logger.info("タスク簡略化完了: %s -> %s (%s)", task.title, title, output.notes)
        return PlanTask(
            id=task.id,
            title=title,
            description=description,
            depends_on=list(task.depends_on),
        )

    def generate_design_document(self, plan: ProjectPlan) -> str:
        """計画から設計書（Markdown）を生成する"""
        return render_design_document(plan)


def _format_file_tree(nodes: list[FileTreeNode], indent: str = "") -> list[str]:
    lines: list[str] = []
    for node in nodes:
        name = node.name or node.path
        if node.type == "directory":
            lines.append(f"{indent}{name}/")
            lines.extend(_format_file_tree(node.children, indent + "  "))
        else:
            lines.append(f"{indent}{name}")
    return lines


def render_design_document(plan: ProjectPlan, now: datetime | None = None) -> str:
    """設計書を描画する

    Args:
        plan: プロジェクト計画
        now: 更新日時（省略時は現在時刻）
    """
    updated = (now or datetime.now(UTC)).isoformat()
    tree = "\n".join(_format_file_tree(plan.file_tree)) or "(none)"
    tech = ", ".join(plan.tech_stack) or "N/A"
    rows = "\n".join(
        f"| {t.id} | {t.title} | {t.status.value} | {', '.join(t.depends_on) or 'None'} |"
        for t in plan.tasks
    )
    decisions = "\n".join(f"- {d}" for d in plan.decisions) or "- None"

    return (
        f"# {plan.project_name} - Design Document\n\n"
        f"## Overview\n{plan.description}\n\n"
        f"## Last Updated\n{updated}\n\n"
        "---\n\n"
        f"## Tech Stack\n{tech}\n\n"
        "---\n\n"
        f"## File Structure\n\n```\n{tree}\n```\n\n"
        "---\n\n"
        "## Tasks\n\n"
        "| ID | Title | Status | Dependencies |\n"
        "|----|-------|--------|--------------|\n"
        f"{rows}\n\n"
        "---\n\n"
        f"## Design Decisions\n\n{decisions}\n"
    )
