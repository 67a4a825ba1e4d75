"""Coder エージェント: 1タスク分のファイル変更を提案する"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import Field, field_validator

from ..llm.response_parser import StrList, parse_model
from .base import BaseAgent, render_files
from .models import AgentRole, CodeResult, LenientModel, PlanTask, ProjectPlan

logger = logging.getLogger(__name__)

# 既存ファイルを参照用に埋め込むときのファイルごとの上限
EXISTING_FILE_CHARS = 2000


class FileOperation(LenientModel):
    """ファイル操作1件"""

    type: Literal["create", "modify", "delete"] = "create"
    path: str = ""
    content: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        kind = str(value or "").lower()
        if kind in ("delete", "remove"):
            return "delete"
        if kind in ("modify", "update", "edit"):
            return "modify"
        return "create"


class CoderOutput(LenientModel):
    """Coder のJSON出力"""

    operations: list[FileOperation] = Field(default_factory=list)
    terminal_commands: StrList = Field(default_factory=list, alias="terminalCommands")
    notes: str = ""


class CoderAgent(BaseAgent):
    """タスクを実装するエージェント"""

    role = AgentRole.CODER
    default_name = "Coder"

    async def implement_task(
        self,
        task: PlanTask,
        plan: ProjectPlan,
        design_doc: str,
        files: dict[str, str],
        feedback: str | None = None,
    ) -> CodeResult:
        """タスクを実装し、変更後のファイル内容を返す

        Args:
            task: 実装対象タスク
            plan: プロジェクト計画
            design_doc: 設計書（正とする仕様）
            files: 現在のファイル集合
            feedback: 前回試行のテスト結果やレビュー指摘

        Returns:
            CodeResult（失敗時は success=False と error）
        """
        logger.info("タスク実装: %s %s", task.id, task.title)
        prompt = self._build_prompt(task, plan, design_doc, files, feedback)
        response = await self.process_task(prompt)
        if not response.success:
            return CodeResult(success=False, error=response.error)

        output = parse_model(response.content, CoderOutput)
        if output is None or not output.operations:
            return CodeResult(success=False, error="ファイル操作を含む応答を解析できません")

        written: dict[str, str] = {}
        deleted: list[str] = []
        for op in output.operations:
            if not op.path:
                logger.warning("パスのないファイル操作を無視: task=%s", task.id)
                continue
            if op.type == "delete":
                deleted.append(op.path)
            else:
                written[op.path] = op.content

        if not written and not deleted:
            return CodeResult(success=False, error="有効なファイル操作がありません")

        logger.info("タスク実装完了: %s (%dファイル)", task.id, len(written))
        return CodeResult(
            success=True,
            files=written,
            deleted=deleted,
            commands=output.terminal_commands,
            notes=output.notes,
        )

    async def generate_scaffolding(self, plan: ProjectPlan) -> CodeResult:
        """計画のファイル構成から初期の雛形ファイルを生成する

        作成操作のみを採用する（削除・変更の指示は無視）。
        """
        logger.info("雛形生成: %s", plan.project_name)
        file_tree = json.dumps(
            [node.model_dump() for node in plan.file_tree], ensure_ascii=False, indent=2
        )
        prompt = (
            "次のプロジェクトの初期雛形を生成してください。\n\n"
            f"Project: {plan.project_name}\n"
            f"Description: {plan.description}\n"
            f"Tech Stack: {', '.join(plan.tech_stack)}\n\n"
            f"## 作成するファイル構成\n{file_tree}\n\n"
            "## 生成するもの\n"
            "1. 依存関係の定義ファイル（技術スタックに応じたもの）\n"
            "2. 設定ファイル（.env.example など）\n"
            "3. 基本構造を持つエントリーポイント\n"
            "4. セットアップ手順を記載した README.md\n\n"
            "各ファイルはプレースホルダーのない完全な内容で、JSONで返してください。"
        )
        response = await self.process_task(prompt)
        if not response.success:
            return CodeResult(success=False, error=response.error)

        output = parse_model(response.content, CoderOutput)
        if output is None:
            return CodeResult(success=False, error="雛形の応答を解析できません")

        written = {
            op.path: op.content for op in output.operations if op.path and op.type != "delete"
        }
        if not written:
            return CodeResult(success=False, error="雛形ファイルがありません")

        logger.info("雛形生成完了: %dファイル", len(written))
        return CodeResult(
            success=True,
            files=written,
            commands=output.terminal_commands,
            notes=output.notes,
        )

    @staticmethod
    def _build_prompt(
        task: PlanTask,
        plan: ProjectPlan,
        design_doc: str,
        files: dict[str, str],
        feedback: str | None,
    ) -> str:
        file_tree = json.dumps(
            [node.model_dump() for node in plan.file_tree], ensure_ascii=False, indent=2
        )
        prompt = (
            "## 実装するタスク\n"
            f"Task ID: {task.id}\nTitle: {task.title}\nDescription: {task.description}\n\n"
            "## プロジェクト\n"
            f"- Project Name: {plan.project_name}\n"
            f"- Description: {plan.description}\n"
            f"- Tech Stack: {', '.join(plan.tech_stack)}\n\n"
            f"## 設計書\n{design_doc}\n\n"
            f"## ファイル構成\n{file_tree}"
        )
        if files:
            prompt += f"\n\n## 既存のファイル\n{render_files(files, EXISTING_FILE_CHARS)}"
        if feedback:
            prompt += f"\n\n## 修正が必要な指摘\n{feedback}"
        return prompt + "\n\nこのタスクに必要なすべてのファイル操作をJSONで返してください。"
