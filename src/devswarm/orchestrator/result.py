"""Run 結果

1回の Run の最終状態・成果物・レビュー・納品レポートを集約する。
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field

from ..agents.models import ProjectPlan, ReviewResult, SecurityIssue, TaskStatus


class RunStatus(str, enum.Enum):
    """Run の終了ステータス"""

    DELIVERED = "delivered"
    BLOCKED = "blocked"
    FAILED = "failed"


class RunOutcome(BaseModel):
    """Run の結果"""

    model_config = ConfigDict(frozen=True)

    status: RunStatus = Field(..., description="終了ステータス")
    request: str = Field(..., description="元の依頼")
    plan: ProjectPlan | None = Field(default=None, description="最終的な計画（タスク状態を含む）")
    design_doc: str = Field(default="", description="設計書")
    files: dict[str, str] = Field(default_factory=dict, description="成果物（パス -> 内容）")
    review: ReviewResult | None = Field(default=None, description="最終レビュー")
    security_issues: list[SecurityIssue] = Field(
        default_factory=list, description="最後のセキュリティ監査の指摘"
    )
    report: str = Field(default="", description="納品レポート")
    blockers: list[str] = Field(default_factory=list, description="納品を妨げた要因")
    rework_rounds: int = Field(default=0, description="差し戻し回数")
    compactions: int = Field(default=0, description="コンテキスト圧縮回数")
    summary: str = Field(default="", description="人間向けサマリー")

    @property
    def completed_count(self) -> int:
        if self.plan is None:
            return 0
        return len(self.plan.tasks_with_status(TaskStatus.COMPLETED))

    @property
    def failed_count(self) -> int:
        if self.plan is None:
            return 0
        return len(self.plan.tasks_with_status(TaskStatus.FAILED))


def build_summary(status: RunStatus, request: str, plan: ProjectPlan | None) -> str:
    """人間向けサマリー文字列を構築"""
    if plan is None:
        return f"依頼「{request[:60]}」: 計画を作成できませんでした"

    total = len(plan.tasks)
    completed = len(plan.tasks_with_status(TaskStatus.COMPLETED))
    failed = len(plan.tasks_with_status(TaskStatus.FAILED))
    text = f"{plan.project_name}: {completed}/{total} タスク完了"
    if failed > 0:
        text += f"（{failed} 件失敗）"
    return f"{text} [{status.value}]"
