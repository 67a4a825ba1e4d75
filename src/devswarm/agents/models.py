"""エージェント結果モデル

モデル出力はスキーマが保証されないため、欠落した配列フィールドは空リスト、
数値は範囲内に丸めて受け取る。
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from ..llm.response_parser import StrList


def _clamp_percent(value: Any) -> Any:
    if value is None:
        return 0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0, min(100, int(round(value))))
    return value


Percent = Annotated[int, BeforeValidator(_clamp_percent)]


class LenientModel(BaseModel):
    """モデル出力を受ける基底（null のフィールドは既定値として扱う）"""

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class AgentRole(str, enum.Enum):
    """エージェントのロール"""

    PLANNER = "planner"
    CODER = "coder"
    TESTER = "tester"
    REVIEWER = "reviewer"


class AgentResponse(BaseModel):
    """1回のモデル往復の結果"""

    model_config = ConfigDict(frozen=True)

    success: bool
    content: str = ""
    error: str | None = None
    agent_name: str = ""
    role: AgentRole | None = None


# ─── 計画 ───────────────────────────────────────────────


class TaskStatus(str, enum.Enum):
    """タスクの状態"""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FileTreeNode(LenientModel):
    """計画上のファイルツリーのノード"""

    name: str = ""
    type: Literal["file", "directory"] = "file"
    path: str = ""
    children: list[FileTreeNode] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.lower() in ("directory", "dir", "folder"):
            return "directory"
        return "file"


class PlanTask(BaseModel):
    """計画内のタスク

    Orchestrator が status / attempts / last_error をその場で更新する。
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str
    title: str
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None


class ProjectPlan(BaseModel):
    """Planner が作成するプロジェクト計画（Run終了時に破棄）"""

    project_name: str
    description: str
    tech_stack: list[str] = Field(default_factory=list)
    file_tree: list[FileTreeNode] = Field(default_factory=list)
    tasks: list[PlanTask] = Field(..., min_length=1)
    decisions: list[str] = Field(default_factory=list)

    def get_task(self, task_id: str) -> PlanTask | None:
        return next((t for t in self.tasks if t.id == task_id), None)

    def tasks_with_status(self, status: TaskStatus) -> list[PlanTask]:
        return [t for t in self.tasks if t.status == status]

    def file_paths(self) -> list[str]:
        """ファイルツリー中のファイルパス一覧"""
        paths: list[str] = []

        def _walk(nodes: list[FileTreeNode]) -> None:
            for node in nodes:
                if node.type == "file" and node.path:
                    paths.append(node.path)
                _walk(node.children)

        _walk(self.file_tree)
        return paths


# ─── 実装・テスト ───────────────────────────────────────


class CodeResult(BaseModel):
    """Coder の実装結果"""

    model_config = ConfigDict(frozen=True)

    success: bool
    files: dict[str, str] = Field(default_factory=dict, description="パス -> 内容")
    deleted: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)
    notes: str = ""
    error: str | None = None


class Bug(LenientModel):
    """Tester が報告した不具合"""

    severity: Literal["critical", "high", "medium", "low"] = "medium"
    file: str = ""
    description: str = ""
    fix: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> str:
        severity = str(value or "").lower()
        return severity if severity in ("critical", "high", "medium", "low") else "medium"

    @property
    def is_blocking(self) -> bool:
        return self.severity in ("critical", "high")


class SecurityIssue(LenientModel):
    """セキュリティ監査の指摘"""

    model_config = ConfigDict(frozen=True)

    severity: Literal["critical", "high", "medium", "low", "info"] = "medium"
    type: str = ""
    file: str = ""
    line: int | None = None
    description: str = ""
    recommendation: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> str:
        severity = str(value or "").lower()
        valid = ("critical", "high", "medium", "low", "info")
        return severity if severity in valid else "medium"

    @field_validator("line", mode="before")
    @classmethod
    def _coerce_line(cls, value: Any) -> int | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return None

    @property
    def is_blocking(self) -> bool:
        return self.severity in ("critical", "high")

    def render(self) -> str:
        location = f"{self.file}:{self.line}" if self.line is not None else self.file
        text = f"[{self.severity}] {self.type or 'issue'}"
        if location:
            text += f" ({location})"
        text += f": {self.description}"
        if self.recommendation:
            text += f" → {self.recommendation}"
        return text


class TestingResult(BaseModel):
    """Tester の判定"""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    passed: bool
    bugs: list[Bug] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    passed_checks: list[str] = Field(default_factory=list)
    summary: str = ""

    def feedback(self) -> str:
        """Coder に渡す修正指示"""
        lines = [self.summary] if self.summary else []
        for bug in self.bugs:
            location = f"{bug.file}: " if bug.file else ""
            fix = f" → {bug.fix}" if bug.fix else ""
            lines.append(f"- [{bug.severity}] {location}{bug.description}{fix}")
        return "\n".join(lines)


# ─── レビュー ───────────────────────────────────────────


class RequirementCoverage(LenientModel):
    """要件ごとの充足状況"""

    model_config = ConfigDict(frozen=True)

    requirement: str = ""
    status: Literal["fulfilled", "partial", "missing"] = "missing"
    notes: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        status = str(value or "").lower()
        return status if status in ("fulfilled", "partial", "missing") else "missing"


class CodeQuality(LenientModel):
    """コード品質評価"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    score: Percent = 0
    strengths: StrList = Field(default_factory=list)
    weaknesses: StrList = Field(default_factory=list)


class ReviewResult(LenientModel):
    """Reviewer の最終判定（作成後は不変）"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    approved: bool = False
    completion_percentage: Percent = Field(default=0, alias="completionPercentage")
    requirements_coverage: list[RequirementCoverage] = Field(
        default_factory=list, alias="requirementsCoverage"
    )
    code_quality: CodeQuality = Field(default_factory=CodeQuality, alias="codeQuality")
    missing_items: StrList = Field(default_factory=list, alias="missingItems")
    blockers: StrList = Field(default_factory=list)
    summary: str = ""

    @classmethod
    def failed(cls, blocker: str, summary: str) -> ReviewResult:
        """レビュー不能時の未承認結果"""
        return cls(
            approved=False,
            completion_percentage=0,
            code_quality=CodeQuality(score=0, weaknesses=["Review failed"]),
            blockers=[blocker],
            summary=summary,
        )


class QuickCheckResult(LenientModel):
    """途中経過の簡易チェック結果"""

    model_config = ConfigDict(frozen=True)

    ok: bool = False
    issues: StrList = Field(default_factory=list)
