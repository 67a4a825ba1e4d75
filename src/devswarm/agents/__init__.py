"""エージェントロール

Planner / Coder / Tester / Reviewer。いずれもモデル呼び出し1回と解析を包む。
"""

from .base import BaseAgent
from .coder import CoderAgent
from .models import (
    AgentResponse,
    AgentRole,
    Bug,
    CodeQuality,
    CodeResult,
    FileTreeNode,
    PlanTask,
    ProjectPlan,
    QuickCheckResult,
    RequirementCoverage,
    ReviewResult,
    SecurityIssue,
    TaskStatus,
    TestingResult,
)
from .planner import PlannerAgent, order_tasks, render_design_document
from .reviewer import ReviewerAgent, default_delivery_report
from .tester import TesterAgent

__all__ = [
    "BaseAgent",
    "PlannerAgent",
    "CoderAgent",
    "TesterAgent",
    "ReviewerAgent",
    "order_tasks",
    "render_design_document",
    "default_delivery_report",
    "AgentResponse",
    "AgentRole",
    "Bug",
    "CodeQuality",
    "CodeResult",
    "FileTreeNode",
    "PlanTask",
    "ProjectPlan",
    "QuickCheckResult",
    "RequirementCoverage",
    "ReviewResult",
    "SecurityIssue",
    "TaskStatus",
    "TestingResult",
]
