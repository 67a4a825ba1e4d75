"""Reviewer エージェント: 納品前の最終品質ゲート

レビューは会話履歴に含めない単発の呼び出し。ファイル内容はファイルごとに
上限文字数で切り詰め、ContextManager を使わずに予算内へ収める。
review_project / quick_check は例外を送出せず、失敗時は未承認の結果を返す。
"""

from __future__ import annotations

import json
import logging

from ..llm.response_parser import parse_model
from .base import BaseAgent, render_files
from .models import (
    AgentRole,
    ProjectPlan,
    QuickCheckResult,
    ReviewResult,
    SecurityIssue,
    TaskStatus,
    TestingResult,
)

logger = logging.getLogger(__name__)

REVIEW_FILE_CHARS = 3000
QUICK_CHECK_FILE_CHARS = 1000


def default_delivery_report(plan: ProjectPlan, review: ReviewResult) -> str:
    """モデルを使わない納品レポート"""
    coverage = "\n".join(
        f"- **{item.requirement}:** {item.status}" for item in review.requirements_coverage
    )
    blockers = "\n".join(f"- {b}" for b in review.blockers)

    report = (
        f"# {plan.project_name} - Delivery Report\n\n"
        f"## Project Overview\n{plan.description}\n\n"
        "## Completion Status\n"
        f"- **Approved:** {'Yes' if review.approved else 'No'}\n"
        f"- **Completion:** {review.completion_percentage}%\n"
        f"- **Code Quality:** {review.code_quality.score}/100\n\n"
        f"## Requirements Coverage\n{coverage or '- (none reported)'}\n\n"
    )
    if blockers:
        report += f"## Blockers\n{blockers}\n\n"
    return report + f"## Summary\n{review.summary}\n\n---\n*Generated by DevSwarm*\n"


class ReviewerAgent(BaseAgent):
    """最終レビューを行うエージェント"""

    role = AgentRole.REVIEWER
    default_name = "Reviewer"

    async def review_project(
        self,
        plan: ProjectPlan,
        files: dict[str, str],
        design_doc: str,
        test_results: TestingResult | None = None,
        request: str | None = None,
        security_issues: list[SecurityIssue] | None = None,
    ) -> ReviewResult:
        """プロジェクト全体をレビューする

        Args:
            plan: プロジェクト計画（タスクの完了状況を含む）
            files: 成果物（パス -> 内容）
            design_doc: 設計書
            test_results: 直近のテスト結果
            request: 元の依頼（省略時は計画の説明）
            security_issues: セキュリティ監査の指摘（未実施なら None）

        Returns:
            ReviewResult（失敗時は approved=False, completion 0%, ブロッカー1件）
        """
        logger.info("最終レビュー開始: %s (%dファイル)", plan.project_name, len(files))
        prompt = self._build_review_prompt(
            plan, files, design_doc, test_results, request, security_issues
        )

        try:
            response = await self.process_task(prompt)
        except Exception as exc:
            logger.error("レビュー中に例外発生", exc_info=True)
            return ReviewResult.failed(f"Error during review: {exc}", "Review error")

        if not response.success:
            logger.warning("レビュー失敗: %s", response.error)
            return ReviewResult.failed(
                f"Review failed: {response.error}", "Could not complete review"
            )

        review = parse_model(response.content, ReviewResult)
        if review is None:
            return ReviewResult.failed("Could not parse review output", "Review parsing failed")

        logger.info(
            "レビュー結果: approved=%s, completion=%d%%, quality=%d/100, blockers=%d",
            review.approved,
            review.completion_percentage,
            review.code_quality.score,
            len(review.blockers),
        )
        return review

    async def quick_check(self, task_title: str, files: dict[str, str]) -> QuickCheckResult:
        """途中経過の簡易チェック（例外を送出しない）"""
        listing = "\n\n".join(
            f"{path}:\n{content[:QUICK_CHECK_FILE_CHARS]}" for path, content in files.items()
        )
        prompt = (
            f'タスク "{task_title}" の簡易チェック\n\n'
            f"## 対象ファイル\n{listing}\n\n"
            '次の形式のJSONのみで回答してください: {"ok": true, "issues": ["明らかな問題"]}'
        )
        try:
            response = await self.process_task(prompt)
        except Exception:
            logger.error("簡易チェック中に例外発生", exc_info=True)
            return QuickCheckResult(ok=False, issues=["Check failed"])

        if not response.success:
            return QuickCheckResult(ok=False, issues=["Check failed"])
        result = parse_model(response.content, QuickCheckResult)
        return result or QuickCheckResult(ok=False, issues=["Parse error"])

    async def generate_delivery_report(self, plan: ProjectPlan, review: ReviewResult) -> str:
        """納品レポートを生成する

        モデル呼び出しに失敗した場合は default_delivery_report を返す。
        """
        coverage = "\n".join(
            f"- {item.requirement}: {item.status}" for item in review.requirements_coverage
        )
        prompt = (
            "完了したプロジェクトの納品レポートをMarkdownで作成してください。\n\n"
            f"Project: {plan.project_name}\nDescription: {plan.description}\n\n"
            "## Review Results\n"
            f"- Approved: {review.approved}\n"
            f"- Completion: {review.completion_percentage}%\n"
            f"- Code Quality Score: {review.code_quality.score}/100\n\n"
            f"## Requirements Coverage\n{coverage}\n\n"
            f"## Strengths\n{chr(10).join(review.code_quality.strengths)}\n\n"
            f"## Areas for Improvement\n{chr(10).join(review.code_quality.weaknesses)}\n\n"
            "セットアップ手順と次のステップを含めてください。"
        )
        try:
            response = await self.process_task(prompt)
        except Exception:
            logger.error("納品レポート生成中に例外発生", exc_info=True)
            return default_delivery_report(plan, review)

        if not response.success or not response.content.strip():
            logger.warning("納品レポート生成失敗、既定テンプレートを使用: %s", response.error)
            return default_delivery_report(plan, review)
        return response.content

    @staticmethod
    def _build_review_prompt(
        plan: ProjectPlan,
        files: dict[str, str],
        design_doc: str,
        test_results: TestingResult | None,
        request: str | None,
        security_issues: list[SecurityIssue] | None = None,
    ) -> str:
        file_tree = json.dumps(
            [node.model_dump() for node in plan.file_tree], ensure_ascii=False, indent=2
        )
        checklist = "\n".join(
            f"- [{'x' if t.status == TaskStatus.COMPLETED else ' '}] {t.title}"
            + (f" (failed: {t.last_error})" if t.status == TaskStatus.FAILED else "")
            for t in plan.tasks
        )
        if test_results is None:
            tests = "(テスト未実施)"
        else:
            verdict = "Yes" if test_results.passed else "No"
            tests = f"{test_results.summary}\nTests Passed: {verdict}"
        security = ""
        if security_issues is not None:
            listing = "\n".join(f"- {issue.render()}" for issue in security_issues)
            security = f"## セキュリティ監査\n{listing or '指摘なし'}\n\n"

        return (
            "納品前の最終レビューです。\n\n"
            f"## 元の依頼\n{request or plan.description}\n\n"
            f"## 設計書\n{design_doc}\n\n"
            f"## 想定ファイル構成\n{file_tree}\n\n"
            f"## 実装タスク\n{checklist}\n\n"
            f"## テスト結果\n{tests}\n\n"
            f"{security}"
            f"## 実際のコード\n{render_files(files, REVIEW_FILE_CHARS) or '(ファイルなし)'}\n\n"
            "1. 実装は元の依頼を満たしているか\n"
            "2. 計画したファイルが正しい内容で作成されているか\n"
            "3. 本番品質か\n"
            "4. 納品を妨げるブロッカーはあるか\n\n"
            "公正かつ厳密に判定し、JSONで回答してください。"
        )
