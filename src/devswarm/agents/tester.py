"""Tester エージェント: 生成されたファイルを敵対的に検査する

合格条件: overallStatus が pass かつ critical / high の不具合がないこと。
"""

from __future__ import annotations

import logging

from pydantic import Field, ValidationError

from ..llm.response_parser import Parsed, StrList, parse_json_response, parse_model
from .base import BaseAgent, render_files
from .models import AgentRole, Bug, LenientModel, PlanTask, SecurityIssue, TestingResult

logger = logging.getLogger(__name__)

# 検査対象ファイルのファイルごとの上限
TEST_FILE_CHARS = 6000


class TesterOutput(LenientModel):
    """Tester のJSON出力"""

    overall_status: str = Field(default="fail", alias="overallStatus")
    bugs: list[Bug] = Field(default_factory=list)
    suggestions: StrList = Field(default_factory=list)
    passed_checks: StrList = Field(default_factory=list, alias="passedChecks")
    summary: str = ""


class SecurityScanOutput(LenientModel):
    """セキュリティ監査のJSON出力"""

    issues: list[SecurityIssue] = Field(default_factory=list)


class TesterAgent(BaseAgent):
    """コードを検査するエージェント"""

    __test__ = False

    role = AgentRole.TESTER
    default_name = "Tester"

    async def run_tests(
        self,
        files: dict[str, str],
        design_doc: str,
        task: PlanTask | None = None,
    ) -> TestingResult:
        """ファイル集合を検査する

        Args:
            files: 検査対象（パス -> 内容）
            design_doc: 設計書
            task: 直前に実装したタスク（指定時はそのタスクに焦点を当てる）

        Returns:
            TestingResult（モデル失敗・解析失敗は不合格として返す）
        """
        prompt = f"## 設計書\n{design_doc}\n\n## 検査対象のコード\n"
        prompt += render_files(files, TEST_FILE_CHARS) or "(ファイルなし)"
        if task is not None:
            prompt += f"\n\n## 直前に実装したタスク\n{task.id}: {task.title}\n{task.description}"
        prompt += "\n\nバグ・セキュリティ・品質・要件適合を検査し、JSONで報告してください。"

        response = await self.process_task(prompt)
        if not response.success:
            return TestingResult(passed=False, summary=f"テスト実行失敗: {response.error}")

        output = parse_model(response.content, TesterOutput)
        if output is None:
            return TestingResult(passed=False, summary="テスト結果を解析できません")

        blocking = [bug for bug in output.bugs if bug.is_blocking]
        passed = output.overall_status.lower() == "pass" and not blocking
        summary = output.summary or self._summarize(output, passed, len(blocking))

        logger.info(
            "テスト結果: %s (bugs=%d, blocking=%d)",
            "pass" if passed else "fail",
            len(output.bugs),
            len(blocking),
        )
        return TestingResult(
            passed=passed,
            bugs=output.bugs,
            suggestions=output.suggestions,
            passed_checks=output.passed_checks,
            summary=summary,
        )

    async def security_scan(self, files: dict[str, str]) -> list[SecurityIssue]:
        """セキュリティに絞った監査を行う

        応答はオブジェクト {"issues": [...]} または配列のどちらでも受け付ける。
        モデル失敗・解析失敗は空リスト（例外を送出しない）。
        """
        logger.info("セキュリティ監査開始 (%dファイル)", len(files))
        prompt = (
            "このコードベースのセキュリティ監査を行ってください。\n\n"
            f"## コードベース\n{render_files(files, TEST_FILE_CHARS) or '(ファイルなし)'}\n\n"
            "## 確認項目\n"
            "1. インジェクション（SQL, NoSQL, コマンド）\n"
            "2. XSS / CSRF\n"
            "3. 認証・認可の不備\n"
            "4. 機密情報の露出・ハードコード\n"
            "5. 安全でないデシリアライズ・設定ミス\n\n"
            '次の形式のJSONのみで回答してください: {"issues": [{"severity": '
            '"critical|high|medium|low|info", "type": "...", "file": "path", "line": 1, '
            '"description": "...", "recommendation": "..."}]}'
        )
        response = await self.process_task(prompt)
        if not response.success:
            logger.warning("セキュリティ監査失敗: %s", response.error)
            return []

        result = parse_json_response(response.content)
        if not isinstance(result, Parsed):
            logger.warning("セキュリティ監査の結果を解析できません")
            return []

        value = result.value
        if isinstance(value, dict):
            value = value.get("issues", value.get("securityIssues", []))
        try:
            output = SecurityScanOutput.model_validate({"issues": value})
        except ValidationError:
            logger.warning("セキュリティ監査の結果が不正な形式です")
            return []

        logger.info(
            "セキュリティ監査完了: %d件（重大 %d件）",
            len(output.issues),
            sum(1 for issue in output.issues if issue.is_blocking),
        )
        return output.issues

    @staticmethod
    def _summarize(output: TesterOutput, passed: bool, blocking: int) -> str:
        if passed:
            return f"すべてのチェックに合格 ({len(output.passed_checks)}項目)"
        return f"{len(output.bugs)}件の不具合（うち重大 {blocking}件）"
