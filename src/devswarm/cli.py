"""DevSwarm CLI

コマンドラインインターフェース。
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path


def main(argv=None):
    """メインエントリーポイント"""
    parser = argparse.ArgumentParser(
        description="DevSwarm - エージェントチームによるプロジェクト生成",
        prog="devswarm",
    )
    parser.add_argument("--config", help="設定ファイルのパス（devswarm.config.yaml）")

    subparsers = parser.add_subparsers(dest="command", help="利用可能なコマンド")

    # run コマンド
    run_parser = subparsers.add_parser("run", help="依頼からプロジェクトを生成")
    run_parser.add_argument("request", help="実装してほしい内容（自然言語）")
    run_parser.add_argument("--model", help="使用するモデルID（省略時は設定値）")
    run_parser.add_argument("--output", default="./output", help="成果物の出力先ディレクトリ")
    run_parser.add_argument(
        "--revise", metavar="FEEDBACK", help="作成した計画への変更依頼（実行前に計画を修正）"
    )

    # models コマンド
    subparsers.add_parser("models", help="登録済みモデルの一覧を表示")

    # budget コマンド
    budget_parser = subparsers.add_parser("budget", help="モデルのコンテキスト予算を表示")
    budget_parser.add_argument("model", help="モデルID")

    args = parser.parse_args(argv)

    from .core.config import reload_settings

    settings = reload_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.logging.level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "run":
        return run_project(args)
    elif args.command == "models":
        return show_models()
    elif args.command == "budget":
        return show_budget(args)
    else:
        parser.print_help()
        sys.exit(1)


def run_project(args):
    """依頼を1回の Run として実行し、成果物を書き出す

    Returns:
        終了コード（0: 納品 / 1: 計画失敗 / 2: 差し戻し上限による中断）
    """

    async def _run():
        from .llm.client import LLMClient
        from .llm.transport import LLMTransport
        from .orchestrator import Orchestrator

        print(f"📝 依頼: {args.request}")
        print("-" * 50)

        transport = LLMTransport(LLMClient())
        try:
            orchestrator = Orchestrator(transport, model=args.model)
            return await orchestrator.run(args.request, plan_feedback=args.revise)
        finally:
            await transport.close()

    outcome = asyncio.run(_run())

    print("-" * 50)
    if outcome.plan is None:
        print(f"❌ 失敗: {outcome.summary}")
        for blocker in outcome.blockers:
            print(f"   • {blocker}")
        return 1

    output_dir = Path(args.output)
    written = write_outputs(output_dir, outcome.files, outcome.report, outcome.design_doc)
    print(f"{'✅' if outcome.status.value == 'delivered' else '⚠️'} {outcome.summary}")
    print(f"📁 {written} ファイルを {output_dir} に出力しました")
    for blocker in outcome.blockers:
        print(f"   🚫 {blocker}")
    return 0 if outcome.status.value == "delivered" else 2


def write_outputs(output_dir: Path, files: dict[str, str], report: str, design_doc: str) -> int:
    """成果物・納品レポート・設計書を書き出す

    出力先ディレクトリの外を指すパスは書き出さない。

    Returns:
        書き出した成果物ファイル数
    """
    root = output_dir.resolve()
    root.mkdir(parents=True, exist_ok=True)
    written = 0
    for rel_path, content in files.items():
        target = (root / rel_path).resolve()
        if not target.is_relative_to(root):
            logging.getLogger(__name__).warning("出力先外のパスを無視: %s", rel_path)
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        written += 1

    if report:
        (root / "DELIVERY_REPORT.md").write_text(report, encoding="utf-8")
    if design_doc:
        (root / "design_doc.md").write_text(design_doc, encoding="utf-8")
    return written


def show_models():
    """登録済みモデルの一覧を表示"""
    from .context.model_configs import list_models
    from .context.tokens import format_token_count

    print(f"{'ID':<45} {'Context':>10} {'Output':>10}")
    print("-" * 67)
    for config in list_models():
        print(
            f"{config.id:<45} {format_token_count(config.context_window_tokens):>10} "
            f"{format_token_count(config.reserved_output_tokens):>10}"
        )
    return 0


def show_budget(args):
    """モデルのコンテキスト予算を表示"""
    from .context.model_configs import get_model_summary, lookup
    from .context.tokens import format_token_count
    from .core.config import get_settings

    config = lookup(args.model)
    threshold = get_settings().context.compaction_threshold
    print(get_model_summary(args.model))
    print(f"  使用可能予算: {format_token_count(config.usable_budget)} トークン")
    print(
        f"  圧縮しきい値: {threshold:.0%} "
        f"({format_token_count(int(config.usable_budget * threshold))} トークン)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
