"""DevSwarm - コンテキスト予算を管理するエージェントチーム

Planner / Coder / Tester / Reviewer の4ロールで依頼をプロジェクトに仕上げる。
"""

__version__ = "0.1.0"
