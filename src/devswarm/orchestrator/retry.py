"""リトライ管理

タスク単位の試行回数（RetryManager）と Run 全体の差し戻し回数（ReworkBudget）を
明示的な上限付きカウンタとして管理する。
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RetryPolicy:
    """リトライポリシー"""

    max_retries: int = 3


@dataclass
class TaskRetryState:
    """タスクのリトライ状態"""

    task_id: str
    attempt: int = 0
    errors: list[str] = field(default_factory=list)
    last_error: str | None = None


@dataclass
class RetryManager:
    """タスク単位のリトライマネージャー

    Coder の失敗とテスト不合格はどちらも1回の失敗として数える。
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    _retry_states: dict[str, TaskRetryState] = field(default_factory=dict)

    def record_failure(self, task_id: str, error: str) -> None:
        """タスク失敗を記録"""
        if task_id not in self._retry_states:
            self._retry_states[task_id] = TaskRetryState(task_id=task_id)

        state = self._retry_states[task_id]
        state.attempt += 1
        state.errors.append(error)
        state.last_error = error

    def should_retry(self, task_id: str) -> bool:
        """リトライすべきかどうか"""
        state = self._retry_states.get(task_id)
        if not state:
            return True

        return state.attempt < self.policy.max_retries

    def get_retry_state(self, task_id: str) -> TaskRetryState | None:
        """リトライ状態を取得"""
        return self._retry_states.get(task_id)

    def reset_task(self, task_id: str) -> None:
        """タスクのリトライ状態をリセット"""
        if task_id in self._retry_states:
            del self._retry_states[task_id]

    def get_attempt_count(self, task_id: str) -> int:
        """失敗回数を取得"""
        state = self._retry_states.get(task_id)
        return state.attempt if state else 0

    def is_exhausted(self, task_id: str) -> bool:
        """リトライ回数を使い切ったか"""
        return not self.should_retry(task_id)


@dataclass
class ReworkBudget:
    """Run 全体の差し戻し予算"""

    max_reworks: int = 2
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(self.max_reworks - self.used, 0)

    def has_remaining(self) -> bool:
        """差し戻し予算が残っているか"""
        return self.used < self.max_reworks

    def consume(self) -> int:
        """予算を1回分消費して、消費後の使用回数を返す

        Raises:
            ValueError: 予算を使い切っている場合
        """
        if not self.has_remaining():
            raise ValueError(f"差し戻し予算を使い切っています: {self.used}/{self.max_reworks}")
        self.used += 1
        return self.used
