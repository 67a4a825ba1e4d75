"""Run の状態機械

フェーズ遷移を遷移表で定義し、表にない遷移は TransitionError とする。

状態遷移:
- PLANNING -> EXECUTING (計画作成成功) / FAILED (計画失敗)
- EXECUTING -> TESTING (Coder 成功) / REWORKING (Coder 失敗)
- EXECUTING -> REVIEWING (全タスク処理済み)
- TESTING -> EXECUTING (テスト合格) / REWORKING (テスト不合格)
- REWORKING -> EXECUTING (再実行 または 打ち切って次タスクへ)
- REVIEWING -> DELIVERING (承認) / REWORKING (差し戻し) / BLOCKED (差し戻し回数切れ)
- DELIVERING -> DELIVERED
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass


class TransitionError(Exception):
    """不正なフェーズ遷移"""

    pass


class RunPhase(str, enum.Enum):
    """Run のフェーズ"""

    PLANNING = "planning"
    EXECUTING = "executing"
    TESTING = "testing"
    REWORKING = "reworking"
    REVIEWING = "reviewing"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    BLOCKED = "blocked"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunPhase.DELIVERED, RunPhase.BLOCKED, RunPhase.FAILED)


class RunEvent(str, enum.Enum):
    """フェーズ遷移を引き起こすイベント"""

    PLAN_CREATED = "plan_created"
    PLAN_FAILED = "plan_failed"
    CODE_READY = "code_ready"
    CODE_FAILED = "code_failed"
    TESTS_PASSED = "tests_passed"
    TESTS_FAILED = "tests_failed"
    RETRY_TASK = "retry_task"
    TASK_ABANDONED = "task_abandoned"
    ALL_TASKS_PROCESSED = "all_tasks_processed"
    REVIEW_APPROVED = "review_approved"
    REVIEW_REJECTED = "review_rejected"
    REWORK_EXHAUSTED = "rework_exhausted"
    DELIVERED = "delivered"


@dataclass
class Transition:
    """状態遷移の定義"""

    from_state: RunPhase
    to_state: RunPhase
    event: RunEvent
    guard: Callable[[], bool] | None = None


class StateMachine:
    """汎用状態機械基底クラス"""

    def __init__(self, initial_state: RunPhase, transitions: list[Transition]):
        self.current_state = initial_state
        self.history: list[RunPhase] = [initial_state]
        self._transitions = {(t.from_state, t.event): t for t in transitions}

    def can_transition(self, event: RunEvent) -> bool:
        """指定イベントで遷移可能か確認"""
        return (self.current_state, event) in self._transitions

    def get_valid_events(self) -> list[RunEvent]:
        """現在の状態から遷移可能なイベント一覧を取得"""
        return [event for (state, event) in self._transitions if state == self.current_state]

    def transition(self, event: RunEvent) -> RunPhase:
        """イベントを適用して状態遷移

        Args:
            event: 適用するイベント

        Returns:
            遷移後の状態

        Raises:
            TransitionError: 不正な遷移の場合
        """
        transition = self._transitions.get((self.current_state, event))

        if not transition:
            valid = [e.value for e in self.get_valid_events()]
            raise TransitionError(
                f"Invalid transition: {self.current_state.value} + {event.value}. "
                f"Valid events: {valid}"
            )

        if transition.guard and not transition.guard():
            raise TransitionError(f"Guard condition failed for {event.value}")

        self.current_state = transition.to_state
        self.history.append(self.current_state)
        return self.current_state


class RunStateMachine(StateMachine):
    """Run のフェーズ状態機械

    Args:
        can_rework: 差し戻し遷移のガード（全体の差し戻し予算が残っているか）
    """

    def __init__(self, can_rework: Callable[[], bool] | None = None) -> None:
        transitions = [
            Transition(RunPhase.PLANNING, RunPhase.EXECUTING, RunEvent.PLAN_CREATED),
            Transition(RunPhase.PLANNING, RunPhase.FAILED, RunEvent.PLAN_FAILED),
            Transition(RunPhase.EXECUTING, RunPhase.TESTING, RunEvent.CODE_READY),
            Transition(RunPhase.EXECUTING, RunPhase.REWORKING, RunEvent.CODE_FAILED),
            Transition(RunPhase.EXECUTING, RunPhase.REVIEWING, RunEvent.ALL_TASKS_PROCESSED),
            Transition(RunPhase.TESTING, RunPhase.EXECUTING, RunEvent.TESTS_PASSED),
            Transition(RunPhase.TESTING, RunPhase.REWORKING, RunEvent.TESTS_FAILED),
            Transition(RunPhase.REWORKING, RunPhase.EXECUTING, RunEvent.RETRY_TASK),
            Transition(RunPhase.REWORKING, RunPhase.EXECUTING, RunEvent.TASK_ABANDONED),
            Transition(RunPhase.REVIEWING, RunPhase.DELIVERING, RunEvent.REVIEW_APPROVED),
            Transition(
                RunPhase.REVIEWING, RunPhase.REWORKING, RunEvent.REVIEW_REJECTED, guard=can_rework
            ),
            Transition(RunPhase.REVIEWING, RunPhase.BLOCKED, RunEvent.REWORK_EXHAUSTED),
            Transition(RunPhase.DELIVERING, RunPhase.DELIVERED, RunEvent.DELIVERED),
        ]
        super().__init__(RunPhase.PLANNING, transitions)
