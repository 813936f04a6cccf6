"""
Battle state machine and countdown timer.

transition() is the only place a BattleSession changes. Sessions are frozen
dataclasses; every event produces a new session via dataclasses.replace.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, Sequence, Union

from .errors import BattleStateError, InvalidStateError
from .level_system import question_score, round_half_up
from .models import (
    BattleRewards, BattleScore, BattleSession, BattleStatus, Opponent, Question
)

logger = logging.getLogger(__name__)


class BattleLifecycleLogger:
    """Structured logging for battle and timer lifecycle events."""

    @staticmethod
    def log_transition(user_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        logger.info(
            f"Battle lifecycle: STATE_TRANSITION - User {user_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'battle_state_transition',
                'user_id': user_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(user_id: str, details: str) -> None:
        logger.warning(
            f"Battle lifecycle: RACE_CONDITION - User {user_id}: {details}",
            extra={
                'event_type': 'battle_race_condition',
                'user_id': user_id,
                'details': details,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_battle_error(user_id: str, error_type: str, error_message: str, operation: str) -> None:
        logger.error(
            f"Battle lifecycle: ERROR - User {user_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'battle_error',
                'user_id': user_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_start(user_id: str, interval: float) -> None:
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - User {user_id}, Interval {interval}s",
            extra={
                'event_type': 'timer_countdown_start',
                'user_id': user_id,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(user_id: str, remaining_time: int) -> None:
        """Log timer ticks, throttled to avoid spam."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            logger.debug(
                f"Timer lifecycle: UPDATE - User {user_id}, Remaining {remaining_time}s",
                extra={
                    'event_type': 'timer_update',
                    'user_id': user_id,
                    'remaining_time': remaining_time,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(user_id: str, completion_type: str, ticks: int) -> None:
        logger.info(
            f"Timer lifecycle: COMPLETED - User {user_id}, Type {completion_type}, Ticks {ticks}",
            extra={
                'event_type': 'timer_completed',
                'user_id': user_id,
                'completion_type': completion_type,
                'ticks': ticks,
                'timestamp': time.time()
            }
        )


# Events

@dataclass(frozen=True)
class Search:
    user_id: str
    opponent: Optional[Opponent] = None
    time_per_question: int = 30


@dataclass(frozen=True)
class Initialize:
    questions: Sequence[Question]
    time_per_question: Optional[int] = None


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class Answer:
    question_index: int
    answer_index: Optional[int]
    time_spent: float
    score_multiplier: float = 1.0
    time_limit: Optional[int] = None


@dataclass(frozen=True)
class Tick:
    time_limit: Optional[int] = None


@dataclass(frozen=True)
class Settle:
    rewards: BattleRewards


@dataclass(frozen=True)
class Fail:
    message: str


BattleEvent = Union[Search, Initialize, Start, Answer, Tick, Settle, Fail]


def _ignored(session: BattleSession, event: BattleEvent) -> BattleSession:
    BattleLifecycleLogger.log_race_condition_detected(
        session.user_id,
        f"{type(event).__name__} ignored in state {session.status.value}"
    )
    return session


def _advance(session: BattleSession, correct: bool, points: int, bonus: int,
             time_limit: Optional[int]) -> BattleSession:
    """Record the current question's outcome and move to the next one."""
    answers = session.player_answers + (correct,)
    score = replace(session.score, player=session.score.player + points)
    next_index = session.current_question_index + 1

    if next_index >= session.total_questions:
        return replace(
            session,
            status=BattleStatus.COMPLETED,
            player_answers=answers,
            score=score,
            bonus_seconds=session.bonus_seconds + bonus,
            time_left=0,
        )

    return replace(
        session,
        current_question_index=next_index,
        player_answers=answers,
        score=score,
        bonus_seconds=session.bonus_seconds + bonus,
        time_left=time_limit if time_limit is not None else session.time_per_question,
    )


def transition(session: Optional[BattleSession], event: BattleEvent) -> BattleSession:
    """
    Apply one event to a session and return the resulting session.

    Events that do not apply to the current state are ignored and the
    session is returned unchanged.

    Raises:
        InvalidStateError: If a non-Search event arrives with no session
        BattleStateError: If the session's question index is out of range
    """
    if isinstance(event, Search):
        return BattleSession(
            user_id=event.user_id,
            status=BattleStatus.SEARCHING,
            opponent=event.opponent,
            time_per_question=event.time_per_question,
            time_left=event.time_per_question,
        )

    if session is None:
        raise InvalidStateError(f"No battle session for {type(event).__name__}")

    if isinstance(event, Initialize):
        if session.status != BattleStatus.SEARCHING:
            return _ignored(session, event)
        if not event.questions:
            raise BattleStateError("Cannot initialize a battle without questions")
        time_per_question = event.time_per_question or session.time_per_question
        opponent_score = session.opponent.score if session.opponent else 0
        return replace(
            session,
            status=BattleStatus.READY,
            questions=tuple(event.questions),
            current_question_index=0,
            score=BattleScore(player=0, opponent=opponent_score),
            player_answers=(),
            time_per_question=time_per_question,
            time_left=time_per_question,
            bonus_seconds=0,
        )

    if isinstance(event, Start):
        if session.status != BattleStatus.READY:
            return _ignored(session, event)
        return replace(session, status=BattleStatus.ACTIVE, started_at=time.time())

    if isinstance(event, Answer):
        if session.status != BattleStatus.ACTIVE:
            return _ignored(session, event)
        if event.question_index != session.current_question_index:
            BattleLifecycleLogger.log_race_condition_detected(
                session.user_id,
                f"stale answer for question {event.question_index}, "
                f"current is {session.current_question_index}"
            )
            return session

        question = session.current_question
        if question is None:
            raise BattleStateError(
                f"Question index {session.current_question_index} out of range "
                f"for {session.total_questions} questions"
            )

        correct = question.is_correct(event.answer_index)
        points = 0
        bonus = 0
        if correct:
            points = round_half_up(question_score(event.time_spent) * event.score_multiplier)
            bonus = int(max(0, session.time_per_question - event.time_spent))
        return _advance(session, correct, points, bonus, event.time_limit)

    if isinstance(event, Tick):
        if session.status != BattleStatus.ACTIVE:
            return _ignored(session, event)
        if session.current_question is None:
            raise BattleStateError(
                f"Question index {session.current_question_index} out of range "
                f"for {session.total_questions} questions"
            )
        remaining = session.time_left - 1
        if remaining > 0:
            return replace(session, time_left=remaining)
        return _advance(session, False, 0, 0, event.time_limit)

    if isinstance(event, Settle):
        if session.status != BattleStatus.COMPLETED:
            return _ignored(session, event)
        return replace(session, rewards=event.rewards)

    if isinstance(event, Fail):
        if session.is_terminal:
            return _ignored(session, event)
        return replace(session, status=BattleStatus.ERROR, last_error=event.message)

    raise BattleStateError(f"Unknown battle event: {event!r}")


class BattleTimer:
    """Single tick source for a battle session."""

    def __init__(self, user_id: str = None, interval: float = 1.0):
        self._user_id = user_id
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, on_tick: Callable[[], Awaitable[bool]]) -> asyncio.Task:
        """
        Start ticking in a background task.

        Args:
            on_tick: Coroutine called every interval; returning False stops the timer
        """
        self.cancel()
        self._ticks = 0
        self._task = asyncio.create_task(self._run(on_tick))
        return self._task

    async def _run(self, on_tick: Callable[[], Awaitable[bool]]) -> None:
        BattleLifecycleLogger.log_timer_start(self._user_id, self._interval)
        try:
            while True:
                await asyncio.sleep(self._interval)
                self._ticks += 1
                keep_running = await on_tick()
                if keep_running is False:
                    break
            BattleLifecycleLogger.log_timer_completion(self._user_id, "natural_expiry", self._ticks)
        except asyncio.CancelledError:
            BattleLifecycleLogger.log_timer_completion(self._user_id, "asyncio_cancelled", self._ticks)
            raise
        except Exception as e:
            BattleLifecycleLogger.log_battle_error(
                self._user_id, "countdown_execution_error", str(e), "timer_tick"
            )
            raise

    def cancel(self) -> None:
        # A tick callback may stop its own timer; never cancel the running task from inside.
        if self._task and not self._task.done() and self._task is not _current_task():
            self._task.cancel()
        self._task = None


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
