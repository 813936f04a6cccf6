"""
Battle controller for managing one user's battle session.

Feeds answers and timer ticks through the battle state machine, talks to
persistence for questions and saves, and hands finished battles to the
economy.
"""
import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional

from .battle_engine import (
    Answer, BattleLifecycleLogger, BattleTimer, Fail, Initialize, Search,
    Settle, Start, Tick, transition
)
from .config_manager import ConfigManager
from .data_manager import PersistenceAdapter
from .effect_ledger import EffectLedger
from .errors import (
    FetchTimeoutError, InsufficientDataError, InvalidStateError,
    PersistenceError, QuizBattleError
)
from .level_system import battle_rewards, round_half_up
from .models import BattleResults, BattleSession, BattleStatus, Opponent

logger = logging.getLogger(__name__)

SessionListener = Callable[[BattleSession], Awaitable[None]]


class BattleController:
    """
    Runs battles for a single user.

    At most one session exists at a time. A new battle replaces a finished
    one; dismiss() returns the controller to idle.
    """

    def __init__(
        self,
        user_id: str,
        persistence: PersistenceAdapter,
        config_manager: Optional[ConfigManager] = None,
        economy=None,
        ledger: Optional[EffectLedger] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize BattleController.

        Args:
            user_id: The player's id
            persistence: Storage for questions, saves and statistics
            config_manager: Battle and reward settings
            economy: Optional EconomyOrchestrator receiving battle results
            ledger: Effect ledger for score/time boosts; defaults to the economy's
            clock: Source of epoch seconds
            rng: Random source for opponent generation
        """
        self.user_id = str(user_id)
        self.persistence = persistence
        self.config_manager = config_manager or ConfigManager()
        self.economy = economy
        self.ledger = ledger or (economy.ledger if economy is not None else None)
        self.clock = clock
        self.rng = rng or random.Random()

        self.session: Optional[BattleSession] = None
        self.results: Optional[BattleResults] = None
        self.timer = BattleTimer(self.user_id)

        self._listeners: List[SessionListener] = []
        self._initializing = False
        self._mounted = True
        self._question_started_at: Optional[float] = None
        self._settlement: Optional[asyncio.Task] = None

    # Listeners

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, session: BattleSession) -> None:
        for listener in list(self._listeners):
            try:
                await listener(session)
            except Exception as e:
                logger.error(f"Battle listener failed for user {self.user_id}: {e}")

    async def _apply(self, event) -> Optional[BattleSession]:
        """Run an event through the state machine and publish the result."""
        if not self._mounted:
            BattleLifecycleLogger.log_race_condition_detected(
                self.user_id, f"{type(event).__name__} dropped after unmount"
            )
            return self.session

        previous = self.session
        self.session = transition(previous, event)
        if self.session is previous:
            return self.session

        old_status = previous.status.value if previous else "idle"
        if old_status != self.session.status.value:
            BattleLifecycleLogger.log_transition(
                self.user_id, old_status, self.session.status.value, type(event).__name__
            )
        await self._notify(self.session)
        return self.session

    # Helpers

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def is_busy(self) -> bool:
        """True while initializing or while a battle is Ready or Active."""
        return self._initializing or (
            self.session is not None
            and self.session.status in (BattleStatus.READY, BattleStatus.ACTIVE)
        )

    def _score_multiplier(self) -> float:
        return self.ledger.score_multiplier() if self.ledger is not None else 1.0

    def _time_limit(self) -> int:
        base = self.config_manager.get_time_per_question()
        multiplier = self.ledger.time_multiplier() if self.ledger is not None else 1.0
        return max(1, round_half_up(base * multiplier))

    def generate_opponent(self, rating: Optional[float] = None,
                          score: Optional[int] = None) -> Opponent:
        """Create a simulated bot opponent near the given rating."""
        settings = self.config_manager.get_battle_settings()
        base = settings.opponent_base_rating if rating is None else rating
        number = self.rng.randint(1000, 9999)
        return Opponent(
            id=f"bot_{number}",
            name=f"Bot_{number}",
            rating=base + self.rng.randint(-100, 100),
            score=settings.opponent_score if score is None else score,
        )

    # Lifecycle

    async def initialize_battle(self, opponent: Optional[Opponent] = None,
                                category: Optional[str] = None,
                                difficulty: Optional[int] = None) -> bool:
        """
        Start a new battle: fetch questions, then go Ready and Active.

        Fetch timeouts, missing questions and storage failures put the session
        in the Error state instead of raising.

        Returns:
            True if the battle reached the Active state
        """
        if self.is_busy:
            BattleLifecycleLogger.log_race_condition_detected(
                self.user_id, "initialize_battle called while a battle is in progress"
            )
            return False

        self._initializing = True
        try:
            settings = self.config_manager.get_battle_settings()
            count = settings.questions_per_battle
            self.timer.cancel()
            await self.wait_for_settlement()
            self.results = None

            await self._apply(Search(
                user_id=self.user_id,
                opponent=opponent or self.generate_opponent(),
                time_per_question=settings.time_per_question,
            ))

            try:
                questions = await asyncio.wait_for(
                    self.persistence.fetch_questions(count, category, difficulty),
                    timeout=settings.fetch_timeout
                )
            except asyncio.TimeoutError:
                raise FetchTimeoutError(
                    f"Question fetch timed out after {settings.fetch_timeout}s"
                ) from None

            if len(questions) < count:
                raise InsufficientDataError(count, len(questions))

            await self._apply(Initialize(questions[:count], self._time_limit()))
            await asyncio.sleep(settings.ready_delay_ms / 1000)
            await self._apply(Start())

            if not self._mounted or self.session.status != BattleStatus.ACTIVE:
                return False

            self._question_started_at = self.clock()
            if settings.auto_timer:
                self.timer.start(self.tick)
            return True

        except (FetchTimeoutError, InsufficientDataError, PersistenceError) as e:
            await self._handle_battle_error(e, "initialize_battle")
            return False
        finally:
            self._initializing = False

    async def _handle_battle_error(self, error: Exception, operation: str) -> None:
        BattleLifecycleLogger.log_battle_error(
            self.user_id, type(error).__name__, str(error), operation
        )
        if not self._mounted:
            return

        self.timer.cancel()
        await self._apply(Fail(str(error)))

        if self.session is not None and self.session.questions:
            try:
                await self.persistence.save_session(self.session)
            except PersistenceError as save_error:
                logger.error(f"Failed to save battle progress for user {self.user_id}: {save_error}")

    async def submit_answer(self, answer_index: Optional[int], time_spent: Optional[float] = None,
                            question_index: Optional[int] = None) -> bool:
        """
        Submit an answer for the current question.

        Args:
            answer_index: Index of the chosen answer
            time_spent: Seconds taken; measured from when the question was shown if omitted
            question_index: The question being answered; stale indexes are ignored

        Returns:
            True if the answer was applied, False if it was ignored

        Raises:
            InvalidStateError: If there is no battle session
            PersistenceError: If saving progress fails; the session moves to Error
        """
        if self.session is None:
            raise InvalidStateError("No battle in progress")
        if not self._mounted or self.session.status != BattleStatus.ACTIVE:
            return False

        if question_index is None:
            question_index = self.session.current_question_index
        if question_index != self.session.current_question_index:
            BattleLifecycleLogger.log_race_condition_detected(
                self.user_id,
                f"answer for question {question_index} arrived after question "
                f"{self.session.current_question_index} was shown"
            )
            return False

        now = self.clock()
        if time_spent is None:
            time_spent = now - (self._question_started_at or now)

        await self._apply(Answer(
            question_index=question_index,
            answer_index=answer_index,
            time_spent=time_spent,
            score_multiplier=self._score_multiplier(),
            time_limit=self._time_limit(),
        ))
        self._question_started_at = self.clock()

        try:
            await self.persistence.save_session(self.session)
        except PersistenceError as e:
            await self._handle_battle_error(e, "submit_answer")
            raise

        if self.session.status == BattleStatus.COMPLETED:
            self.timer.cancel()
            await self._complete()
        return True

    async def tick(self) -> bool:
        """
        Advance the countdown by one second.

        Returns:
            True while the battle is still Active and the timer should keep running
        """
        if not self._mounted or self.session is None or self.session.status != BattleStatus.ACTIVE:
            return False

        if self.economy is not None:
            await self.economy.expire_due_effects()
        elif self.ledger is not None:
            self.ledger.poll_expired(self.clock())

        previous_index = self.session.current_question_index
        await self._apply(Tick(self._time_limit()))
        BattleLifecycleLogger.log_timer_update(self.user_id, self.session.time_left)

        if self.session.status == BattleStatus.COMPLETED:
            await self._complete()
            return False

        if self.session.current_question_index != previous_index:
            self._question_started_at = self.clock()
            try:
                await self.persistence.save_session(self.session)
            except PersistenceError as e:
                logger.error(f"Failed to save battle progress for user {self.user_id}: {e}")

        return self.session.status == BattleStatus.ACTIVE

    async def _complete(self) -> None:
        """
        Settle the finished battle in its own task.

        Cancelling the caller (the timer task on a timeout) leaves the
        settlement running until its writes finish.
        """
        self._settlement = asyncio.ensure_future(self._settle())
        await asyncio.shield(self._settlement)

    async def wait_for_settlement(self) -> None:
        """Wait until a finished battle's results are written."""
        settlement = self._settlement
        if settlement is not None and not settlement.done():
            await asyncio.shield(settlement)

    async def _settle(self) -> None:
        """Compute rewards for a completed session and hand them to the economy."""
        session = self.session
        settings = self.config_manager.get_reward_settings()
        streak = self.economy.profile.streak if self.economy is not None else 0

        rewards = battle_rewards(
            is_victory=session.is_victory,
            correct_answers=session.correct_answers,
            total_questions=session.total_questions,
            streak=streak,
            bonus_seconds=session.bonus_seconds,
            settings=settings,
        )
        await self._apply(Settle(rewards))

        total = session.total_questions
        self.results = BattleResults(
            is_victory=session.is_victory,
            player_score=session.score.player,
            opponent_score=session.score.opponent,
            correct_answers=session.correct_answers,
            total_questions=total,
            score_percentage=round_half_up(100 * session.correct_answers / total) if total else 0,
            xp=rewards.xp,
            coins=rewards.coins,
            streak_bonus=rewards.streak_bonus,
            time_bonus=rewards.time_bonus,
            opponent=session.opponent,
        )

        if self.economy is not None:
            try:
                await self.economy.apply_battle_result(self.results)
            except QuizBattleError as e:
                logger.error(f"Failed to apply battle result for user {self.user_id}: {e}")
            await self._apply(Settle(replace(
                rewards,
                achievements=tuple(self.results.achievements),
                items=tuple(self.results.items),
            )))
        else:
            try:
                await self.persistence.record_battle_outcome(self.user_id, self.results)
            except PersistenceError as e:
                logger.error(f"Failed to record battle outcome for user {self.user_id}: {e}")

        try:
            await self.persistence.clear_session(self.user_id)
        except PersistenceError as e:
            logger.error(f"Failed to clear battle save for user {self.user_id}: {e}")

        logger.info(
            f"Battle completed for user {self.user_id}: "
            f"{'victory' if self.results.is_victory else 'defeat'} "
            f"{self.results.player_score}-{self.results.opponent_score}",
            extra={
                'event_type': 'battle_completed',
                'user_id': self.user_id,
                'is_victory': self.results.is_victory,
                'timestamp': time.time()
            }
        )

    async def recover_battle(self) -> Optional[BattleSession]:
        """
        Resume a saved Active battle, if one exists and is fresh.

        Returns:
            The restored session, or None if nothing was restored
        """
        if self.is_busy:
            return None

        try:
            saved = await self.persistence.recover_session(self.user_id)
        except PersistenceError as e:
            logger.error(f"Failed to recover battle for user {self.user_id}: {e}")
            return None

        if saved is None or saved.status != BattleStatus.ACTIVE or not self._mounted:
            return None

        self.session = saved
        self.results = None
        self._question_started_at = self.clock()
        BattleLifecycleLogger.log_transition(self.user_id, "idle", saved.status.value, "recovered")
        await self._notify(saved)

        if self.config_manager.get_battle_settings().auto_timer:
            self.timer.start(self.tick)
        return saved

    async def dismiss(self) -> None:
        """Abandon the current session and return to idle."""
        self.timer.cancel()
        await self.wait_for_settlement()
        try:
            await self.persistence.clear_session(self.user_id)
        except PersistenceError as e:
            logger.error(f"Failed to clear battle save for user {self.user_id}: {e}")
        if self.session is not None:
            BattleLifecycleLogger.log_transition(
                self.user_id, self.session.status.value, "idle", "dismissed"
            )
        self.session = None
        self.results = None

    def unmount(self) -> None:
        """Stop the timer and ignore any state updates that arrive later."""
        self._mounted = False
        self._initializing = False
        self.timer.cancel()

    def get_status_summary(self) -> str:
        """Human-readable one-line status for the current session."""
        if self.session is None:
            return "No battle in progress"
        session = self.session
        if session.status == BattleStatus.ERROR:
            return f"Battle failed: {session.last_error}"
        if session.status == BattleStatus.COMPLETED:
            outcome = "Victory" if session.is_victory else "Defeat"
            return f"{outcome}: {session.score.player} vs {session.score.opponent}"
        if session.status == BattleStatus.ACTIVE:
            return (
                f"Question {session.current_question_index + 1}/{session.total_questions}, "
                f"{session.time_left}s left, score {session.score.player}"
            )
        return f"Battle {session.status.value}"
