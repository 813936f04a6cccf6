"""
Test fixtures and sample data for Quiz Battle tests.
"""
import asyncio
import json
from pathlib import Path
from typing import Dict, List
from unittest.mock import Mock, AsyncMock
import discord

from quizbattle.models import (
    Achievement, AchievementReward, AchievementTrigger, BattleResults,
    BattleStats, EffectType, GameItem, ItemEffect, Opponent, Question, Quest,
    QuestRequirement, QuestStatus, QuestType, UserProfile
)


def async_test(coro):
    """Decorator to run async test methods."""
    def wrapper(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self))
        finally:
            loop.close()
    wrapper.__name__ = coro.__name__
    wrapper.__doc__ = coro.__doc__
    return wrapper


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def create_sample_questions(count: int = 5) -> List[Question]:
        """Questions whose correct answer is always index 1."""
        return [
            Question(
                id=f"q{i}",
                text=f"Question {i}?",
                answers=(f"A{i}", f"B{i}", f"C{i}", f"D{i}"),
                correct_answer_index=1,
                category="general",
                difficulty=1,
            )
            for i in range(count)
        ]

    @staticmethod
    def create_opponent(score: int = 300) -> Opponent:
        return Opponent(id="bot_1234", name="Bot_1234", rating=1000, score=score)

    @staticmethod
    def create_battle_config(questions: int = 3, timer: int = 30) -> Dict:
        return {
            'battle': {
                'questions_per_battle': questions,
                'time_per_question': timer,
                'ready_delay_ms': 0,
                'opponent_score': 300,
                'auto_timer': False,
            }
        }

    @staticmethod
    def create_battle_results(is_victory: bool = True, correct: int = 3, total: int = 3,
                              xp: int = 130, coins: int = 65) -> BattleResults:
        return BattleResults(
            is_victory=is_victory,
            player_score=600 if is_victory else 100,
            opponent_score=300,
            correct_answers=correct,
            total_questions=total,
            score_percentage=round(100 * correct / total) if total else 0,
            xp=xp,
            coins=coins,
            opponent=TestFixtures.create_opponent(),
        )

    @staticmethod
    def create_store_items() -> List[GameItem]:
        return [
            GameItem(
                id="xp_potion", name="XP Potion", description="XP boost",
                price=100, effects=[ItemEffect(EffectType.XP_BOOST, 1.5, 300)]
            ),
            GameItem(
                id="hourglass", name="Hourglass", description="More time",
                price=250, effects=[ItemEffect(EffectType.TIME_BOOST, 1.5, 600)]
            ),
            GameItem(id="trophy", name="Trophy", description="Decoration", price=50),
        ]

    @staticmethod
    def create_achievements() -> List[Achievement]:
        return [
            Achievement(
                id="first_battle", title="First Blood",
                trigger_conditions=[AchievementTrigger('battles_played', 1)],
                rewards=[AchievementReward('coins', 25)],
            ),
            Achievement(
                id="rich", title="Rich",
                trigger_conditions=[AchievementTrigger('coins_earned', 100)],
            ),
            Achievement(id="manual", title="Manual Only"),
        ]

    @staticmethod
    def create_quests() -> List[Quest]:
        return [
            Quest(
                id="daily_battles", title="Warm Up", quest_type=QuestType.DAILY,
                category="battle", status=QuestStatus.AVAILABLE,
                requirements=[QuestRequirement('battles_played', 2)],
                xp_reward=50, coin_reward=20,
            ),
            Quest(
                id="weekly_correct", title="Scholar", quest_type=QuestType.WEEKLY,
                category="battle", status=QuestStatus.AVAILABLE,
                requirements=[QuestRequirement('correct_answers', 10)],
            ),
        ]

    @staticmethod
    def create_profile(user_id: str = "67890", **fields) -> UserProfile:
        return UserProfile(user_id=user_id, username="tester", **fields)

    @staticmethod
    def create_question_file_json(count: int = 6) -> Dict:
        return {
            "questions": [
                {
                    "id": f"gk-{i}",
                    "question": f"Question {i}?",
                    "answers": ["A", "B", "C", "D"],
                    "correct_answer": i % 4,
                    "category": "science" if i % 2 else "history",
                    "difficulty": 1,
                }
                for i in range(count)
            ]
        }

    @staticmethod
    def write_json(path: Path, data) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f)
        return path


class MockPersistence:
    """AsyncMock-backed PersistenceAdapter with sensible defaults."""

    @staticmethod
    def create(questions: List[Question] = None, profile: UserProfile = None,
               store: List[GameItem] = None) -> Mock:
        persistence = Mock()
        persistence.fetch_questions = AsyncMock(
            return_value=questions if questions is not None else TestFixtures.create_sample_questions(3)
        )
        persistence.save_session = AsyncMock()
        persistence.recover_session = AsyncMock(return_value=None)
        persistence.clear_session = AsyncMock()
        persistence.record_battle_outcome = AsyncMock(
            side_effect=lambda user_id, results, prior=None: _fold_stats(prior, results)
        )
        persistence.load_battle_stats = AsyncMock(return_value=BattleStats())
        persistence.load_profile = AsyncMock(return_value=profile or TestFixtures.create_profile())
        persistence.update_profile = AsyncMock()
        persistence.load_quests = AsyncMock(return_value=[])
        persistence.update_quest_status = AsyncMock()
        persistence.load_achievements = AsyncMock(return_value=[])
        persistence.upsert_achievement_progress = AsyncMock()
        persistence.load_store_items = AsyncMock(
            return_value=store if store is not None else TestFixtures.create_store_items()
        )
        return persistence


def _fold_stats(prior, results):
    from quizbattle.data_manager import update_battle_stats
    return update_battle_stats(prior, results, date="2024-01-01T00:00:00+00:00")


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.user.display_name = "tester"
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()

        def mark_done(*args, **kwargs):
            interaction.response.is_done.return_value = True

        interaction.response.defer = AsyncMock(side_effect=mark_done)
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock(return_value=MockDiscordObjects.create_mock_message())
        return interaction

    @staticmethod
    def create_mock_message(message_id: int = 11111) -> Mock:
        """Create mock Discord message."""
        message = Mock(spec=discord.Message)
        message.id = message_id
        message.edit = AsyncMock()
        message.delete = AsyncMock()
        return message
