"""
Persistence for battles, profiles and the game catalog.

PersistenceAdapter is the async interface the battle controller and the
economy talk to. DataManager implements it over a directory of JSON files.
"""
import json
import logging
import os
import random
import re
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import InsufficientDataError, PersistenceError
from .level_system import round_half_up
from .models import (
    Achievement, BattleHistoryEntry, BattleResults, BattleSession, BattleStats,
    GameItem, Question, Quest, QuestRequirement, QuestStatus, UserProfile
)

MIN_ANSWERS = 4
SAVE_MAX_AGE_SECONDS = 60 * 60
BATTLE_HISTORY_LIMIT = 50


def update_battle_stats(prior: Optional[BattleStats], results: BattleResults,
                        date: Optional[str] = None) -> BattleStats:
    """
    Fold one battle outcome into aggregate statistics.

    The average score is a running average of score percentages, rounded.
    History is most-recent-first and capped.
    """
    prior = prior or BattleStats()
    date = date or datetime.now(timezone.utc).isoformat()

    win_streak = prior.win_streak + 1 if results.is_victory else 0
    entry = BattleHistoryEntry(
        date=date,
        result='victory' if results.is_victory else 'defeat',
        score=results.player_score,
        opponent=results.opponent.name if results.opponent else None,
        xp_earned=results.xp,
        coins_earned=results.coins,
        streak_bonus=results.streak_bonus,
    )
    average = round_half_up(
        (prior.average_score * prior.total_battles + results.score_percentage)
        / (prior.total_battles + 1)
    )

    return replace(
        prior,
        total_battles=prior.total_battles + 1,
        wins=prior.wins + (1 if results.is_victory else 0),
        losses=prior.losses + (0 if results.is_victory else 1),
        win_streak=win_streak,
        highest_streak=max(prior.highest_streak, win_streak),
        total_xp_earned=prior.total_xp_earned + results.xp,
        total_coins_earned=prior.total_coins_earned + results.coins,
        average_score=average,
        last_battle_date=date,
        battle_history=([entry] + list(prior.battle_history))[:BATTLE_HISTORY_LIMIT],
    )


class PersistenceAdapter(ABC):
    """Async storage interface. Every failure surfaces as PersistenceError."""

    @abstractmethod
    async def fetch_questions(self, count: int, category: Optional[str] = None,
                              difficulty: Optional[int] = None) -> List[Question]:
        ...

    @abstractmethod
    async def save_session(self, session: BattleSession) -> None:
        ...

    @abstractmethod
    async def recover_session(self, user_id: str) -> Optional[BattleSession]:
        ...

    @abstractmethod
    async def clear_session(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def record_battle_outcome(self, user_id: str, results: BattleResults,
                                    prior_stats: Optional[BattleStats] = None) -> BattleStats:
        ...

    @abstractmethod
    async def load_battle_stats(self, user_id: str) -> BattleStats:
        ...

    @abstractmethod
    async def load_profile(self, user_id: str) -> UserProfile:
        ...

    @abstractmethod
    async def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def load_quests(self, user_id: str) -> List[Quest]:
        ...

    @abstractmethod
    async def update_quest_status(self, user_id: str, quest_id: str, status: QuestStatus,
                                  progress: int, requirements: Optional[List[QuestRequirement]] = None,
                                  completed_at: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def load_achievements(self, user_id: str) -> List[Achievement]:
        ...

    @abstractmethod
    async def upsert_achievement_progress(self, user_id: str, achievement_id: str,
                                          progress: int, unlocked_at: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def load_store_items(self) -> List[GameItem]:
        ...


class DataManager(PersistenceAdapter):
    """JSON-file implementation of PersistenceAdapter."""

    def __init__(self, data_directory: str = "./data/",
                 clock: Callable[[], float] = time.time,
                 rng: Optional[random.Random] = None):
        """
        Initialize DataManager.

        Args:
            data_directory: Root directory holding questions, saves and profiles
            clock: Source of epoch seconds, used for save timestamps
            rng: Random source used to shuffle questions
        """
        self.data_directory = Path(data_directory)
        self.clock = clock
        self.rng = rng or random.Random()
        self.logger = logging.getLogger(__name__)
        self.question_pool: Dict[str, List[Question]] = {}
        self.load_errors: List[str] = []
        self._pool_loaded = False

    # File helpers

    @staticmethod
    def _key(user_id: str) -> str:
        return re.sub(r'[^A-Za-z0-9_-]', '_', str(user_id))

    def _path(self, *parts: str) -> Path:
        return self.data_directory.joinpath(*parts)

    def _read_json(self, path: Path, default: Any = None) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Invalid JSON in {path}", e) from e
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}", e) from e

    def _write_json(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + '.tmp')
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path}", e) from e

    def _delete(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete {path}", e) from e

    # Questions

    def load_question_files(self) -> Dict[str, List[Question]]:
        """
        Load every question file under questions/.

        Files that fail to load are recorded in load_errors and skipped.

        Returns:
            Dictionary mapping file names to their valid questions
        """
        self.question_pool.clear()
        self.load_errors.clear()

        directory = self._path("questions")
        try:
            directory.mkdir(parents=True, exist_ok=True)
            json_files = sorted(directory.glob("*.json"))
        except OSError as e:
            raise PersistenceError(f"Cannot access question directory {directory}", e) from e

        if not json_files:
            self.logger.warning(f"No question files found in {directory}")
            self.load_errors.append(f"No question files found in {directory}")

        for json_file in json_files:
            try:
                data = self._read_json(json_file)
            except PersistenceError as e:
                self.logger.error(str(e))
                self.load_errors.append(f"{json_file.name}: {e}")
                continue

            questions = self._parse_questions(data, json_file.stem)
            if not questions:
                self.load_errors.append(f"{json_file.name}: No valid questions found in file")
                continue

            self.question_pool[json_file.stem] = questions
            self.logger.info(f"Loaded '{json_file.stem}' with {len(questions)} questions")

        self._pool_loaded = True
        return self.question_pool

    def _parse_questions(self, data: Any, source: str) -> List[Question]:
        """
        Parse a question file, discarding malformed entries.

        Accepts {"questions": [...]} with explicit answer lists and the older
        {"quiz": [...]} layout where the correct answer is looked up in options.
        """
        if not isinstance(data, dict):
            self.logger.error(f"Question file {source} must be a JSON object")
            return []

        questions = []
        if isinstance(data.get("questions"), list):
            for i, entry in enumerate(data["questions"]):
                question = self._parse_entry(entry, source, i)
                if question is not None:
                    questions.append(question)
        elif isinstance(data.get("quiz"), list):
            for i, entry in enumerate(data["quiz"]):
                question = self._parse_legacy_entry(entry, source, i)
                if question is not None:
                    questions.append(question)
        else:
            self.logger.error(f"Question file {source} must contain a 'questions' or 'quiz' array")
        return questions

    def _parse_entry(self, entry: Any, source: str, index: int) -> Optional[Question]:
        if not isinstance(entry, dict) or not isinstance(entry.get("question"), str):
            self.logger.warning(f"Discarding question {index} in {source}: missing question text")
            return None

        answers = entry.get("answers")
        if not isinstance(answers, list) or len(answers) < MIN_ANSWERS:
            self.logger.warning(f"Discarding question {index} in {source}: fewer than {MIN_ANSWERS} answers")
            return None

        correct = entry.get("correct_answer")
        if not isinstance(correct, int) or isinstance(correct, bool) or not 0 <= correct < len(answers):
            self.logger.warning(f"Discarding question {index} in {source}: invalid correct answer index")
            return None

        return Question(
            id=str(entry.get("id", f"{source}-{index}")),
            text=entry["question"],
            answers=tuple(str(a) for a in answers),
            correct_answer_index=correct,
            category=entry.get("category"),
            difficulty=entry.get("difficulty"),
        )

    def _parse_legacy_entry(self, entry: Any, source: str, index: int) -> Optional[Question]:
        if not isinstance(entry, dict) or not isinstance(entry.get("question"), str):
            self.logger.warning(f"Discarding question {index} in {source}: missing question text")
            return None

        options = entry.get("options")
        if not isinstance(options, list) or len(options) < MIN_ANSWERS:
            self.logger.warning(f"Discarding question {index} in {source}: fewer than {MIN_ANSWERS} options")
            return None

        answer = entry.get("answer")
        if answer not in options:
            self.logger.warning(f"Discarding question {index} in {source}: answer not among options")
            return None

        return Question(
            id=f"{source}-{index}",
            text=entry["question"],
            answers=tuple(str(o) for o in options),
            correct_answer_index=options.index(answer),
            category=entry.get("category", source),
            difficulty=entry.get("difficulty"),
        )

    async def fetch_questions(self, count: int, category: Optional[str] = None,
                              difficulty: Optional[int] = None) -> List[Question]:
        """
        Pick ``count`` random questions, optionally filtered.

        Raises:
            InsufficientDataError: If fewer than ``count`` questions match
            PersistenceError: If the question directory cannot be read
        """
        if not self._pool_loaded:
            self.load_question_files()

        candidates = [
            q for questions in self.question_pool.values() for q in questions
            if (category is None or q.category == category)
            and (difficulty is None or q.difficulty == difficulty)
        ]

        if len(candidates) < count:
            self.logger.error(f"Not enough valid questions. Required: {count}, Found: {len(candidates)}")
            raise InsufficientDataError(count, len(candidates))

        self.rng.shuffle(candidates)
        return candidates[:count]

    # Battle saves

    async def save_session(self, session: BattleSession) -> None:
        self._write_json(
            self._path("saves", f"{self._key(session.user_id)}.json"),
            {
                'user_id': session.user_id,
                'battle_state': session.to_dict(),
                'timestamp': self.clock(),
            }
        )

    async def recover_session(self, user_id: str) -> Optional[BattleSession]:
        """
        Load and consume a saved session.

        Saves older than an hour are deleted and treated as missing.
        """
        path = self._path("saves", f"{self._key(user_id)}.json")
        data = self._read_json(path)
        if not data or not data.get('battle_state'):
            return None

        if self.clock() - float(data.get('timestamp', 0)) > SAVE_MAX_AGE_SECONDS:
            self.logger.info(f"Discarding stale battle save for user {user_id}")
            self._delete(path)
            return None

        try:
            session = BattleSession.from_dict(data['battle_state'])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt battle save for user {user_id}", e) from e

        self._delete(path)
        return session

    async def clear_session(self, user_id: str) -> None:
        self._delete(self._path("saves", f"{self._key(user_id)}.json"))

    # Battle statistics

    async def load_battle_stats(self, user_id: str) -> BattleStats:
        data = self._read_json(self._path("stats", f"{self._key(user_id)}.json"))
        history = self._read_json(self._path("history", f"{self._key(user_id)}.json"), [])
        try:
            stats = BattleStats.from_dict(data) if data else BattleStats()
            stats.battle_history = [BattleHistoryEntry(**e) for e in history]
        except (KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt battle stats for user {user_id}", e) from e
        return stats

    async def record_battle_outcome(self, user_id: str, results: BattleResults,
                                    prior_stats: Optional[BattleStats] = None) -> BattleStats:
        """
        Write updated aggregate stats and append to the battle history.

        A failed history write is logged and does not fail the call.
        """
        if prior_stats is None:
            prior_stats = await self.load_battle_stats(user_id)

        stats = update_battle_stats(prior_stats, results)
        aggregate = stats.to_dict()
        aggregate.pop('battle_history')
        self._write_json(self._path("stats", f"{self._key(user_id)}.json"), aggregate)

        try:
            self._write_json(
                self._path("history", f"{self._key(user_id)}.json"),
                [asdict(entry) for entry in stats.battle_history]
            )
        except PersistenceError as e:
            self.logger.error(f"Error recording battle history for user {user_id}: {e}")

        return stats

    # Profiles

    async def load_profile(self, user_id: str) -> UserProfile:
        data = self._read_json(self._path("profiles", f"{self._key(user_id)}.json"))
        if not data:
            return UserProfile(user_id=str(user_id))
        try:
            return UserProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt profile for user {user_id}", e) from e

    async def update_profile(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the stored profile document."""
        path = self._path("profiles", f"{self._key(user_id)}.json")
        data = self._read_json(path) or {'user_id': str(user_id)}
        data.update(fields)
        self._write_json(path, data)

    # Quests

    async def load_quests(self, user_id: str) -> List[Quest]:
        catalog = self._read_json(self._path("catalog", "quests.json"), [])
        state = self._read_json(self._path("quests", f"{self._key(user_id)}.json"), {})

        quests = []
        try:
            for template in catalog:
                saved = state.get(str(template['id']))
                quests.append(Quest.from_dict({**template, **saved} if saved else template))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt quest data for user {user_id}", e) from e
        return quests

    async def update_quest_status(self, user_id: str, quest_id: str, status: QuestStatus,
                                  progress: int, requirements: Optional[List[QuestRequirement]] = None,
                                  completed_at: Optional[float] = None) -> None:
        path = self._path("quests", f"{self._key(user_id)}.json")
        state = self._read_json(path, {})
        entry = state.get(quest_id, {})
        entry.update({'status': status.value, 'progress': progress, 'completed_at': completed_at})
        if requirements is not None:
            entry['requirements'] = [asdict(r) for r in requirements]
        state[quest_id] = entry
        self._write_json(path, state)

    # Achievements

    async def load_achievements(self, user_id: str) -> List[Achievement]:
        catalog = self._read_json(self._path("catalog", "achievements.json"), [])
        state = self._read_json(self._path("achievements", f"{self._key(user_id)}.json"), {})

        achievements = []
        try:
            for template in catalog:
                achievement = Achievement.from_dict(template)
                saved = state.get(achievement.id)
                if saved and saved.get('unlocked_at') is not None:
                    achievement.unlocked = True
                    achievement.unlocked_at = saved['unlocked_at']
                achievements.append(achievement)

            # Unlocks outside the catalog, such as quest completions
            known = {a.id for a in achievements}
            for achievement_id, saved in state.items():
                if achievement_id not in known and saved.get('unlocked_at') is not None:
                    achievements.append(Achievement.from_dict({
                        'id': achievement_id,
                        'unlocked': True,
                        'unlocked_at': saved['unlocked_at'],
                    }))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt achievement data for user {user_id}", e) from e
        return achievements

    async def upsert_achievement_progress(self, user_id: str, achievement_id: str,
                                          progress: int, unlocked_at: Optional[float] = None) -> None:
        path = self._path("achievements", f"{self._key(user_id)}.json")
        state = self._read_json(path, {})
        state[achievement_id] = {'progress': progress, 'unlocked_at': unlocked_at}
        self._write_json(path, state)

    # Store

    async def load_store_items(self) -> List[GameItem]:
        data = self._read_json(self._path("store", "items.json"), [])
        try:
            return [GameItem.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError("Corrupt store catalog", e) from e

    def get_loading_summary(self) -> Dict[str, Any]:
        """Summary of the last question load."""
        return {
            'total_files': len(self.question_pool),
            'total_questions': sum(len(q) for q in self.question_pool.values()),
            'has_errors': bool(self.load_errors),
            'errors': list(self.load_errors),
            'data_directory': str(self.data_directory),
        }
