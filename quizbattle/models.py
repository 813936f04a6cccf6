"""
Core data models for the Quiz Battle Bot.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class BattleStatus(Enum):
    """Lifecycle states of a battle session."""
    SEARCHING = "searching"
    READY = "ready"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class EffectType(Enum):
    """Kinds of time-boxed boosts an item can grant."""
    XP_BOOST = "xp_boost"
    COIN_BOOST = "coin_boost"
    SCORE_BOOST = "score_boost"
    TIME_BOOST = "time_boost"


class QuestType(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    STORY = "story"
    EVENT = "event"
    ACHIEVEMENT = "achievement"


class QuestStatus(Enum):
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    LOCKED = "locked"


@dataclass(frozen=True)
class Question:
    """A multiple-choice battle question."""
    id: str
    text: str
    answers: Tuple[str, ...]
    correct_answer_index: int
    category: Optional[str] = None
    difficulty: Optional[int] = None

    def is_correct(self, answer_index: Optional[int]) -> bool:
        return answer_index is not None and answer_index == self.correct_answer_index

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'question': self.text,
            'answers': list(self.answers),
            'correct_answer': self.correct_answer_index,
            'category': self.category,
            'difficulty': self.difficulty,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=str(data['id']),
            text=data['question'],
            answers=tuple(data['answers']),
            correct_answer_index=int(data['correct_answer']),
            category=data.get('category'),
            difficulty=data.get('difficulty'),
        )


@dataclass(frozen=True)
class BattleScore:
    player: int = 0
    opponent: int = 0


@dataclass(frozen=True)
class Opponent:
    """Simulated bot opponent; its score is fixed for the whole session."""
    id: str
    name: str
    rating: float
    score: int


@dataclass(frozen=True)
class BattleRewards:
    """Terminal reward bundle attached to a completed session."""
    xp: int = 0
    coins: int = 0
    streak_bonus: int = 0
    time_bonus: int = 0
    achievements: Tuple[str, ...] = ()
    items: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BattleSession:
    """One battle attempt, from search to completion or error."""
    user_id: str
    status: BattleStatus = BattleStatus.SEARCHING
    questions: Tuple[Question, ...] = ()
    current_question_index: int = 0
    time_left: int = 30
    time_per_question: int = 30
    score: BattleScore = field(default_factory=BattleScore)
    player_answers: Tuple[bool, ...] = ()
    opponent: Optional[Opponent] = None
    rewards: Optional[BattleRewards] = None
    last_error: Optional[str] = None
    bonus_seconds: int = 0
    started_at: Optional[float] = None

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def correct_answers(self) -> int:
        return sum(1 for answer in self.player_answers if answer)

    @property
    def is_victory(self) -> bool:
        return self.score.player > self.score.opponent

    @property
    def is_terminal(self) -> bool:
        return self.status in (BattleStatus.COMPLETED, BattleStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'status': self.status.value,
            'questions': [q.to_dict() for q in self.questions],
            'current_question_index': self.current_question_index,
            'time_left': self.time_left,
            'time_per_question': self.time_per_question,
            'score': asdict(self.score),
            'player_answers': list(self.player_answers),
            'opponent': asdict(self.opponent) if self.opponent else None,
            'rewards': asdict(self.rewards) if self.rewards else None,
            'last_error': self.last_error,
            'bonus_seconds': self.bonus_seconds,
            'started_at': self.started_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BattleSession":
        opponent = data.get('opponent')
        rewards = data.get('rewards')
        score = data.get('score') or {}
        return cls(
            user_id=str(data['user_id']),
            status=BattleStatus(data.get('status', BattleStatus.SEARCHING.value)),
            questions=tuple(Question.from_dict(q) for q in data.get('questions', [])),
            current_question_index=int(data.get('current_question_index', 0)),
            time_left=int(data.get('time_left', 30)),
            time_per_question=int(data.get('time_per_question', 30)),
            score=BattleScore(
                player=int(score.get('player', 0)),
                opponent=int(score.get('opponent', 0)),
            ),
            player_answers=tuple(bool(a) for a in data.get('player_answers', [])),
            opponent=Opponent(**opponent) if opponent else None,
            rewards=BattleRewards(
                xp=rewards.get('xp', 0),
                coins=rewards.get('coins', 0),
                streak_bonus=rewards.get('streak_bonus', 0),
                time_bonus=rewards.get('time_bonus', 0),
                achievements=tuple(rewards.get('achievements', ())),
                items=tuple(rewards.get('items', ())),
            ) if rewards else None,
            last_error=data.get('last_error'),
            bonus_seconds=int(data.get('bonus_seconds', 0)),
            started_at=data.get('started_at'),
        )


@dataclass
class BattleResults:
    """Final battle outcome handed to the economy."""
    is_victory: bool
    player_score: int
    opponent_score: int
    correct_answers: int
    total_questions: int
    score_percentage: int
    xp: int
    coins: int
    streak_bonus: int = 0
    time_bonus: int = 0
    opponent: Optional[Opponent] = None
    achievements: List[str] = field(default_factory=list)
    items: List[str] = field(default_factory=list)

    @property
    def is_perfect(self) -> bool:
        return self.total_questions > 0 and self.correct_answers == self.total_questions


@dataclass
class RewardMultipliers:
    xp: float = 1.0
    coins: float = 1.0


@dataclass
class EffectEntry:
    """A time-boxed multiplicative modifier sourced from an item."""
    id: str
    type: EffectType
    value: float = 1.5
    start_time: float = 0.0
    duration: int = 300
    source_item: Dict[str, str] = field(default_factory=dict)

    @property
    def expires_at(self) -> float:
        return self.start_time + self.duration

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'value': self.value,
            'start_time': self.start_time,
            'duration': self.duration,
            'source_item': dict(self.source_item),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EffectEntry":
        return cls(
            id=data['id'],
            type=EffectType(data['type']),
            value=float(data.get('value', 1.5)),
            start_time=float(data.get('start_time', 0.0)),
            duration=int(data.get('duration', 300)),
            source_item=dict(data.get('source_item') or {}),
        )


@dataclass
class BattleHistoryEntry:
    date: str
    result: str
    score: int
    opponent: Optional[str] = None
    xp_earned: int = 0
    coins_earned: int = 0
    streak_bonus: int = 0


@dataclass
class BattleStats:
    """Persisted aggregate battle statistics for one user."""
    total_battles: int = 0
    wins: int = 0
    losses: int = 0
    win_streak: int = 0
    highest_streak: int = 0
    total_xp_earned: int = 0
    total_coins_earned: int = 0
    average_score: int = 0
    last_battle_date: Optional[str] = None
    battle_history: List[BattleHistoryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BattleStats":
        history = [BattleHistoryEntry(**entry) for entry in data.get('battle_history', [])]
        fields = {k: v for k, v in data.items() if k != 'battle_history'}
        return cls(battle_history=history, **fields)


@dataclass
class ItemEffect:
    type: EffectType
    value: float = 1.5
    duration: int = 300


@dataclass
class GameItem:
    """An item from the store catalog or a reward."""
    id: str
    name: str
    description: str = ""
    item_type: str = "consumable"
    rarity: str = "common"
    price: int = 0
    effects: List[ItemEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'item_type': self.item_type,
            'rarity': self.rarity,
            'price': self.price,
            'effects': [
                {'type': e.type.value, 'value': e.value, 'duration': e.duration}
                for e in self.effects
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameItem":
        return cls(
            id=str(data['id']),
            name=data['name'],
            description=data.get('description', ''),
            item_type=data.get('item_type', 'consumable'),
            rarity=data.get('rarity', 'common'),
            price=int(data.get('price', 0)),
            effects=[
                ItemEffect(
                    type=EffectType(e['type']),
                    value=float(e.get('value', 1.5)),
                    duration=int(e.get('duration', 300)),
                )
                for e in data.get('effects', [])
            ],
        )


@dataclass
class InventoryItem:
    item: GameItem
    quantity: int
    is_equipped: bool = False
    last_used: Optional[float] = None
    acquired_at: Optional[float] = None
    transaction_type: str = "reward"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item': self.item.to_dict(),
            'quantity': self.quantity,
            'is_equipped': self.is_equipped,
            'last_used': self.last_used,
            'acquired_at': self.acquired_at,
            'transaction_type': self.transaction_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventoryItem":
        return cls(
            item=GameItem.from_dict(data['item']),
            quantity=int(data.get('quantity', 1)),
            is_equipped=bool(data.get('is_equipped', False)),
            last_used=data.get('last_used'),
            acquired_at=data.get('acquired_at'),
            transaction_type=data.get('transaction_type', 'reward'),
        )


@dataclass(frozen=True)
class Reward:
    """One entry of a reward bundle (level up, streak, quest)."""
    id: str
    type: str
    value: Any
    rarity: str = "common"


@dataclass
class AchievementTrigger:
    type: str
    value: float
    comparison: str = "gte"


@dataclass
class AchievementReward:
    type: str
    amount: int = 0


@dataclass
class Achievement:
    id: str
    title: str
    description: str = ""
    category: str = "battle"
    points: int = 0
    rarity: str = "common"
    trigger_conditions: List[AchievementTrigger] = field(default_factory=list)
    rewards: List[AchievementReward] = field(default_factory=list)
    unlocked: bool = False
    unlocked_at: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Achievement":
        return cls(
            id=str(data['id']),
            title=data.get('title', str(data['id'])),
            description=data.get('description', ''),
            category=data.get('category', 'battle'),
            points=int(data.get('points', 0)),
            rarity=data.get('rarity', 'common'),
            trigger_conditions=[AchievementTrigger(**t) for t in data.get('trigger_conditions', [])],
            rewards=[AchievementReward(**r) for r in data.get('rewards', [])],
            unlocked=bool(data.get('unlocked', False)),
            unlocked_at=data.get('unlocked_at'),
        )


@dataclass
class QuestRequirement:
    type: str
    target: int
    current: int = 0
    description: Optional[str] = None


@dataclass
class Quest:
    id: str
    title: str
    quest_type: QuestType = QuestType.DAILY
    category: str = "general"
    status: QuestStatus = QuestStatus.IN_PROGRESS
    requirements: List[QuestRequirement] = field(default_factory=list)
    xp_reward: int = 0
    coin_reward: int = 0
    progress: int = 0
    completed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'quest_type': self.quest_type.value,
            'category': self.category,
            'status': self.status.value,
            'requirements': [asdict(r) for r in self.requirements],
            'xp_reward': self.xp_reward,
            'coin_reward': self.coin_reward,
            'progress': self.progress,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quest":
        return cls(
            id=str(data['id']),
            title=data.get('title', str(data['id'])),
            quest_type=QuestType(data.get('quest_type', QuestType.DAILY.value)),
            category=data.get('category', 'general'),
            status=QuestStatus(data.get('status', QuestStatus.IN_PROGRESS.value)),
            requirements=[QuestRequirement(**r) for r in data.get('requirements', [])],
            xp_reward=int(data.get('xp_reward', 0)),
            coin_reward=int(data.get('coin_reward', 0)),
            progress=int(data.get('progress', 0)),
            completed_at=data.get('completed_at'),
        )


@dataclass
class ActivityEntry:
    id: str
    type: str
    action: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass
class UserProfile:
    """The slice of a user's profile the economy reads and writes."""
    user_id: str
    username: str = ""
    xp: int = 0
    coins: int = 0
    level: int = 1
    streak: int = 0
    streak_multiplier: float = 1.0
    reward_multipliers: RewardMultipliers = field(default_factory=RewardMultipliers)
    inventory: List[InventoryItem] = field(default_factory=list)
    active_effects: List[EffectEntry] = field(default_factory=list)
    statistics: Dict[str, float] = field(default_factory=dict)
    activity_log: List[ActivityEntry] = field(default_factory=list)

    def find_inventory_item(self, item_id: str) -> Optional[InventoryItem]:
        for entry in self.inventory:
            if entry.item.id == item_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'username': self.username,
            'xp': self.xp,
            'coins': self.coins,
            'level': self.level,
            'streak': self.streak,
            'streak_multiplier': self.streak_multiplier,
            'reward_multipliers': asdict(self.reward_multipliers),
            'inventory': [i.to_dict() for i in self.inventory],
            'active_effects': [e.to_dict() for e in self.active_effects],
            'statistics': dict(self.statistics),
            'activity_log': [asdict(a) for a in self.activity_log],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        multipliers = data.get('reward_multipliers') or {}
        return cls(
            user_id=str(data['user_id']),
            username=data.get('username', ''),
            xp=int(data.get('xp', 0)),
            coins=int(data.get('coins', 0)),
            level=int(data.get('level', 1)),
            streak=int(data.get('streak', 0)),
            streak_multiplier=float(data.get('streak_multiplier', 1.0)),
            reward_multipliers=RewardMultipliers(
                xp=float(multipliers.get('xp', 1.0)),
                coins=float(multipliers.get('coins', 1.0)),
            ),
            inventory=[InventoryItem.from_dict(i) for i in data.get('inventory', [])],
            active_effects=[EffectEntry.from_dict(e) for e in data.get('active_effects', [])],
            statistics=dict(data.get('statistics') or {}),
            activity_log=[ActivityEntry(**a) for a in data.get('activity_log', [])],
        )


@dataclass
class BattleSettings:
    """Battle configuration."""
    questions_per_battle: int = 10
    time_per_question: int = 30
    ready_delay_ms: int = 1500
    fetch_timeout: float = 20.0
    opponent_score: int = 1000
    opponent_base_rating: int = 1000
    auto_timer: bool = True


@dataclass
class LevelCurve:
    """Geometric XP curve parameters."""
    base_xp: int = 100
    growth_factor: float = 1.2
    max_level: int = 50


@dataclass
class RewardSettings:
    """Reward amounts for battles and level ups."""
    victory_xp: int = 100
    victory_coins: int = 50
    defeat_xp: int = 25
    defeat_coins: int = 10
    per_correct_xp: int = 10
    per_correct_coins: int = 5
    streak_bonus_multiplier: int = 10
    time_bonus_multiplier: float = 1.0
    level_up_xp_multiplier: int = 100
    level_up_coin_multiplier: int = 50
