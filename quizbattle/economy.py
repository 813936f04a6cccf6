"""
Economy orchestrator: applies XP, coins, items, effects, achievements and
quest progress to a user's profile.

All public grant operations are serialized through one asyncio.Lock.
Methods ending in ``_locked`` assume the caller already holds it.
"""
import asyncio
import logging
import math
import operator
import time
import uuid
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config_manager import ConfigManager
from .data_manager import PersistenceAdapter, update_battle_stats
from .effect_ledger import EffectLedger
from .errors import (
    InsufficientFundsError, InvalidStateError, ItemNotEquippedError,
    ItemNotFoundError, PersistenceError
)
from .level_system import (
    level_from_xp, level_up_rewards, quest_rewards, round_half_up,
    streak_lootbox_reward, streak_multiplier
)
from .models import (
    Achievement, AchievementTrigger, ActivityEntry, BattleResults, BattleStats,
    EffectEntry, GameItem, InventoryItem, Quest, QuestStatus, QuestType,
    Reward, UserProfile
)

ACTIVITY_LOG_LIMIT = 100
DEBIT_SOURCES = ('purchase', 'spend')
QUEST_COMPLETION_POINTS = 50
QUEST_ACHIEVEMENT_PREFIX = 'quest_complete_'


def quest_completion_achievement(quest: Quest, unlocked_at: Optional[float]) -> Achievement:
    """The unlocked achievement recorded when a quest is completed."""
    return Achievement(
        id=f"{QUEST_ACHIEVEMENT_PREFIX}{quest.id}",
        title=f"Completed: {quest.title}",
        description=f'Successfully completed the quest "{quest.title}"',
        category='quest',
        points=QUEST_COMPLETION_POINTS,
        unlocked=True,
        unlocked_at=unlocked_at,
    )


COMPARISONS = {
    'eq': operator.eq,
    'gt': operator.gt,
    'lt': operator.lt,
    'gte': operator.ge,
    'lte': operator.le,
}


class EconomyOrchestrator:
    """Sole writer of a user's economy state (XP, coins, items, effects, stats)."""

    def __init__(
        self,
        profile: UserProfile,
        persistence: PersistenceAdapter,
        config_manager: Optional[ConfigManager] = None,
        achievements: Iterable[Achievement] = (),
        quests: Iterable[Quest] = (),
        clock: Callable[[], float] = time.time,
    ):
        self.profile = profile
        self.persistence = persistence
        self.config_manager = config_manager or ConfigManager()
        self.achievements: List[Achievement] = list(achievements)
        self.quests: List[Quest] = list(quests)
        self.clock = clock
        self.ledger = EffectLedger(profile.reward_multipliers)
        self.ledger.restore(profile.active_effects)
        self.battle_stats: Optional[BattleStats] = None
        self.notifications: List[Dict[str, Any]] = []
        self.errors: List[str] = []
        self.logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    @classmethod
    async def load(cls, user_id: str, persistence: PersistenceAdapter,
                   config_manager: Optional[ConfigManager] = None,
                   username: Optional[str] = None,
                   clock: Callable[[], float] = time.time) -> "EconomyOrchestrator":
        """Build an orchestrator from the persisted profile, achievements and quests."""
        profile = await persistence.load_profile(user_id)
        if username:
            profile.username = username
        achievements = await persistence.load_achievements(user_id)
        quests = await persistence.load_quests(user_id)

        # Quest completions come back from storage as bare ids
        quests_by_id = {q.id: q for q in quests}
        for i, achievement in enumerate(achievements):
            quest_id = achievement.id[len(QUEST_ACHIEVEMENT_PREFIX):]
            if achievement.id.startswith(QUEST_ACHIEVEMENT_PREFIX) and quest_id in quests_by_id:
                achievements[i] = quest_completion_achievement(
                    quests_by_id[quest_id], achievement.unlocked_at
                )
        return cls(profile, persistence, config_manager, achievements, quests, clock)

    # Internal helpers

    def _record_error(self, operation: str, error: Exception) -> None:
        self.logger.error(
            f"Economy persistence failure during {operation}: {error}",
            extra={
                'event_type': 'economy_persistence_error',
                'user_id': self.profile.user_id,
                'operation': operation,
                'timestamp': time.time()
            }
        )
        self.errors.append(f"{operation}: {error}")

    async def _persist_profile(self, operation: str) -> None:
        try:
            await self.persistence.update_profile(self.profile.user_id, self.profile.to_dict())
        except PersistenceError as e:
            self._record_error(operation, e)

    def _log_activity(self, activity_type: str, action: str, **metadata) -> None:
        entry = ActivityEntry(
            id=uuid.uuid4().hex,
            type=activity_type,
            action=action,
            metadata=metadata,
            timestamp=self.clock(),
        )
        self.profile.activity_log.insert(0, entry)
        del self.profile.activity_log[ACTIVITY_LOG_LIMIT:]

    def _bump(self, statistic: str, amount: float = 1) -> None:
        stats = self.profile.statistics
        stats[statistic] = stats.get(statistic, 0) + amount

    def drain_notifications(self) -> List[Dict[str, Any]]:
        notifications, self.notifications = self.notifications, []
        return notifications

    # XP and levels

    async def grant_xp(self, amount: int, source: str = 'battle') -> int:
        """
        Grant XP scaled by the XP multiplier and the streak multiplier.

        Returns:
            The XP actually added
        """
        async with self._lock:
            total = await self._grant_xp_locked(amount, source)
            await self._persist_profile('grant_xp')
            return total

    async def _grant_xp_locked(self, amount: int, source: str) -> int:
        multiplier = self.profile.reward_multipliers.xp * self.profile.streak_multiplier
        total = round_half_up(amount * multiplier)
        self.profile.xp += total
        self._bump('total_xp', total)
        self._log_activity('xp_gain', 'GAIN_XP', amount=total, source=source, multiplier=multiplier)
        await self._check_level_up_locked()
        return total

    async def _check_level_up_locked(self) -> None:
        curve = self.config_manager.get_level_curve()
        # Level-up XP rewards can push the profile over further thresholds.
        while True:
            new_level = level_from_xp(self.profile.xp, curve)
            if new_level <= self.profile.level:
                return
            for level in range(self.profile.level + 1, new_level + 1):
                self.profile.level = level
                await self._apply_level_up_locked(level)
            self.profile.statistics['level'] = self.profile.level

    async def _apply_level_up_locked(self, level: int) -> None:
        rewards = level_up_rewards(level, self.config_manager.get_reward_settings())
        for reward in rewards:
            if reward.type == 'xp':
                self.profile.xp += reward.value
                self._bump('total_xp', reward.value)
            elif reward.type == 'coins':
                await self._grant_coins_locked(reward.value, 'level_up')
            elif reward.type == 'item':
                item = GameItem(
                    id=reward.id,
                    name=reward.value,
                    description=f"Level {level} reward",
                    rarity=reward.rarity,
                )
                self._grant_item_locked(item, 1, 'reward')

        self.notifications.append({
            'type': 'level_up',
            'level': level,
            'rewards': [asdict(r) for r in rewards],
        })
        self.logger.info(
            f"User {self.profile.user_id} reached level {level}",
            extra={
                'event_type': 'level_up',
                'user_id': self.profile.user_id,
                'level': level,
                'timestamp': time.time()
            }
        )

    # Coins

    async def grant_coins(self, amount: int, source: str = 'earn') -> int:
        """
        Apply a coin transaction.

        'earn' credits are scaled by the coin and streak multipliers, 'purchase'
        and 'spend' are flat debits, any other source is a flat credit.

        Returns:
            The new balance

        Raises:
            InsufficientFundsError: If a debit exceeds the balance; nothing changes
        """
        async with self._lock:
            await self._grant_coins_locked(amount, source)
            await self._persist_profile('grant_coins')
            return self.profile.coins

    async def _grant_coins_locked(self, amount: int, source: str) -> int:
        if source == 'earn':
            delta = round_half_up(
                amount * self.profile.reward_multipliers.coins * self.profile.streak_multiplier
            )
        elif source in DEBIT_SOURCES:
            delta = -abs(amount)
            if self.profile.coins + delta < 0:
                raise InsufficientFundsError(self.profile.coins, abs(amount))
        else:
            delta = amount

        self.profile.coins += delta
        if delta > 0:
            self._bump('coins_earned', delta)
        self._log_activity('coins', source, amount=delta, balance=self.profile.coins)
        return delta

    # Items

    async def grant_item(self, item: GameItem, quantity: int = 1,
                         transaction_type: str = 'reward') -> Optional[InventoryItem]:
        async with self._lock:
            entry = self._grant_item_locked(item, quantity, transaction_type)
            await self._persist_profile('grant_item')
            return entry

    def _grant_item_locked(self, item: GameItem, quantity: int,
                           transaction_type: str) -> Optional[InventoryItem]:
        entry = self.profile.find_inventory_item(item.id)
        if entry is not None:
            entry.quantity += quantity
            if entry.quantity <= 0:
                self.profile.inventory.remove(entry)
                entry = None
        elif quantity > 0:
            entry = InventoryItem(
                item=item,
                quantity=quantity,
                acquired_at=self.clock(),
                transaction_type=transaction_type,
            )
            self.profile.inventory.append(entry)

        verb = {'purchase': 'Bought', 'reward': 'Received'}.get(transaction_type, 'Used')
        self._log_activity(
            'inventory', transaction_type,
            result=f"{verb} {abs(quantity)} {item.name}",
            item_id=item.id, quantity=quantity,
        )
        return entry

    async def purchase_item(self, item_id: str) -> InventoryItem:
        """
        Buy one unit of a store item.

        Raises:
            ItemNotFoundError: If the item is not in the store catalog
            InsufficientFundsError: If the price exceeds the balance
        """
        store = await self.persistence.load_store_items()
        item = next((i for i in store if i.id == item_id), None)
        if item is None:
            raise ItemNotFoundError(f"Item '{item_id}' is not sold in the store")

        async with self._lock:
            await self._grant_coins_locked(item.price, 'purchase')
            entry = self._grant_item_locked(item, 1, 'purchase')
            await self._persist_profile('purchase_item')
            return entry

    def _require_item(self, item_id: str) -> InventoryItem:
        entry = self.profile.find_inventory_item(item_id)
        if entry is None:
            raise ItemNotFoundError(f"Item '{item_id}' not found in inventory")
        return entry

    async def equip_item(self, item_id: str) -> InventoryItem:
        async with self._lock:
            entry = self._require_item(item_id)
            entry.is_equipped = True
            await self._persist_profile('equip_item')
            return entry

    async def unequip_item(self, item_id: str) -> InventoryItem:
        async with self._lock:
            entry = self._require_item(item_id)
            entry.is_equipped = False
            await self._persist_profile('unequip_item')
            return entry

    # Effects

    async def use_item_effect(self, item_id: str) -> List[EffectEntry]:
        """
        Activate every effect of an equipped item.

        Raises:
            ItemNotFoundError: If the item is not in the inventory
            ItemNotEquippedError: If the item is not equipped
            InvalidStateError: If the item has no effects
        """
        async with self._lock:
            entry = self._require_item(item_id)
            if not entry.is_equipped:
                raise ItemNotEquippedError(f"{entry.item.name} must be equipped to use its effect")
            if not entry.item.effects:
                raise InvalidStateError(f"{entry.item.name} has no effects to use")
            if any(effect.value is not None and effect.value < 0 for effect in entry.item.effects):
                raise InvalidStateError(f"{entry.item.name} has an invalid effect multiplier")

            now = self.clock()
            activated = []
            for effect in entry.item.effects:
                activated.append(self.ledger.activate(EffectEntry(
                    id=uuid.uuid4().hex,
                    type=effect.type,
                    value=effect.value or 1.5,
                    start_time=now,
                    duration=effect.duration or 300,
                    source_item={'id': entry.item.id, 'name': entry.item.name},
                )))

            entry.last_used = now
            self.profile.active_effects = self.ledger.active_effects
            self._bump('items_used')
            self._log_activity(
                'effect', 'use_item',
                item_id=entry.item.id,
                effect_types=[e.type.value for e in activated],
            )
            await self._persist_profile('use_item_effect')
            return activated

    async def expire_due_effects(self, now: Optional[float] = None) -> List[EffectEntry]:
        async with self._lock:
            expired = self.ledger.poll_expired(self.clock() if now is None else now)
            if expired:
                self.profile.active_effects = self.ledger.active_effects
                await self._persist_profile('expire_effects')
            return expired

    async def remove_effect(self, effect_id: str) -> Optional[EffectEntry]:
        async with self._lock:
            removed = self.ledger.expire(effect_id)
            if removed is not None:
                self.profile.active_effects = self.ledger.active_effects
                await self._persist_profile('remove_effect')
            return removed

    def score_multiplier(self) -> float:
        return self.ledger.score_multiplier()

    def time_multiplier(self) -> float:
        return self.ledger.time_multiplier()

    # Streaks

    async def update_streak(self, streak: int) -> float:
        async with self._lock:
            self.profile.streak = max(0, streak)
            self.profile.streak_multiplier = streak_multiplier(self.profile.streak)
            self.profile.statistics['streak'] = self.profile.streak
            await self._persist_profile('update_streak')
            return self.profile.streak_multiplier

    # Achievements

    def _condition_met(self, condition: AchievementTrigger) -> bool:
        compare = COMPARISONS.get(condition.comparison)
        if compare is None:
            return False
        return compare(self.profile.statistics.get(condition.type, 0), condition.value)

    async def evaluate_achievements(self) -> List[Achievement]:
        """Unlock every achievement whose conditions now hold. Safe to call repeatedly."""
        async with self._lock:
            unlocked = await self._evaluate_achievements_locked()
            if unlocked:
                await self._persist_profile('evaluate_achievements')
            return unlocked

    async def _evaluate_achievements_locked(self) -> List[Achievement]:
        unlocked = []
        # Rewards from one unlock can satisfy another achievement's conditions.
        while True:
            newly = [
                a for a in self.achievements
                if not a.unlocked and a.trigger_conditions
                and all(self._condition_met(c) for c in a.trigger_conditions)
            ]
            if not newly:
                return unlocked
            for achievement in newly:
                await self._unlock_achievement_locked(achievement)
                unlocked.append(achievement)

    async def _unlock_achievement_locked(self, achievement: Achievement) -> None:
        achievement.unlocked = True
        achievement.unlocked_at = self.clock()
        self._bump('achievements_unlocked')

        for reward in achievement.rewards:
            if reward.type == 'xp':
                await self._grant_xp_locked(reward.amount, 'achievement')
            elif reward.type == 'coins':
                await self._grant_coins_locked(reward.amount, 'achievement')

        self.notifications.append({
            'type': 'achievement',
            'id': achievement.id,
            'title': achievement.title,
            'rarity': achievement.rarity,
        })
        try:
            await self.persistence.upsert_achievement_progress(
                self.profile.user_id, achievement.id, 100, achievement.unlocked_at
            )
        except PersistenceError as e:
            self._record_error('upsert_achievement_progress', e)

    # Quests

    def _find_quest(self, quest_id: str) -> Optional[Quest]:
        return next((q for q in self.quests if q.id == quest_id), None)

    async def update_quest_progress(self, quest_id: str, requirement_type: str,
                                    amount: int = 1) -> Optional[Quest]:
        """
        Advance one requirement of a quest, completing the quest when every
        requirement reaches its target.

        Returns:
            The updated quest, or None if no such quest exists
        """
        async with self._lock:
            quest = await self._update_quest_progress_locked(quest_id, requirement_type, amount)
            await self._persist_profile('update_quest_progress')
            return quest

    async def _update_quest_progress_locked(self, quest_id: str, requirement_type: str,
                                            amount: int) -> Optional[Quest]:
        quest = self._find_quest(quest_id)
        if quest is None:
            self.logger.warning(f"Quest {quest_id} not found for user {self.profile.user_id}")
            return None
        if quest.status not in (QuestStatus.AVAILABLE, QuestStatus.IN_PROGRESS):
            return quest

        for requirement in quest.requirements:
            if requirement.type == requirement_type:
                requirement.current = min(requirement.target, requirement.current + amount)

        total_target = sum(r.target for r in quest.requirements)
        total_current = sum(r.current for r in quest.requirements)
        quest.progress = math.floor(100 * total_current / total_target) if total_target else 0
        quest.status = QuestStatus.IN_PROGRESS

        if quest.requirements and all(r.current >= r.target for r in quest.requirements):
            await self._complete_quest_locked(quest)

        try:
            await self.persistence.update_quest_status(
                self.profile.user_id, quest.id, quest.status, quest.progress,
                quest.requirements, quest.completed_at
            )
        except PersistenceError as e:
            self._record_error('update_quest_status', e)
        return quest

    async def _complete_quest_locked(self, quest: Quest) -> None:
        quest.status = QuestStatus.COMPLETED
        quest.progress = 100
        quest.completed_at = self.clock()

        rewards: List[Reward] = quest_rewards(quest)
        for reward in rewards:
            if reward.type == 'xp':
                await self._grant_xp_locked(reward.value, 'quest')
            elif reward.type == 'coins':
                await self._grant_coins_locked(reward.value, 'quest')

        self._bump('quests_completed')
        record = quest_completion_achievement(quest, quest.completed_at)
        existing = next((a for a in self.achievements if a.id == record.id), None)
        if existing is None:
            self.achievements.append(record)
        else:
            existing.unlocked = True
            existing.unlocked_at = record.unlocked_at
        try:
            await self.persistence.upsert_achievement_progress(
                self.profile.user_id, record.id, 100, record.unlocked_at
            )
        except PersistenceError as e:
            self._record_error('upsert_achievement_progress', e)
        self.notifications.append({
            'type': 'quest_complete',
            'id': quest.id,
            'title': quest.title,
            'rewards': [asdict(r) for r in rewards],
        })
        self.logger.info(
            f"User {self.profile.user_id} completed quest {quest.id}",
            extra={
                'event_type': 'quest_completed',
                'user_id': self.profile.user_id,
                'quest_id': quest.id,
                'timestamp': time.time()
            }
        )

    async def reset_quests(self, quest_type: QuestType) -> int:
        """Reset every quest of ``quest_type`` to Available with zero progress."""
        async with self._lock:
            reset = 0
            for quest in self.quests:
                if quest.quest_type != quest_type:
                    continue
                quest.status = QuestStatus.AVAILABLE
                quest.progress = 0
                quest.completed_at = None
                for requirement in quest.requirements:
                    requirement.current = 0
                try:
                    await self.persistence.update_quest_status(
                        self.profile.user_id, quest.id, quest.status, 0, quest.requirements, None
                    )
                except PersistenceError as e:
                    self._record_error('reset_quests', e)
                reset += 1
            return reset

    # Battles

    async def apply_battle_result(self, results: BattleResults,
                                  prior_stats: Optional[BattleStats] = None) -> BattleStats:
        """
        Apply a finished battle: rewards, win streak, statistics, streak
        lootbox, battle history, achievements and battle quests.

        Persistence failures are recorded in ``errors``; in-memory changes stand.
        """
        async with self._lock:
            await self._grant_xp_locked(results.xp, 'battle')
            await self._grant_coins_locked(results.coins, 'earn')

            prior = prior_stats or self.battle_stats
            try:
                if prior is None:
                    prior = await self.persistence.load_battle_stats(self.profile.user_id)
                stats = await self.persistence.record_battle_outcome(
                    self.profile.user_id, results, prior
                )
            except PersistenceError as e:
                self._record_error('record_battle_outcome', e)
                stats = update_battle_stats(prior, results)
            self.battle_stats = stats

            self._bump('battles_played')
            self._bump('questions_answered', results.total_questions)
            self._bump('correct_answers', results.correct_answers)
            if results.is_victory:
                self._bump('battle_wins')
            if results.is_perfect:
                self._bump('perfect_battles')
            self.profile.statistics['battle_streak'] = stats.win_streak
            self.profile.statistics['highest_battle_streak'] = stats.highest_streak

            lootbox = streak_lootbox_reward(stats.win_streak) if results.is_victory else None
            if lootbox is not None:
                self._grant_item_locked(
                    GameItem(id='streak_lootbox', name=lootbox.value,
                             description=f"{stats.win_streak} wins in a row",
                             rarity=lootbox.rarity),
                    1, 'reward'
                )
                results.items.append(lootbox.value)

            progress = {
                'battles_played': 1,
                'battle_wins': 1 if results.is_victory else 0,
                'correct_answers': results.correct_answers,
                'perfect_battles': 1 if results.is_perfect else 0,
            }
            for quest in self.quests:
                if quest.category != 'battle':
                    continue
                for requirement_type in {r.type for r in quest.requirements}:
                    if progress.get(requirement_type):
                        await self._update_quest_progress_locked(
                            quest.id, requirement_type, progress[requirement_type]
                        )

            unlocked = await self._evaluate_achievements_locked()
            results.achievements.extend(a.id for a in unlocked)

            self._log_activity(
                'battle', 'victory' if results.is_victory else 'defeat',
                score=results.player_score, xp=results.xp, coins=results.coins,
            )
            await self._persist_profile('apply_battle_result')
            return stats
