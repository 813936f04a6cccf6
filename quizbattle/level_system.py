"""
Leveling curve and reward calculations.

Everything here is a pure function of its arguments; the curve and reward
constants come from ConfigManager and default to the stock values.
"""
import math
from typing import List, Optional

from .models import BattleRewards, LevelCurve, Quest, Reward, RewardSettings

QUESTION_BASE_SCORE = 100
QUESTION_SPEED_WINDOW = 30
STREAK_MULTIPLIER_STEP = 0.15
STREAK_MULTIPLIER_CAP = 2.0
STREAK_LOOTBOX_INTERVAL = 3


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (round() rounds to even)."""
    return math.floor(value + 0.5)


def xp_for_level(level: int, curve: Optional[LevelCurve] = None) -> float:
    """XP needed to clear a single level; infinite past the level cap."""
    curve = curve or LevelCurve()
    if level > curve.max_level:
        return math.inf
    return math.floor(curve.base_xp * curve.growth_factor ** (level - 1))


def total_xp_for_level(level: int, curve: Optional[LevelCurve] = None) -> float:
    """Cumulative XP needed to reach ``level`` from level 1."""
    return sum(xp_for_level(i, curve) for i in range(1, level))


def level_from_xp(xp: int, curve: Optional[LevelCurve] = None) -> int:
    """
    Highest level whose cumulative XP threshold has been reached.

    Args:
        xp: Total XP earned
        curve: Level curve parameters

    Returns:
        Level between 1 and the curve's max level
    """
    curve = curve or LevelCurve()
    level = 1
    threshold = 0
    while level < curve.max_level:
        threshold += xp_for_level(level, curve)
        if threshold > xp:
            break
        level += 1
    return level


def xp_to_next_level(xp: int, curve: Optional[LevelCurve] = None) -> int:
    curve = curve or LevelCurve()
    level = level_from_xp(xp, curve)
    if level >= curve.max_level:
        return 0
    return int(total_xp_for_level(level + 1, curve) - xp)


def progress_to_next_level(xp: int, curve: Optional[LevelCurve] = None) -> int:
    """Floored percentage of the way through the current level band."""
    curve = curve or LevelCurve()
    level = level_from_xp(xp, curve)
    if level >= curve.max_level:
        return 100

    band_start = total_xp_for_level(level, curve)
    band_size = total_xp_for_level(level + 1, curve) - band_start
    return min(100, math.floor((xp - band_start) / band_size * 100))


def level_up_rewards(level: int, settings: Optional[RewardSettings] = None) -> List[Reward]:
    """
    Reward bundle granted on reaching ``level``.

    Milestone levels (every 5th and 10th) raise the rarity and add a lootbox.
    """
    settings = settings or RewardSettings()
    if level % 10 == 0:
        xp_rarity = 'legendary'
    elif level % 5 == 0:
        xp_rarity = 'epic'
    else:
        xp_rarity = 'rare'

    rewards = [
        Reward(
            id=f"level_{level}_xp",
            type='xp',
            value=level * settings.level_up_xp_multiplier,
            rarity=xp_rarity,
        ),
        Reward(
            id=f"level_{level}_coins",
            type='coins',
            value=level * settings.level_up_coin_multiplier,
            rarity='common',
        ),
    ]

    if level % 10 == 0:
        rewards.append(Reward(id=f"level_{level}_special", type='item',
                              value='Legendary Lootbox', rarity='legendary'))
    elif level % 5 == 0:
        rewards.append(Reward(id=f"level_{level}_special", type='item',
                              value='Epic Lootbox', rarity='epic'))

    return rewards


def question_score(time_spent: float) -> int:
    """
    Points for a correct answer: 100 plus a speed bonus of up to 100.

    question_score(0) == 200, question_score(15) == 150, question_score(30) == 100.
    """
    speed_bonus = max(0.0, 1 - time_spent / QUESTION_SPEED_WINDOW)
    return round_half_up(QUESTION_BASE_SCORE * (1 + speed_bonus))


def streak_multiplier(streak: int) -> float:
    return min(1 + streak * STREAK_MULTIPLIER_STEP, STREAK_MULTIPLIER_CAP)


def battle_rewards(is_victory: bool, correct_answers: int, total_questions: int,
                   streak: int = 0, bonus_seconds: int = 0,
                   settings: Optional[RewardSettings] = None) -> BattleRewards:
    """
    Reward bundle for a finished battle.

    Args:
        is_victory: Whether the player outscored the opponent
        correct_answers: Number of correctly answered questions
        total_questions: Number of questions in the battle
        streak: The player's current daily streak
        bonus_seconds: Unused seconds banked by correct answers
        settings: Reward constants

    Returns:
        BattleRewards with base, per-answer, streak and time bonus amounts
    """
    settings = settings or RewardSettings()

    if is_victory:
        xp, coins = settings.victory_xp, settings.victory_coins
    else:
        xp, coins = settings.defeat_xp, settings.defeat_coins

    xp += correct_answers * settings.per_correct_xp
    coins += correct_answers * settings.per_correct_coins

    perfect = total_questions > 0 and correct_answers == total_questions
    streak_bonus = streak * settings.streak_bonus_multiplier if perfect else 0
    time_bonus = math.floor(bonus_seconds * settings.time_bonus_multiplier)

    return BattleRewards(
        xp=xp + streak_bonus + time_bonus,
        coins=coins,
        streak_bonus=streak_bonus,
        time_bonus=time_bonus,
    )


def quest_rewards(quest: Quest) -> List[Reward]:
    rewards = []
    if quest.xp_reward:
        rewards.append(Reward(id=f"quest_{quest.id}_xp", type='xp', value=quest.xp_reward))
    if quest.coin_reward:
        rewards.append(Reward(id=f"quest_{quest.id}_coins", type='coins', value=quest.coin_reward))
    return rewards


def streak_lootbox_reward(win_streak: int) -> Optional[Reward]:
    """A Streak Lootbox on every third consecutive win, otherwise None."""
    if win_streak <= 0 or win_streak % STREAK_LOOTBOX_INTERVAL != 0:
        return None
    return Reward(
        id=f"streak_{win_streak}_lootbox",
        type='item',
        value='Streak Lootbox',
        rarity='epic',
    )
