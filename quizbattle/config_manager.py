"""
Configuration manager for battle, reward and leveling parameters.
"""
import logging
from typing import Optional, Dict, Any, List
from pathlib import Path

from .models import BattleSettings, LevelCurve, RewardSettings


class ConfigManager:
    """Manages battle configuration and the reward economy constants."""

    # Default configuration values
    DEFAULT_QUESTIONS_PER_BATTLE = 10
    DEFAULT_TIME_PER_QUESTION = 30
    DEFAULT_READY_DELAY_MS = 1500
    DEFAULT_FETCH_TIMEOUT = 20.0
    DEFAULT_OPPONENT_SCORE = 1000
    DEFAULT_DATA_DIRECTORY = "./data/"

    # Validation limits
    MIN_QUESTIONS_PER_BATTLE = 1
    MAX_QUESTIONS_PER_BATTLE = 50
    MIN_TIME_PER_QUESTION = 5
    MAX_TIME_PER_QUESTION = 300  # 5 minutes
    MIN_READY_DELAY_MS = 0
    MAX_READY_DELAY_MS = 10000

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize ConfigManager with default settings.

        Args:
            config: Optional parsed config.json contents to apply on top of defaults
        """
        self.logger = logging.getLogger(__name__)
        self._battle = BattleSettings()
        self._level_curve = LevelCurve()
        self._rewards = RewardSettings()
        self._data_directory = self.DEFAULT_DATA_DIRECTORY

        if config:
            self.load_from_config(config)

    def load_from_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply a parsed config.json document.

        Invalid values are logged and skipped so the defaults stay in place.

        Returns:
            List of error messages for values that were rejected
        """
        errors: List[str] = []

        battle = config.get('battle', {})
        for key, setter in (
            ('questions_per_battle', self.set_questions_per_battle),
            ('time_per_question', self.set_time_per_question),
            ('ready_delay_ms', self.set_ready_delay),
        ):
            if key in battle:
                result = setter(battle[key])
                if not result['success']:
                    errors.append(result['error'])

        if 'fetch_timeout' in battle:
            timeout = battle['fetch_timeout']
            if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
                self._battle.fetch_timeout = float(timeout)
            else:
                errors.append(f"Invalid fetch timeout: {timeout}")
        if 'opponent_score' in battle:
            self._battle.opponent_score = int(battle['opponent_score'])
        if 'opponent_base_rating' in battle:
            self._battle.opponent_base_rating = int(battle['opponent_base_rating'])
        if 'auto_timer' in battle:
            self._battle.auto_timer = bool(battle['auto_timer'])

        rewards = config.get('rewards', {})
        victory = rewards.get('victory', {})
        defeat = rewards.get('defeat', {})
        per_correct = rewards.get('per_correct', {})
        level_up = rewards.get('level_up', {})
        self._rewards = RewardSettings(
            victory_xp=victory.get('xp', self._rewards.victory_xp),
            victory_coins=victory.get('coins', self._rewards.victory_coins),
            defeat_xp=defeat.get('xp', self._rewards.defeat_xp),
            defeat_coins=defeat.get('coins', self._rewards.defeat_coins),
            per_correct_xp=per_correct.get('xp', self._rewards.per_correct_xp),
            per_correct_coins=per_correct.get('coins', self._rewards.per_correct_coins),
            streak_bonus_multiplier=rewards.get('streak_bonus', {}).get(
                'multiplier', self._rewards.streak_bonus_multiplier),
            time_bonus_multiplier=rewards.get('time_bonus', {}).get(
                'multiplier', self._rewards.time_bonus_multiplier),
            level_up_xp_multiplier=level_up.get('xp_multiplier', self._rewards.level_up_xp_multiplier),
            level_up_coin_multiplier=level_up.get('coin_multiplier', self._rewards.level_up_coin_multiplier),
        )

        level = config.get('level', {})
        curve = LevelCurve(
            base_xp=level.get('base_xp', self._level_curve.base_xp),
            growth_factor=level.get('growth_factor', self._level_curve.growth_factor),
            max_level=level.get('max_level', self._level_curve.max_level),
        )
        if curve.base_xp <= 0 or curve.growth_factor < 1 or curve.max_level < 1:
            errors.append(f"Invalid level curve: {curve}")
        else:
            self._level_curve = curve

        if 'data_directory' in config:
            result = self.set_data_directory(config['data_directory'])
            if not result['success']:
                errors.append(result['error'])

        for error in errors:
            self.logger.warning(f"Ignoring configuration value: {error}")
        return errors

    def get_battle_settings(self) -> BattleSettings:
        """Return a copy of the current battle settings."""
        return BattleSettings(**vars(self._battle))

    def get_level_curve(self) -> LevelCurve:
        return self._level_curve

    def get_reward_settings(self) -> RewardSettings:
        return self._rewards

    def _set_bounded_int(self, name: str, value: Any, minimum: int, maximum: int,
                         unit: str = "") -> Dict[str, Any]:
        """Validate an integer setting against its limits."""
        suffix = f" {unit}" if unit else ""

        if not isinstance(value, int) or isinstance(value, bool):
            error_msg = f"{name.capitalize()} must be an integer, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }

        if value < minimum:
            error_msg = f"{name.capitalize()} must be at least {minimum}{suffix}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Too low: Minimum {name} is {minimum}{suffix}"
            }

        if value > maximum:
            error_msg = f"{name.capitalize()} cannot exceed {maximum}{suffix}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Too high: Maximum {name} is {maximum}{suffix}"
            }

        return {'success': True}

    def set_questions_per_battle(self, count: int) -> Dict[str, Any]:
        """
        Set the number of questions per battle.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._set_bounded_int(
            "question count", count,
            self.MIN_QUESTIONS_PER_BATTLE, self.MAX_QUESTIONS_PER_BATTLE
        )
        if not result['success']:
            return result

        self._battle.questions_per_battle = count
        self.logger.info(f"Questions per battle set to {count}")
        return {
            'success': True,
            'message': f"Questions per battle set to {count}",
            'user_message': f"✅ Battles will use {count} questions"
        }

    def get_questions_per_battle(self) -> int:
        return self._battle.questions_per_battle

    def set_time_per_question(self, seconds: int) -> Dict[str, Any]:
        """
        Set the answer time limit for each battle question.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        result = self._set_bounded_int(
            "time per question", seconds,
            self.MIN_TIME_PER_QUESTION, self.MAX_TIME_PER_QUESTION, "seconds"
        )
        if not result['success']:
            return result

        self._battle.time_per_question = seconds
        self.logger.info(f"Time per question set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Time per question set to {seconds} seconds",
            'user_message': f"✅ Timer set to {seconds} seconds"
        }

    def get_time_per_question(self) -> int:
        return self._battle.time_per_question

    def set_ready_delay(self, delay_ms: int) -> Dict[str, Any]:
        """Set the pause between Ready and Active in milliseconds."""
        result = self._set_bounded_int(
            "ready delay", delay_ms,
            self.MIN_READY_DELAY_MS, self.MAX_READY_DELAY_MS, "ms"
        )
        if not result['success']:
            return result

        self._battle.ready_delay_ms = delay_ms
        self.logger.info(f"Ready delay set to {delay_ms} ms")
        return {
            'success': True,
            'message': f"Ready delay set to {delay_ms} ms",
            'user_message': f"✅ Battles start {delay_ms} ms after questions load"
        }

    def set_data_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory holding questions, saves and profiles.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            error_msg = f"Data directory must be a string, got {type(directory).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            }

        if not directory.strip():
            error_msg = "Data directory cannot be empty"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {directory}"
            }

        self._data_directory = normalized_path
        self.logger.info(f"Data directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Data directory set to {normalized_path}",
            'user_message': f"✅ Data directory set to {normalized_path}"
        }

    def get_data_directory(self) -> str:
        return self._data_directory

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        return (
            f"Battle Settings:\n"
            f"• Questions: {self._battle.questions_per_battle}\n"
            f"• Timer: {self._battle.time_per_question} seconds\n"
            f"• Opponent score: {self._battle.opponent_score}\n"
            f"• Max level: {self._level_curve.max_level}"
        )
