"""
Unit tests for ConfigManager class.
"""
import logging
import unittest
from pathlib import Path

from quizbattle.config_manager import ConfigManager
from quizbattle.models import BattleSettings, LevelCurve, RewardSettings


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager functionality."""

    def setUp(self):
        """Set up test fixtures before each test method."""
        self.config_manager = ConfigManager()

        # Suppress logging during tests
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        """Clean up after each test method."""
        logging.disable(logging.NOTSET)

    def test_initialization_with_defaults(self):
        """Test that ConfigManager initializes with correct default values."""
        self.assertEqual(self.config_manager.get_battle_settings(), BattleSettings())
        self.assertEqual(self.config_manager.get_level_curve(), LevelCurve())
        self.assertEqual(self.config_manager.get_reward_settings(), RewardSettings())
        self.assertEqual(self.config_manager.get_data_directory(), "./data/")

    def test_battle_settings_are_copied(self):
        settings = self.config_manager.get_battle_settings()
        settings.questions_per_battle = 42
        self.assertEqual(self.config_manager.get_questions_per_battle(), 10)

    def test_set_questions_per_battle_valid_values(self):
        for value in (1, 7, 50):
            result = self.config_manager.set_questions_per_battle(value)
            self.assertTrue(result['success'])
            self.assertEqual(self.config_manager.get_questions_per_battle(), value)

    def test_set_questions_per_battle_invalid_values(self):
        for value in ("5", 5.5, True, 0, -1, 51):
            result = self.config_manager.set_questions_per_battle(value)
            self.assertFalse(result['success'], value)
            self.assertIn('user_message', result)
        self.assertEqual(self.config_manager.get_questions_per_battle(), 10)

    def test_set_time_per_question_bounds(self):
        self.assertTrue(self.config_manager.set_time_per_question(5)['success'])
        self.assertTrue(self.config_manager.set_time_per_question(300)['success'])

        result = self.config_manager.set_time_per_question(4)
        self.assertFalse(result['success'])
        self.assertIn("Minimum", result['user_message'])

        result = self.config_manager.set_time_per_question(301)
        self.assertFalse(result['success'])
        self.assertIn("Maximum", result['user_message'])
        self.assertEqual(self.config_manager.get_time_per_question(), 300)

    def test_set_ready_delay(self):
        self.assertTrue(self.config_manager.set_ready_delay(0)['success'])
        self.assertEqual(self.config_manager.get_battle_settings().ready_delay_ms, 0)
        self.assertFalse(self.config_manager.set_ready_delay(-5)['success'])

    def test_set_data_directory(self):
        result = self.config_manager.set_data_directory("./somewhere")
        self.assertTrue(result['success'])
        self.assertEqual(self.config_manager.get_data_directory(), str(Path("./somewhere").resolve()))

        self.assertFalse(self.config_manager.set_data_directory("   ")['success'])
        self.assertFalse(self.config_manager.set_data_directory(123)['success'])

    def test_load_from_config(self):
        config = {
            'battle': {
                'questions_per_battle': 5,
                'time_per_question': 20,
                'ready_delay_ms': 0,
                'fetch_timeout': 3,
                'opponent_score': 450,
                'auto_timer': False,
            },
            'rewards': {
                'victory': {'xp': 200},
                'per_correct': {'coins': 7},
                'streak_bonus': {'multiplier': 4},
                'level_up': {'xp_multiplier': 10},
            },
            'level': {'base_xp': 50, 'growth_factor': 1.5, 'max_level': 20},
        }
        errors = self.config_manager.load_from_config(config)

        self.assertEqual(errors, [])
        battle = self.config_manager.get_battle_settings()
        self.assertEqual(battle.questions_per_battle, 5)
        self.assertEqual(battle.time_per_question, 20)
        self.assertEqual(battle.fetch_timeout, 3.0)
        self.assertEqual(battle.opponent_score, 450)
        self.assertFalse(battle.auto_timer)

        rewards = self.config_manager.get_reward_settings()
        self.assertEqual(rewards.victory_xp, 200)
        self.assertEqual(rewards.victory_coins, 50)
        self.assertEqual(rewards.per_correct_coins, 7)
        self.assertEqual(rewards.streak_bonus_multiplier, 4)
        self.assertEqual(rewards.level_up_xp_multiplier, 10)

        self.assertEqual(self.config_manager.get_level_curve(), LevelCurve(50, 1.5, 20))

    def test_load_from_config_rejects_invalid_values(self):
        errors = ConfigManager().load_from_config({
            'battle': {'questions_per_battle': 500, 'fetch_timeout': -1},
            'level': {'growth_factor': 0.5},
        })
        self.assertEqual(len(errors), 3)

        config_manager = ConfigManager({'battle': {'questions_per_battle': 500}})
        self.assertEqual(config_manager.get_questions_per_battle(), 10)

    def test_settings_summary(self):
        self.config_manager.set_questions_per_battle(7)
        summary = self.config_manager.get_settings_summary()
        self.assertIn("Questions: 7", summary)
        self.assertIn("Timer: 30 seconds", summary)


if __name__ == '__main__':
    unittest.main()
