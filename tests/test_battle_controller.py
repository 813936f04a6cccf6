"""
Unit tests for BattleController.
"""
import asyncio
import logging
import random
import unittest
from unittest.mock import AsyncMock

from quizbattle.battle_controller import BattleController
from quizbattle.battle_engine import BattleTimer, transition, Search, Initialize, Start
from quizbattle.config_manager import ConfigManager
from quizbattle.economy import EconomyOrchestrator
from quizbattle.effect_ledger import EffectLedger
from quizbattle.errors import InsufficientDataError, InvalidStateError, PersistenceError
from quizbattle.models import BattleStatus, EffectEntry, EffectType
from tests.test_fixtures import FakeClock, MockPersistence, TestFixtures, async_test


class TestBattleController(unittest.TestCase):
    """Test cases for the battle lifecycle."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.clock = FakeClock()
        self.persistence = MockPersistence.create()
        self.config_manager = ConfigManager(TestFixtures.create_battle_config(questions=3, timer=30))
        self.controller = BattleController(
            "u1", self.persistence, self.config_manager,
            clock=self.clock, rng=random.Random(7)
        )

    def tearDown(self):
        self.controller.unmount()
        logging.disable(logging.NOTSET)

    @async_test
    async def test_initialize_battle_reaches_active(self):
        statuses = []

        async def listener(session):
            statuses.append(session.status)

        self.controller.add_listener(listener)
        started = await self.controller.initialize_battle()

        self.assertTrue(started)
        self.assertEqual(self.controller.session.status, BattleStatus.ACTIVE)
        self.assertEqual(statuses, [BattleStatus.SEARCHING, BattleStatus.READY, BattleStatus.ACTIVE])
        self.persistence.fetch_questions.assert_awaited_once_with(3, None, None)
        self.assertEqual(self.controller.session.score.opponent, 300)

    @async_test
    async def test_initialize_while_active_is_noop(self):
        await self.controller.initialize_battle()
        self.assertFalse(await self.controller.initialize_battle())
        self.assertEqual(self.persistence.fetch_questions.await_count, 1)

    @async_test
    async def test_fetch_timeout_moves_to_error(self):
        config = TestFixtures.create_battle_config()
        config['battle']['fetch_timeout'] = 0.01
        controller = BattleController("u1", self.persistence, ConfigManager(config), clock=self.clock)

        async def slow_fetch(*args):
            await asyncio.sleep(1)

        self.persistence.fetch_questions.side_effect = slow_fetch
        self.assertFalse(await controller.initialize_battle())
        self.assertEqual(controller.session.status, BattleStatus.ERROR)
        self.assertIn("timed out", controller.session.last_error)
        self.persistence.save_session.assert_not_awaited()

    @async_test
    async def test_too_few_questions_moves_to_error(self):
        self.persistence.fetch_questions.return_value = TestFixtures.create_sample_questions(2)
        self.assertFalse(await self.controller.initialize_battle())
        self.assertEqual(self.controller.session.status, BattleStatus.ERROR)
        self.assertIn("Required: 3", self.controller.session.last_error)

    @async_test
    async def test_persistence_insufficient_data_moves_to_error(self):
        self.persistence.fetch_questions.side_effect = InsufficientDataError(3, 0)
        self.assertFalse(await self.controller.initialize_battle())
        self.assertEqual(self.controller.session.status, BattleStatus.ERROR)
        self.assertFalse(self.controller.is_busy)

    @async_test
    async def test_submit_answer_without_session_raises(self):
        with self.assertRaises(InvalidStateError):
            await self.controller.submit_answer(0, time_spent=1)

    @async_test
    async def test_full_battle_victory(self):
        await self.controller.initialize_battle()
        for i in range(3):
            applied = await self.controller.submit_answer(1, time_spent=0, question_index=i)
            self.assertTrue(applied)

        session = self.controller.session
        self.assertEqual(session.status, BattleStatus.COMPLETED)
        self.assertEqual(session.score.player, 600)
        self.assertTrue(session.is_victory)

        results = self.controller.results
        self.assertTrue(results.is_victory)
        self.assertEqual(results.correct_answers, 3)
        self.assertEqual(results.score_percentage, 100)
        self.assertEqual(results.time_bonus, 90)
        self.assertEqual(results.xp, 100 + 30 + 90)
        self.assertEqual(session.rewards.xp, results.xp)

        self.assertEqual(self.persistence.save_session.await_count, 3)
        self.persistence.clear_session.assert_awaited_with("u1")

    @async_test
    async def test_defeat_when_opponent_outscores(self):
        await self.controller.initialize_battle()
        for i in range(3):
            await self.controller.submit_answer(0, time_spent=5, question_index=i)
        self.assertFalse(self.controller.results.is_victory)
        self.assertEqual(self.controller.results.xp, 25)

    @async_test
    async def test_elapsed_time_measured_from_clock(self):
        await self.controller.initialize_battle()
        self.clock.advance(15)
        await self.controller.submit_answer(1)
        self.assertEqual(self.controller.session.score.player, 150)

    @async_test
    async def test_stale_answer_is_rejected(self):
        await self.controller.initialize_battle()
        await self.controller.submit_answer(1, time_spent=1, question_index=0)
        self.assertFalse(await self.controller.submit_answer(1, time_spent=1, question_index=0))
        self.assertEqual(self.controller.session.current_question_index, 1)

    @async_test
    async def test_answer_after_completion_is_rejected(self):
        await self.controller.initialize_battle()
        for i in range(3):
            await self.controller.submit_answer(1, time_spent=1, question_index=i)
        self.assertFalse(await self.controller.submit_answer(1, time_spent=1))

    @async_test
    async def test_save_failure_moves_to_error_and_raises(self):
        await self.controller.initialize_battle()
        self.persistence.save_session.side_effect = PersistenceError("disk full")

        with self.assertRaises(PersistenceError):
            await self.controller.submit_answer(1, time_spent=1)
        self.assertEqual(self.controller.session.status, BattleStatus.ERROR)

    @async_test
    async def test_tick_times_out_question(self):
        controller = BattleController(
            "u1", self.persistence,
            ConfigManager(TestFixtures.create_battle_config(questions=3, timer=5)),
            clock=self.clock
        )
        await controller.initialize_battle()
        for _ in range(4):
            self.assertTrue(await controller.tick())
        self.assertEqual(controller.session.time_left, 1)

        self.assertTrue(await controller.tick())
        self.assertEqual(controller.session.current_question_index, 1)
        self.assertEqual(controller.session.player_answers, (False,))
        self.persistence.save_session.assert_awaited()

    @async_test
    async def test_auto_timer_runs_battle_to_completion(self):
        controller = BattleController(
            "u1", self.persistence,
            ConfigManager({'battle': {'questions_per_battle': 1, 'time_per_question': 5,
                                      'ready_delay_ms': 0, 'opponent_score': 300}}),
            clock=self.clock
        )
        controller.timer = BattleTimer("u1", interval=0.01)
        await controller.initialize_battle()
        await asyncio.sleep(0.3)

        self.assertEqual(controller.session.status, BattleStatus.COMPLETED)
        self.assertFalse(controller.results.is_victory)
        self.assertFalse(controller.timer.is_running)

    @async_test
    async def test_time_boost_lengthens_questions(self):
        ledger = EffectLedger()
        ledger.activate(EffectEntry(id="t", type=EffectType.TIME_BOOST, value=1.5,
                                    start_time=self.clock(), duration=300))
        controller = BattleController("u1", self.persistence, self.config_manager,
                                      ledger=ledger, clock=self.clock)
        await controller.initialize_battle()
        self.assertEqual(controller.session.time_per_question, 45)
        self.assertEqual(controller.session.time_left, 45)

    @async_test
    async def test_score_boost_scales_points(self):
        ledger = EffectLedger()
        ledger.activate(EffectEntry(id="s", type=EffectType.SCORE_BOOST, value=1.25,
                                    start_time=self.clock(), duration=300))
        controller = BattleController("u1", self.persistence, self.config_manager,
                                      ledger=ledger, clock=self.clock)
        await controller.initialize_battle()
        await controller.submit_answer(1, time_spent=30)
        self.assertEqual(controller.session.score.player, 125)

    @async_test
    async def test_recover_active_battle(self):
        saved = transition(None, Search("u1", TestFixtures.create_opponent(), 30))
        saved = transition(saved, Initialize(TestFixtures.create_sample_questions(3)))
        saved = transition(saved, Start())
        self.persistence.recover_session.return_value = saved

        restored = await self.controller.recover_battle()
        self.assertEqual(restored, saved)
        self.assertEqual(self.controller.session.status, BattleStatus.ACTIVE)
        self.assertTrue(await self.controller.submit_answer(1, time_spent=1))

    @async_test
    async def test_recover_ignores_missing_or_finished_saves(self):
        self.assertIsNone(await self.controller.recover_battle())

        saved = transition(None, Search("u1"))
        self.persistence.recover_session.return_value = saved
        self.assertIsNone(await self.controller.recover_battle())
        self.assertIsNone(self.controller.session)

    @async_test
    async def test_recover_swallows_persistence_errors(self):
        self.persistence.recover_session.side_effect = PersistenceError("corrupt")
        self.assertIsNone(await self.controller.recover_battle())

    @async_test
    async def test_dismiss_returns_to_idle(self):
        await self.controller.initialize_battle()
        await self.controller.dismiss()
        self.assertIsNone(self.controller.session)
        self.assertFalse(self.controller.is_busy)
        self.persistence.clear_session.assert_awaited_with("u1")
        self.assertEqual(self.controller.get_status_summary(), "No battle in progress")

    @async_test
    async def test_unmount_drops_updates(self):
        await self.controller.initialize_battle()
        self.controller.unmount()
        self.assertFalse(await self.controller.submit_answer(1, time_spent=1))
        self.assertFalse(await self.controller.tick())
        self.assertEqual(self.controller.session.current_question_index, 0)

    @async_test
    async def test_failing_listener_does_not_break_battle(self):
        self.controller.add_listener(AsyncMock(side_effect=RuntimeError("render failed")))
        self.assertTrue(await self.controller.initialize_battle())

    @async_test
    async def test_battle_results_reach_economy(self):
        profile = TestFixtures.create_profile("u1")
        economy = EconomyOrchestrator(
            profile, self.persistence, self.config_manager,
            achievements=TestFixtures.create_achievements(), clock=self.clock
        )
        controller = BattleController("u1", self.persistence, self.config_manager,
                                      economy=economy, clock=self.clock)
        await controller.initialize_battle()
        for i in range(3):
            await controller.submit_answer(1, time_spent=0, question_index=i)

        self.assertGreaterEqual(profile.xp, 220)
        self.assertEqual(profile.statistics['battles_played'], 1)
        self.assertIn('first_battle', controller.results.achievements)
        self.assertIn('first_battle', controller.session.rewards.achievements)
        self.persistence.record_battle_outcome.assert_awaited_once()

    @async_test
    async def test_results_recorded_without_economy(self):
        await self.controller.initialize_battle()
        for i in range(3):
            await self.controller.submit_answer(1, time_spent=0, question_index=i)
        self.persistence.record_battle_outcome.assert_awaited_once_with("u1", self.controller.results)

    def make_timed_controller(self):
        economy = EconomyOrchestrator(
            TestFixtures.create_profile("u1"), self.persistence, ConfigManager(), clock=self.clock
        )
        config = ConfigManager({'battle': {'questions_per_battle': 1, 'time_per_question': 5,
                                           'ready_delay_ms': 0, 'opponent_score': 300,
                                           'auto_timer': True}})
        controller = BattleController("u1", self.persistence, config,
                                      economy=economy, clock=self.clock)
        controller.timer = BattleTimer("u1", interval=0.01)
        return controller, economy

    def slow_stats_write(self):
        """Make record_battle_outcome pause mid-write; returns (started, finished)."""
        started = asyncio.Event()
        finished = []
        fold = self.persistence.record_battle_outcome.side_effect

        async def record(user_id, results, prior=None):
            started.set()
            await asyncio.sleep(0.05)
            stats = fold(user_id, results, prior)
            finished.append(stats)
            return stats

        self.persistence.record_battle_outcome.side_effect = record
        return started, finished

    @async_test
    async def test_unmount_during_timeout_settlement_keeps_writes(self):
        started, finished = self.slow_stats_write()
        controller, economy = self.make_timed_controller()
        await controller.initialize_battle()
        await asyncio.wait_for(started.wait(), timeout=2)

        controller.unmount()
        await controller.wait_for_settlement()
        await asyncio.sleep(0)

        self.assertEqual(len(finished), 1)
        self.assertEqual(economy.profile.statistics['battles_played'], 1)
        self.assertEqual(economy.battle_stats.losses, 1)
        self.persistence.clear_session.assert_awaited_with("u1")
        self.assertFalse(controller.timer.is_running)

    @async_test
    async def test_dismiss_during_timeout_settlement_waits_for_writes(self):
        started, finished = self.slow_stats_write()
        controller, economy = self.make_timed_controller()
        await controller.initialize_battle()
        await asyncio.wait_for(started.wait(), timeout=2)

        await controller.dismiss()

        self.assertEqual(len(finished), 1)
        self.assertEqual(economy.profile.statistics['battles_played'], 1)
        self.assertIsNone(controller.session)
        self.assertIsNone(controller.results)

    @async_test
    async def test_new_battle_during_timeout_settlement_waits_for_writes(self):
        started, finished = self.slow_stats_write()
        controller, economy = self.make_timed_controller()
        await controller.initialize_battle()
        await asyncio.wait_for(started.wait(), timeout=2)

        self.assertTrue(await controller.initialize_battle())
        self.assertEqual(len(finished), 1)
        self.assertEqual(economy.profile.statistics['battles_played'], 1)
        self.assertEqual(controller.session.status, BattleStatus.ACTIVE)
        controller.unmount()
        await controller.wait_for_settlement()

    def test_generate_opponent(self):
        opponent = self.controller.generate_opponent(rating=1500)
        self.assertTrue(opponent.name.startswith("Bot_"))
        self.assertTrue(1400 <= opponent.rating <= 1600)
        self.assertEqual(opponent.score, 300)
        self.assertEqual(self.controller.generate_opponent(score=50).score, 50)

    def test_status_summary(self):
        self.assertEqual(self.controller.get_status_summary(), "No battle in progress")


if __name__ == '__main__':
    unittest.main()
