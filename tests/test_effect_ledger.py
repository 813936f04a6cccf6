"""
Unit tests for EffectLedger.
"""
import logging
import random
import unittest

from quizbattle.effect_ledger import EffectLedger
from quizbattle.models import EffectEntry, EffectType, RewardMultipliers


def make_effect(effect_id, effect_type=EffectType.XP_BOOST, value=1.5, start=0.0, duration=300):
    return EffectEntry(id=effect_id, type=effect_type, value=value,
                       start_time=start, duration=duration,
                       source_item={'id': 'item', 'name': 'Item'})


class TestEffectLedger(unittest.TestCase):
    """Test cases for effect activation and expiry."""

    def setUp(self):
        self.multipliers = RewardMultipliers()
        self.ledger = EffectLedger(self.multipliers)
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    def test_xp_boost_multiplies_and_restores(self):
        self.ledger.activate(make_effect("e1", value=1.5))
        self.assertAlmostEqual(self.multipliers.xp, 1.5)
        self.assertEqual(self.multipliers.coins, 1.0)

        removed = self.ledger.expire("e1")
        self.assertEqual(removed.id, "e1")
        self.assertAlmostEqual(self.multipliers.xp, 1.0)

    def test_overlapping_boosts_stack_multiplicatively(self):
        self.ledger.activate(make_effect("a", EffectType.COIN_BOOST, 2.0))
        self.ledger.activate(make_effect("b", EffectType.COIN_BOOST, 1.5))
        self.assertAlmostEqual(self.multipliers.coins, 3.0)

        self.ledger.expire("a")
        self.assertAlmostEqual(self.multipliers.coins, 1.5)

    def test_non_positive_multiplier_is_rejected(self):
        for value in (0, -2.0):
            with self.assertRaises(ValueError):
                self.ledger.activate(make_effect(f"bad{value}", value=value))
        self.assertEqual(self.multipliers.xp, 1.0)
        self.assertIsNone(self.ledger.next_expiry())

    def test_fractional_boost_is_reversed(self):
        self.ledger.activate(make_effect("slow", EffectType.XP_BOOST, 0.5))
        self.assertAlmostEqual(self.multipliers.xp, 0.5)
        self.ledger.expire("slow")
        self.assertAlmostEqual(self.multipliers.xp, 1.0)

    def test_restore_drops_non_positive_entries(self):
        self.ledger.restore([make_effect("ok"), make_effect("zero", value=0)])
        self.assertIsNone(self.ledger.expire("zero"))
        self.assertIsNotNone(self.ledger.expire("ok"))

    def test_expire_unknown_effect_is_noop(self):
        self.assertIsNone(self.ledger.expire("missing"))
        self.assertEqual(self.multipliers.xp, 1.0)

    def test_expire_twice_only_reverses_once(self):
        self.ledger.activate(make_effect("e1", value=2.0))
        self.ledger.expire("e1")
        self.ledger.expire("e1")
        self.assertAlmostEqual(self.multipliers.xp, 1.0)

    def test_poll_expired_fires_after_window(self):
        self.ledger.activate(make_effect("short", start=0, duration=10))
        self.ledger.activate(make_effect("long", start=0, duration=100))

        self.assertEqual(self.ledger.poll_expired(10), [])  # expires strictly after
        expired = self.ledger.poll_expired(11)
        self.assertEqual([e.id for e in expired], ["short"])
        self.assertAlmostEqual(self.multipliers.xp, 1.5)
        self.assertEqual(self.ledger.next_expiry(), 100)

    def test_poll_skips_manually_removed_entries(self):
        self.ledger.activate(make_effect("gone", start=0, duration=10))
        self.ledger.expire("gone")
        self.assertEqual(self.ledger.poll_expired(1000), [])
        self.assertAlmostEqual(self.multipliers.xp, 1.0)
        self.assertIsNone(self.ledger.next_expiry())

    def test_reactivation_replaces_previous_entry(self):
        self.ledger.activate(make_effect("e1", value=2.0, start=0, duration=10))
        self.ledger.activate(make_effect("e1", value=2.0, start=5, duration=10))
        self.assertAlmostEqual(self.multipliers.xp, 2.0)

        self.assertEqual(self.ledger.poll_expired(12), [])
        self.assertEqual(len(self.ledger.poll_expired(16)), 1)
        self.assertAlmostEqual(self.multipliers.xp, 1.0)

    def test_score_and_time_boosts_do_not_touch_multipliers(self):
        self.ledger.activate(make_effect("s", EffectType.SCORE_BOOST, 1.25))
        self.ledger.activate(make_effect("t", EffectType.TIME_BOOST, 1.5))
        self.assertEqual((self.multipliers.xp, self.multipliers.coins), (1.0, 1.0))
        self.assertAlmostEqual(self.ledger.score_multiplier(), 1.25)
        self.assertAlmostEqual(self.ledger.time_multiplier(), 1.5)

        self.ledger.expire("t")
        self.assertEqual(self.ledger.time_multiplier(), 1.0)

    def test_random_sequences_return_to_baseline(self):
        rng = random.Random(42)
        for round_number in range(20):
            ids = []
            for i in range(rng.randint(1, 8)):
                effect_id = f"{round_number}-{i}"
                effect_type = rng.choice([EffectType.XP_BOOST, EffectType.COIN_BOOST])
                self.ledger.activate(make_effect(effect_id, effect_type, rng.uniform(1.1, 3.0)))
                ids.append(effect_id)
            rng.shuffle(ids)
            for effect_id in ids:
                self.ledger.expire(effect_id)
            self.assertAlmostEqual(self.multipliers.xp, 1.0, places=9)
            self.assertAlmostEqual(self.multipliers.coins, 1.0, places=9)

    def test_restore_keeps_multipliers_and_schedules_expiry(self):
        multipliers = RewardMultipliers(xp=1.5)
        ledger = EffectLedger(multipliers)
        ledger.restore([make_effect("saved", start=0, duration=30)])

        self.assertAlmostEqual(multipliers.xp, 1.5)
        self.assertEqual(len(ledger.active_effects), 1)
        ledger.poll_expired(31)
        self.assertAlmostEqual(multipliers.xp, 1.0)


if __name__ == '__main__':
    unittest.main()
