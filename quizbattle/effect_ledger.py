"""
Effect ledger: time-boxed multiplicative boosts and their expiry.
"""
import heapq
import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

from .models import EffectEntry, EffectType, RewardMultipliers

logger = logging.getLogger(__name__)


class EffectLedger:
    """
    Tracks active effects for one user and keeps RewardMultipliers in sync.

    xp_boost and coin_boost effects multiply the matching RewardMultipliers
    field on activation and divide it back out on expiry. score_boost and
    time_boost effects are only recorded; the battle controller reads them
    through score_multiplier() and time_multiplier().

    Expiry is scheduled in a min-heap keyed by expires_at. Removing an entry
    early leaves its heap slot behind; poll_expired() skips slots whose
    entry is gone.
    """

    def __init__(self, multipliers: Optional[RewardMultipliers] = None):
        self.multipliers = multipliers if multipliers is not None else RewardMultipliers()
        self._entries: Dict[str, EffectEntry] = {}
        self._heap: List[Tuple[float, str]] = []

    @property
    def active_effects(self) -> List[EffectEntry]:
        return list(self._entries.values())

    def get(self, effect_id: str) -> Optional[EffectEntry]:
        return self._entries.get(effect_id)

    def activate(self, effect: EffectEntry) -> EffectEntry:
        """
        Record an effect, apply its multiplier and schedule its expiry.

        Raises:
            ValueError: If the multiplier is not positive
        """
        if effect.value <= 0:
            raise ValueError(f"Effect multiplier must be positive, got {effect.value}")
        if effect.id in self._entries:
            self.expire(effect.id)

        self._entries[effect.id] = effect
        heapq.heappush(self._heap, (effect.expires_at, effect.id))

        if effect.type == EffectType.XP_BOOST:
            self.multipliers.xp *= effect.value
        elif effect.type == EffectType.COIN_BOOST:
            self.multipliers.coins *= effect.value

        logger.info(
            f"Activated {effect.type.value} x{effect.value} for {effect.duration}s",
            extra={
                'event_type': 'effect_activated',
                'effect_id': effect.id,
                'timestamp': time.time()
            }
        )
        return effect

    def expire(self, effect_id: str) -> Optional[EffectEntry]:
        """
        Remove an effect and reverse exactly the contribution it applied.

        Returns:
            The removed entry, or None if no such effect is active
        """
        effect = self._entries.pop(effect_id, None)
        if effect is None:
            return None

        if effect.type == EffectType.XP_BOOST:
            self.multipliers.xp /= effect.value
        elif effect.type == EffectType.COIN_BOOST:
            self.multipliers.coins /= effect.value

        logger.info(
            f"Expired {effect.type.value} effect {effect_id}",
            extra={
                'event_type': 'effect_expired',
                'effect_id': effect_id,
                'timestamp': time.time()
            }
        )
        return effect

    def poll_expired(self, now: Optional[float] = None) -> List[EffectEntry]:
        """Expire every effect whose window has passed and return them."""
        now = time.time() if now is None else now
        expired = []
        while self._heap and now > self._heap[0][0]:
            expires_at, effect_id = heapq.heappop(self._heap)
            effect = self._entries.get(effect_id)
            # Stale slot from an early removal or a re-activation.
            if effect is None or effect.expires_at != expires_at:
                continue
            self.expire(effect_id)
            expired.append(effect)
        return expired

    def next_expiry(self) -> Optional[float]:
        while self._heap and self._heap[0][1] not in self._entries:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def restore(self, entries: Iterable[EffectEntry]) -> None:
        """Reload persisted effects; the multipliers already include them."""
        self._entries = {}
        for entry in entries:
            if entry.value <= 0:
                logger.warning(f"Dropping persisted effect {entry.id} with multiplier {entry.value}")
                continue
            self._entries[entry.id] = entry
        self._heap = [(entry.expires_at, entry.id) for entry in self._entries.values()]
        heapq.heapify(self._heap)

    def _product(self, effect_type: EffectType) -> float:
        result = 1.0
        for entry in self._entries.values():
            if entry.type == effect_type:
                result *= entry.value
        return result

    def score_multiplier(self) -> float:
        return self._product(EffectType.SCORE_BOOST)

    def time_multiplier(self) -> float:
        return self._product(EffectType.TIME_BOOST)
