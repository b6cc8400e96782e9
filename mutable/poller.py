"""
Update Poller
=============

Кооперативный опрос подписок с автообновлением.

[STATE MACHINE]
    IDLE --(interval elapsed on tick)--> DUE --(sweep issued)--> IDLE

На каждом тике (хост выкачивает события движка):
1. Если с прошлого обхода прошло меньше interval -> остаёмся в IDLE
2. Иначе DUE: request_latest для каждой подписки с auto_update_enabled,
   сбрасываем часы, возвращаемся в IDLE

Ошибка запроса одной подписки логируется и не прерывает обход остальных.

Своего потока и таймера нет: опрос идёт с той частотой, с которой хост
и так забирает события.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from .registry import MutableRecordRegistry
from .subscriber import SubscriptionCoordinator

logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL = 300.0  # 5 минут


class PollerState(Enum):
    IDLE = "idle"
    DUE = "due"


class UpdatePoller:
    """Интервальный опрос подписок без фонового потока."""

    def __init__(
        self,
        registry: MutableRecordRegistry,
        subscriber: SubscriptionCoordinator,
        interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            registry: Реестр записей
            subscriber: Координатор подписок
            interval: Интервал между обходами (секунды)
            clock: Монотонные часы (подменяются в тестах)
        """
        self.registry = registry
        self.subscriber = subscriber
        self.interval = interval
        self.clock = clock
        self.state = PollerState.IDLE
        self.last_sweep = clock()
        self.sweep_count = 0

    @property
    def seconds_until_due(self) -> float:
        return max(0.0, self.interval - (self.clock() - self.last_sweep))

    def tick(self, now: Optional[float] = None) -> int:
        """
        Один шаг автомата.

        Returns:
            Количество выданных запросов dht_get
        """
        now = self.clock() if now is None else now
        if now - self.last_sweep < self.interval:
            return 0
        return self._run(now)

    def force(self) -> int:
        """Обойти подписки немедленно, независимо от интервала."""
        return self._run(self.clock())

    def _run(self, now: float) -> int:
        self.state = PollerState.DUE
        try:
            return self._sweep()
        finally:
            self.last_sweep = now
            self.state = PollerState.IDLE

    def _sweep(self) -> int:
        issued = 0
        for record in self.registry.subscribers(auto_update_only=True):
            try:
                self.subscriber.request_latest(record.record_id)
            except Exception as e:
                logger.warning(
                    f"[POLL] Query for {record.public_key.hex()[:16]}... failed: {e}"
                )
                continue
            issued += 1
        self.sweep_count += 1
        if issued:
            logger.debug(f"[POLL] Sweep #{self.sweep_count}: {issued} subscriptions queried")
        return issued
