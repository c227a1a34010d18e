"""
sustenance.py - Auto-eat loop.

Keeps the food bar above a threshold by eating from the inventory.
The loop schedules its next check only after the current attempt has
finished, so two eat attempts never overlap. Delays:

- success / nothing to eat / not hungry: base interval
- timeout: escalating backoff (a stuck interaction is not hammered)
- other error: medium backoff
"""

import asyncio
import logging
from enum import Enum, auto
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import SessionSupervisor

logger = logging.getLogger(__name__)


class EatOutcome(Enum):
    """Result of one auto-eat check."""
    SKIPPED = auto()
    NOT_HUNGRY = auto()
    ATE = auto()
    NO_FOOD = auto()
    TIMEOUT = auto()
    ERROR = auto()


class Sustenance:
    """Auto-eat loop for one slot."""

    TIMER = "sustenance"

    def __init__(self, session: 'SessionSupervisor'):
        self.session = session
        self.settings = session.settings.sustenance
        self.consecutive_timeouts = 0

    def arm(self) -> None:
        self.session.timers.spawn(self.TIMER, self.run())

    def disarm(self) -> None:
        self.session.timers.cancel(self.TIMER)

    async def run(self) -> None:
        gen = self.session.timers.generation
        delay = self.settings.check_interval
        while self.session.timers.is_current(gen):
            await asyncio.sleep(delay)
            if not self.session.timers.is_current(gen):
                return
            outcome = await self.tick()
            delay = self.next_delay(outcome)

    def next_delay(self, outcome: EatOutcome) -> float:
        """Delay before the next check, given the last outcome."""
        if outcome == EatOutcome.TIMEOUT:
            backoff = self.settings.timeout_backoff
            index = min(self.consecutive_timeouts, len(backoff)) - 1
            return backoff[index]
        if outcome == EatOutcome.ERROR:
            return self.settings.error_backoff
        return self.settings.check_interval

    async def tick(self) -> EatOutcome:
        """
        Run one auto-eat check.

        Returns:
            What happened, used to pick the next delay
        """
        session = self.session
        if not session.is_online() or session.state.is_paused:
            return EatOutcome.SKIPPED

        client = session.client
        try:
            food = client.get_food()
            if food is None or food >= self.settings.food_threshold:
                return EatOutcome.NOT_HUNGRY
            item = session.inventory.find_food(self.settings.food_items)
        except Exception as e:
            logger.error(f"{session.label}: Auto-eat error: {e}")
            return EatOutcome.ERROR

        if item is None:
            logger.warning(f"{session.label}: Hungry (food: {food}) but no food in inventory!")
            return EatOutcome.NO_FOOD

        session.state.consuming = True
        try:
            await asyncio.wait_for(self._eat(client, item), self.settings.consume_timeout)
        except asyncio.TimeoutError:
            self.consecutive_timeouts += 1
            delay = self.next_delay(EatOutcome.TIMEOUT)
            logger.warning(f"{session.label}: Auto-eat timed out "
                           f"({self.consecutive_timeouts} in a row). Retrying in {delay:.0f}s.")
            return EatOutcome.TIMEOUT
        except Exception as e:
            logger.error(f"{session.label}: Auto-eat error: {e}")
            return EatOutcome.ERROR
        finally:
            session.state.consuming = False

        self.consecutive_timeouts = 0
        logger.info(f"{session.label}: Ate {item.name} (food: {food} -> {client.get_food()})")
        return EatOutcome.ATE

    @staticmethod
    async def _eat(client, item) -> None:
        await client.equip(item, "hand")
        await client.consume()
