"""
simulated.py — Stand-in provider used when a channel has no credentials.

Exercises the whole dispatch path offline: every send waits a random
channel-typical latency, then succeeds with a fixed probability.

    Channel   Success rate   Latency (× SIMULATION_DELAY_SCALE)
    ───────   ────────────   ──────────────────────────────────
    push      95 %           0.5 – 1.5 s
    sms       98 %           1.0 – 3.0 s
    email     99 %           2.0 – 5.0 s

Inject a seeded ``random.Random`` for reproducible outcomes.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Dict, Optional, Tuple

from backend.app.alerts.channels.base import MODE_SIMULATED, ChannelProvider
from backend.app.alerts.models import Channel, Device, RenderedMessage, SendOutcome

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_RATES: Dict[Channel, float] = {
    Channel.PUSH: 0.95,
    Channel.SMS: 0.98,
    Channel.EMAIL: 0.99,
}

DEFAULT_DELAYS: Dict[Channel, Tuple[float, float]] = {
    Channel.PUSH: (0.5, 1.5),
    Channel.SMS: (1.0, 3.0),
    Channel.EMAIL: (2.0, 5.0),
}


class SimulatedProvider(ChannelProvider):
    """Random-latency, fixed-probability fake transport."""

    mode = MODE_SIMULATED

    def __init__(
        self,
        channel: Channel,
        *,
        success_rate: Optional[float] = None,
        delay_range: Optional[Tuple[float, float]] = None,
        delay_scale: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        rate = DEFAULT_SUCCESS_RATES[channel] if success_rate is None else success_rate
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"success_rate must be within [0, 1], got {rate}")
        self.channel = channel
        self.name = f"simulated-{channel.value}"
        self.success_rate = rate
        self.delay_range = delay_range or DEFAULT_DELAYS[channel]
        self.delay_scale = max(delay_scale, 0.0)
        self._rng = rng or random.Random()

    async def send(self, device: Device, message: RenderedMessage) -> SendOutcome:
        low, high = self.delay_range
        delay = self._rng.uniform(low, high) * self.delay_scale
        if delay > 0:
            await asyncio.sleep(delay)

        if self._rng.random() < self.success_rate:
            ref = f"sim-{self.channel.value}-{self._rng.getrandbits(48):012x}"
            logger.info(
                "[%s] (simulated) → %s (%s): %s",
                self.channel.value.upper(), device.id, device.owner_name,
                message.title or message.body[:60],
            )
            return SendOutcome.ok(ref)

        logger.warning(
            "[%s] (simulated) delivery to %s failed",
            self.channel.value.upper(), device.id,
        )
        return SendOutcome.failed(f"Simulated {self.channel.value} delivery failure")
