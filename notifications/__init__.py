"""Notifications module for fanning out reconciled transactions.

Delivery is best-effort: channels run in background tasks, and a failing
channel is logged without affecting the stored listing state or the other
channels.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .base import Channel, NotificationError, NotificationSummary, format_price, truncate_wallet
from .discord import DiscordChannel
from .email import EmailChannel

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivers notification summaries to every configured channel."""

    def __init__(self, channels: Optional[Iterable[Channel]] = None):
        self.channels: List[Channel] = list(channels or [])
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of deliveries still running."""
        return len(self._tasks)

    def dispatch(self, summary: NotificationSummary) -> None:
        """Schedule delivery of a summary and return immediately."""
        if not self.channels:
            return
        task = asyncio.create_task(self._deliver(summary))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, summary: NotificationSummary) -> None:
        for channel in self.channels:
            try:
                await channel.send(summary)
            except Exception as e:
                logger.error(
                    f"{channel.name} notification failed for {summary.mint_address} "
                    f"({summary.tx_type}): {e}"
                )

    async def drain(self, timeout: float) -> None:
        """Wait up to timeout seconds for running deliveries."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"Abandoning {len(pending)} notification(s) still in flight")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


def build_dispatcher(settings: Dict[str, Any], pool) -> NotificationDispatcher:
    """Create a dispatcher with the channels enabled in settings."""
    channels: List[Channel] = []

    if settings.get('discord_webhook_url'):
        channels.append(DiscordChannel(
            settings['discord_webhook_url'],
            threshold_usdc=settings['high_value_threshold_usdc'],
            sol_usd_rate=settings['sol_usd_rate'],
        ))
    else:
        logger.info("Discord webhook not configured - high-value listing alerts will be disabled")

    if settings.get('resend_api_key'):
        channels.append(EmailChannel(
            settings['resend_api_key'],
            settings['resend_from_email'],
            pool,
        ))
    else:
        logger.info("RESEND_API_KEY not set - email notifications will be disabled")

    return NotificationDispatcher(channels)


__all__ = [
    'Channel',
    'DiscordChannel',
    'EmailChannel',
    'NotificationDispatcher',
    'NotificationError',
    'NotificationSummary',
    'build_dispatcher',
    'format_price',
    'truncate_wallet',
]
