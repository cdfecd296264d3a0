"""Discord webhook channel for high-value listing alerts."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from .base import Channel, LIST_TYPES, NotificationSummary, format_price, truncate_wallet

logger = logging.getLogger(__name__)

SITE_URL = 'https://www.graded.world'
EMBED_COLOR = 0xFFA500


class DiscordChannel(Channel):
    """Posts listings worth at least the USDC threshold to a Discord webhook."""

    name = 'discord'

    def __init__(
        self,
        webhook_url: str,
        threshold_usdc: float = 600,
        sol_usd_rate: float = 150,
        session: Optional[requests.Session] = None
    ):
        super().__init__(session)
        self.webhook_url = webhook_url
        self.threshold_usdc = Decimal(str(threshold_usdc))
        self.sol_usd_rate = Decimal(str(sol_usd_rate))

    def usdc_value(self, summary: NotificationSummary) -> Optional[Decimal]:
        if summary.price is None:
            return None
        if summary.currency == 'USDC':
            return summary.price
        return summary.price * self.sol_usd_rate

    def build_payload(self, summary: NotificationSummary, usdc_value: Decimal) -> Dict[str, Any]:
        """Build the webhook body for a listing alert."""
        nft_url = None
        if summary.collection_slug and summary.mint_address:
            nft_url = f"{SITE_URL}/{summary.collection_slug}/{summary.mint_address}"

        description = f"**{summary.name or 'Unknown NFT'}** has been listed on Tensor!"
        if nft_url:
            description += f"\n\n**[View on Graded]({nft_url})**"

        embed: Dict[str, Any] = {
            'title': 'High-Value Listing Alert',
            'description': description,
            'color': EMBED_COLOR,
            'fields': [
                {'name': 'Price', 'value': format_price(summary.price, summary.currency), 'inline': True},
                {'name': 'USDC Value', 'value': f"~${usdc_value:.2f}", 'inline': True},
                {'name': 'Collection', 'value': summary.collection_slug or 'unknown', 'inline': True},
                {'name': 'Marketplace', 'value': 'Tensor', 'inline': True},
                {
                    'name': 'Seller',
                    'value': f"`{truncate_wallet(summary.seller)}`" if summary.seller else 'Unknown',
                    'inline': True
                },
                {'name': 'Mint Address', 'value': f"`{truncate_wallet(summary.mint_address)}`", 'inline': True},
            ],
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'footer': {'text': 'Graded • Tensor Listener'},
        }
        if nft_url:
            embed['url'] = nft_url
        if summary.image and summary.image.strip().startswith('http'):
            embed['image'] = {'url': summary.image.strip()}

        return {'embeds': [embed]}

    async def send(self, summary: NotificationSummary) -> None:
        if summary.tx_type not in LIST_TYPES:
            return

        usdc_value = self.usdc_value(summary)
        if usdc_value is None:
            logger.debug(f"Skipping Discord alert for {summary.mint_address} - no price")
            return
        if usdc_value < self.threshold_usdc:
            logger.info(
                f"Skipping Discord alert - below threshold: "
                f"{format_price(summary.price, summary.currency)} (~${usdc_value:.2f})"
            )
            return

        await self.post_json(self.webhook_url, self.build_payload(summary, usdc_value))
        logger.info(
            f"High-value listing alert sent: {summary.name} @ "
            f"{format_price(summary.price, summary.currency)} (~${usdc_value:.2f} USDC)"
        )
