"""Email channel sending sale, listing and delisting notices through Resend."""

import logging
from typing import Dict, Optional, Tuple

import asyncpg
import requests

from .base import (
    Channel,
    DELIST_TYPES,
    LIST_TYPES,
    NotificationSummary,
    SALE_TYPES,
    format_price,
    truncate_wallet,
)

logger = logging.getLogger(__name__)

RESEND_URL = 'https://api.resend.com/emails'


class EmailChannel(Channel):
    """Emails the wallet owner affected by a transaction, when a profile email is on file."""

    name = 'email'

    def __init__(
        self,
        api_key: str,
        from_email: str,
        pool,
        session: Optional[requests.Session] = None
    ):
        super().__init__(session)
        self.api_key = api_key
        self.from_email = from_email
        self.pool = pool

    async def get_profile(self, wallet_address: str) -> Optional[Dict[str, Optional[str]]]:
        """Fetch the profile for a wallet.

        Returns:
            Dict with email and display_name, or None if there is no profile or no email
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    'SELECT email, display_name FROM profiles WHERE wallet_address = $1',
                    wallet_address
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Error fetching profile for {truncate_wallet(wallet_address)}: {e}")
            return None

        if not row or not row['email']:
            return None
        return {'email': row['email'], 'display_name': row['display_name']}

    def compose(self, summary: NotificationSummary) -> Optional[Tuple[str, str, str]]:
        """Pick the recipient wallet and write the message.

        Returns:
            Tuple of (wallet, subject, text), or None when the event has no recipient
        """
        name = summary.name or 'Unknown NFT'
        price = format_price(summary.price, summary.currency) if summary.price is not None else None

        if summary.tx_type in SALE_TYPES and summary.seller:
            subject = f'Your card "{name}" sold' + (f" for {price}!" if price else "!")
            text = f'"{name}" was bought by {truncate_wallet(summary.buyer)}.'
            return summary.seller, subject, text

        if summary.tx_type in LIST_TYPES and summary.seller and price:
            subject = f'Your card "{name}" is now listed for {price}'
            text = f'"{name}" is listed on Tensor for {price}.'
            return summary.seller, subject, text

        if summary.tx_type in DELIST_TYPES and summary.owner:
            subject = f'Your card "{name}" has been delisted'
            text = f'"{name}" is no longer listed on Tensor.'
            return summary.owner, subject, text

        return None

    async def send(self, summary: NotificationSummary) -> None:
        message = self.compose(summary)
        if message is None:
            return
        wallet, subject, text = message

        profile = await self.get_profile(wallet)
        if not profile:
            logger.info(
                f"Skipping {summary.tx_type} email - no email found for {truncate_wallet(wallet)}"
            )
            return

        greeting = f"Hi {profile['display_name']},\n\n" if profile['display_name'] else ""
        await self.post_json(
            RESEND_URL,
            {
                'from': self.from_email,
                'to': [profile['email']],
                'subject': subject,
                'text': greeting + text,
            },
            headers={'Authorization': f"Bearer {self.api_key}"}
        )
        logger.info(f"{summary.tx_type} email sent to {profile['email']}")
