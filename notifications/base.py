"""Notification summary and channel base class."""

import asyncio
import functools
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# Timeout for outbound HTTP calls, in seconds
HTTP_TIMEOUT = 10

LIST_TYPES = ('LIST', 'EDIT_SINGLE_LISTING')
SALE_TYPES = ('SALE', 'ACCEPT_BID')
DELIST_TYPES = ('DELIST',)


class NotificationSummary(BaseModel):
    """What happened to an NFT, after its listing state was stored."""
    model_config = ConfigDict(frozen=True)

    tx_type: str
    tx_id: Optional[str] = None
    mint_address: str
    name: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None  # 'SOL' or 'USDC'
    seller: Optional[str] = None
    buyer: Optional[str] = None
    owner: Optional[str] = None
    image: Optional[str] = None
    collection_slug: Optional[str] = None


class NotificationError(Exception):
    """Raised when a channel fails to deliver a notification."""
    pass


def format_price(price: Decimal, currency: Optional[str]) -> str:
    """Format a price the way notifications display it."""
    if currency == 'USDC':
        return f"${price:.2f} USDC"
    return f"◎{price:.4f} SOL"


def truncate_wallet(wallet: Optional[str]) -> str:
    """Shorten a wallet address for display (abcd...wxyz)."""
    if not wallet or len(wallet) <= 8:
        return wallet or ''
    return f"{wallet[:4]}...{wallet[-4:]}"


class Channel:
    """A notification channel. Subclasses implement send()."""

    name = 'channel'

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        # requests.Session is not thread-safe, one executor call at a time
        self._session_lock: Optional[asyncio.Lock] = None

    async def send(self, summary: NotificationSummary) -> None:
        raise NotImplementedError

    async def post_json(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None):
        """POST JSON without blocking the event loop.

        Raises:
            NotificationError: If the request fails or returns an error status
        """
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self.session.post, url, json=payload, headers=headers, timeout=HTTP_TIMEOUT
        )
        if self._session_lock is None:
            self._session_lock = asyncio.Lock()
        try:
            async with self._session_lock:
                response = await loop.run_in_executor(None, call)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"{self.name} request failed: {e}") from e
        return response
