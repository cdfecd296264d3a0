"""Monitor module for reconciling Tensor transactions into NFT listing state.

This module turns each transaction event into the next listing state of its NFT:
- Listings and listing edits mark the NFT listed at the new price
- Delistings clear every listing field
- Sales and accepted bids move ownership to the buyer and clear the listing
- NFTs seen for the first time are inserted with their mint metadata

Every mutation assigns absolute values, so replaying an event converges to
the same row. Events for the same NFT are applied last-write-wins.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from config import Collection, DEFAULT_COLLECTIONS
from nfts import NFTStore, NFTLookupError, NFTWriteError, LISTING_FIELDS
from notifications import NotificationDispatcher, NotificationSummary
from tensor.messages import TransactionEvent
from .pricing import SOL_MINT, USDC_MINT, is_stable_currency, normalize_amount

# Configure logging
logger = logging.getLogger(__name__)

MARKETPLACE = 'tensor'
UNKNOWN_COLLECTION = 'unknown'
NAME_MAX_LENGTH = 32

LIST_TYPES = ('LIST', 'EDIT_SINGLE_LISTING')
DELIST_TYPES = ('DELIST',)
SALE_TYPES = ('SALE', 'ACCEPT_BID')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleared_listing() -> Dict[str, Any]:
    return {field: None for field in LISTING_FIELDS}


def build_listing_update(event: TransactionEvent, now: datetime) -> Optional[Dict[str, Any]]:
    """Compute the fields a transaction assigns on its NFT.

    Args:
        event: Decoded transaction event
        now: Timestamp for updated_at and listed_at

    Returns:
        Dict of column values, or None when the transaction type is not handled
    """
    if event.tx_type in LIST_TYPES:
        price_sol, price_usdc = normalize_amount(event.gross_amount, event.gross_amount_unit)
        stable = is_stable_currency(event.gross_amount_unit)
        return {
            'is_listed': True,
            'owner': event.seller,
            'price_lamports': None if stable else event.gross_amount,
            'price_sol': price_sol,
            'price_usdc': price_usdc,
            'currency_address': USDC_MINT if stable else SOL_MINT,
            'marketplace': MARKETPLACE,
            'listed_at': now,
            'updated_at': now,
        }

    if event.tx_type in DELIST_TYPES:
        return {'is_listed': False, **_cleared_listing(), 'updated_at': now}

    if event.tx_type in SALE_TYPES:
        return {'is_listed': False, 'owner': event.buyer, **_cleared_listing(), 'updated_at': now}

    return None


def resolve_collection_slug(event: TransactionEvent, collections: Iterable[Collection]) -> str:
    """Match the event's collection against the monitored collections.

    Matches on collection id first, then on slug. Unmatched collections are
    tagged 'unknown' rather than rejected.
    """
    collections = tuple(collections)
    for collection in collections:
        if event.collection_id and event.collection_id == collection.collection_id:
            return collection.key
    for collection in collections:
        if event.collection_slug and event.collection_slug in (collection.slug, collection.key):
            return collection.key
    return UNKNOWN_COLLECTION


def build_new_record(
    event: TransactionEvent,
    fields: Dict[str, Any],
    collections: Iterable[Collection] = DEFAULT_COLLECTIONS,
    name_max_length: int = NAME_MAX_LENGTH
) -> Dict[str, Any]:
    """Build the full row for an NFT that is not stored yet.

    The transaction's own fields are applied last, so inserting and then
    replaying the same event as an update gives the same row.
    """
    record = {
        'mint_address': event.mint_address,
        'name': event.name[:name_max_length] if event.name else None,
        'full_name': event.name or None,
        'collection_slug': resolve_collection_slug(event, collections),
        'owner': event.owner or event.seller or event.buyer or None,
        'image': event.image or None,
        'attributes': event.attributes or None,
        'is_listed': False,
        **_cleared_listing(),
    }
    record.update(fields)
    return record


def build_summary(event: TransactionEvent, record: Dict[str, Any]) -> NotificationSummary:
    """Summarize a stored transaction for the notification channels."""
    stable = is_stable_currency(event.gross_amount_unit)
    price_sol, price_usdc = normalize_amount(event.gross_amount, event.gross_amount_unit)
    return NotificationSummary(
        tx_type=event.tx_type,
        tx_id=event.tx_id,
        mint_address=event.mint_address,
        name=record.get('full_name') or record.get('name') or event.name,
        price=price_usdc if stable else price_sol,
        currency='USDC' if stable else 'SOL',
        seller=event.seller,
        buyer=event.buyer,
        owner=record.get('owner'),
        image=record.get('image') or event.image,
        collection_slug=record.get('collection_slug'),
    )


class TransactionMonitor:
    """Reconcile Tensor transactions into the nfts table."""

    def __init__(
        self,
        store: Optional[NFTStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        collections: Iterable[Collection] = DEFAULT_COLLECTIONS,
        name_max_length: int = NAME_MAX_LENGTH,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize the transaction monitor.

        Args:
            store: NFT store, defaults to one on the shared database pool
            dispatcher: Notification dispatcher, defaults to one without channels
            collections: Monitored collections, used to tag new NFTs
            name_max_length: Length bound for the display name of new NFTs
            clock: Source of the current time
        """
        self.store = store or NFTStore()
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.collections = tuple(collections)
        self.name_max_length = name_max_length
        self.clock = clock

    async def process_transaction(self, event: TransactionEvent) -> Optional[Dict[str, Any]]:
        """Apply one transaction event to the stored listing state.

        Args:
            event: Decoded transaction event

        Returns:
            The stored row, or None when nothing was written
        """
        mint = event.mint_address
        logger.info(
            f"Transaction {event.tx_type} tx={event.tx_id} mint={mint} "
            f"name={event.name!r} collection={event.collection_slug} "
            f"seller={event.seller} buyer={event.buyer} amount={event.gross_amount}"
        )

        if not mint:
            logger.warning(f"No mint address in transaction {event.tx_id}, skipping")
            return None

        fields = build_listing_update(event, self.clock())
        if fields is None:
            logger.info(f"Unhandled transaction type: {event.tx_type}")
            return None

        try:
            existing = await self.store.get_nft(mint)
        except NFTLookupError as e:
            logger.error(f"Database error, dropping {event.tx_type} tx={event.tx_id}: {e}")
            return None

        try:
            if existing:
                logger.debug(f"Before update: {existing}")
                record = await self.store.update_nft(mint, fields)
                logger.info(f"Updated {mint[:8]}... ({event.tx_type})")
            else:
                logger.info(f"NFT {mint[:8]}... not found in database, creating new entry")
                record = await self.store.insert_nft(
                    build_new_record(event, fields, self.collections, self.name_max_length)
                )
                logger.info(f"Created new NFT entry for {mint[:8]}... ({event.tx_type})")
        except NFTWriteError as e:
            logger.error(f"Failed to store {event.tx_type} tx={event.tx_id}: {e}")
            return None

        logger.debug(f"After write: {record}")

        try:
            self.dispatcher.dispatch(build_summary(event, record))
        except Exception as e:
            logger.error(f"Failed to dispatch notification for {mint}: {e}")

        return record


def monitor_transactions(store: NFTStore, dispatcher: NotificationDispatcher, **kwargs) -> TransactionMonitor:
    """Create and return a new transaction monitor.

    Args:
        store: NFT store
        dispatcher: Notification dispatcher

    Returns:
        TransactionMonitor: A new transaction monitor instance
    """
    return TransactionMonitor(store, dispatcher, **kwargs)


# Export public interface
__all__ = [
    'monitor_transactions',
    'TransactionMonitor',
    'build_listing_update',
    'build_new_record',
    'build_summary',
    'resolve_collection_slug',
]
