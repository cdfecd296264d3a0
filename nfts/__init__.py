"""NFT listing state storage.

This module provides access to the nfts table, the authoritative current
listing state per mint:
- Looking up an NFT by mint address
- Inserting an NFT seen for the first time
- Applying partial updates to an existing NFT
"""

import json
import logging
from typing import Any, Dict, Optional

import asyncpg

from database import get_pool

logger = logging.getLogger(__name__)


# Columns the listener writes
COLUMNS = (
    'mint_address',
    'name',
    'full_name',
    'collection_slug',
    'owner',
    'image',
    'attributes',
    'is_listed',
    'price_lamports',
    'price_sol',
    'price_usdc',
    'currency_address',
    'marketplace',
    'listed_at',
    'updated_at',
)

# Listing-specific fields, all null while the NFT is not listed
LISTING_FIELDS = (
    'price_lamports',
    'price_sol',
    'price_usdc',
    'currency_address',
    'marketplace',
    'listed_at',
)

# Fields that can be changed once the row exists
MUTABLE_FIELDS = set(COLUMNS) - {'mint_address'}

# Errors that mean the database could not serve the request
STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class NFTError(Exception):
    """Base exception for NFT storage operations."""
    pass


class NFTLookupError(NFTError):
    """Raised when an NFT could not be looked up (not raised for a missing row)."""
    pass


class NFTWriteError(NFTError):
    """Raised when an insert or update fails."""
    pass


def _row_to_dict(row) -> Dict[str, Any]:
    record = dict(row)
    if isinstance(record.get('attributes'), str):
        record['attributes'] = json.loads(record['attributes'])
    return record


def _encode_attributes(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


class NFTStore:
    """Store class for reading and writing NFT listing state."""

    def __init__(self, pool=None):
        """Initialize the store.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_nft(self, mint_address: str) -> Optional[Dict[str, Any]]:
        """Get an NFT by mint address.

        Args:
            mint_address: The NFT's mint address

        Returns:
            Dict with the stored row, or None if the NFT is not stored

        Raises:
            NFTLookupError: If the lookup fails
        """
        try:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    'SELECT * FROM nfts WHERE mint_address = $1',
                    mint_address
                )
        except STORAGE_ERRORS as e:
            raise NFTLookupError(f"Failed to look up {mint_address}: {e}") from e

        return _row_to_dict(row) if row else None

    async def insert_nft(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new NFT.

        Args:
            record: Full record, keyed by column name. Must contain mint_address.

        Returns:
            Dict with the inserted row

        Raises:
            NFTWriteError: If the record is invalid or the insert fails
        """
        unknown = set(record) - set(COLUMNS)
        if unknown or not record.get('mint_address'):
            raise NFTWriteError(f"Invalid NFT record, unknown fields: {sorted(unknown)}")

        columns = [column for column in COLUMNS if column in record]
        values = [
            _encode_attributes(record[column]) if column == 'attributes' else record[column]
            for column in columns
        ]
        placeholders = [
            f'${i}::jsonb' if column == 'attributes' else f'${i}'
            for i, column in enumerate(columns, start=1)
        ]

        try:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO nfts ({', '.join(columns)})
                    VALUES ({', '.join(placeholders)})
                    RETURNING *
                    ''',
                    *values
                )
        except STORAGE_ERRORS as e:
            raise NFTWriteError(f"Failed to insert {record['mint_address']}: {e}") from e

        return _row_to_dict(row)

    async def update_nft(self, mint_address: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update to an existing NFT.

        Args:
            mint_address: The NFT's mint address
            fields: Column values to assign

        Returns:
            Dict with the updated row

        Raises:
            NFTWriteError: If a field is not mutable, the NFT vanished or the update fails
        """
        invalid = set(fields) - MUTABLE_FIELDS
        if invalid or not fields:
            raise NFTWriteError(f"Invalid update for {mint_address}: {sorted(invalid)}")

        columns = list(fields)
        assignments = [
            f'{column} = ${i}::jsonb' if column == 'attributes' else f'{column} = ${i}'
            for i, column in enumerate(columns, start=2)
        ]
        values = [
            _encode_attributes(fields[column]) if column == 'attributes' else fields[column]
            for column in columns
        ]

        try:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'''
                    UPDATE nfts
                    SET {', '.join(assignments)}
                    WHERE mint_address = $1
                    RETURNING *
                    ''',
                    mint_address,
                    *values
                )
        except STORAGE_ERRORS as e:
            raise NFTWriteError(f"Failed to update {mint_address}: {e}") from e

        if row is None:
            raise NFTWriteError(f"NFT {mint_address} not found for update")

        return _row_to_dict(row)


__all__ = [
    'NFTStore',
    'NFTError',
    'NFTLookupError',
    'NFTWriteError',
    'COLUMNS',
    'LISTING_FIELDS',
]
