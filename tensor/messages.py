"""Decoding of inbound Tensor websocket frames.

Every frame decodes to exactly one of:
- KeepAliveAck: answer to our keep-alive ping
- ErrorReport: Tensor rejected a request or reported a problem
- TransactionEvent: a newTransaction event for a subscribed collection
- Unrecognized: anything else

Frames that are not JSON raise MessageDecodeError.
"""

import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class MessageDecodeError(Exception):
    """Raised when a frame is not valid JSON."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        super().__init__(f"Failed to parse message ({reason}): {raw}")


class KeepAliveAck(BaseModel):
    """Pong received, connection alive."""
    model_config = ConfigDict(frozen=True)


class ErrorReport(BaseModel):
    """Error reported by Tensor."""
    model_config = ConfigDict(frozen=True)

    message: str


class Unrecognized(BaseModel):
    """Well-formed message of no interest."""
    model_config = ConfigDict(frozen=True)

    payload: Any = None


class TransactionEvent(BaseModel):
    """A marketplace transaction touching one NFT."""
    model_config = ConfigDict(frozen=True)

    tx_type: Optional[str] = None
    tx_id: Optional[str] = None
    mint_address: Optional[str] = None
    seller: Optional[str] = None
    buyer: Optional[str] = None
    gross_amount: Optional[int] = None
    gross_amount_unit: Optional[str] = None
    collection_slug: Optional[str] = None
    collection_id: Optional[str] = None
    name: Optional[str] = None

    # Mint metadata, only used when the NFT is not stored yet
    owner: Optional[str] = None
    image: Optional[str] = None
    attributes: Any = None

    @field_validator('gross_amount', mode='before')
    @classmethod
    def _parse_amount(cls, value):
        # Tensor sends amounts as decimal strings
        if value is None or value == '':
            return None
        if isinstance(value, str):
            return int(value)
        return value


DecodedMessage = Union[KeepAliveAck, ErrorReport, TransactionEvent, Unrecognized]


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_transaction(data: Dict[str, Any]) -> TransactionEvent:
    """Build a TransactionEvent from the `data` object of a newTransaction message."""
    wrapper = data['tx']
    tx = _object(wrapper.get('tx'))
    mint = _object(wrapper.get('mint'))

    return TransactionEvent(
        tx_type=tx.get('txType'),
        tx_id=tx.get('txId'),
        mint_address=mint.get('onchainId'),
        seller=tx.get('seller'),
        buyer=tx.get('buyer'),
        gross_amount=tx.get('grossAmount'),
        gross_amount_unit=tx.get('grossAmountUnit'),
        collection_slug=mint.get('slug'),
        collection_id=wrapper.get('collId') or mint.get('collId'),
        name=mint.get('name'),
        owner=mint.get('owner'),
        image=mint.get('imageUri'),
        attributes=mint.get('attributes'),
    )


def decode_message(raw: Union[str, bytes]) -> DecodedMessage:
    """Decode one raw frame.

    Args:
        raw: Frame payload as received from the socket

    Returns:
        The decoded message variant

    Raises:
        MessageDecodeError: If the payload is not valid JSON
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise MessageDecodeError(repr(raw), str(e)) from e

    try:
        message = json.loads(raw)
    except ValueError as e:
        raise MessageDecodeError(raw, str(e)) from e

    if not isinstance(message, dict):
        return Unrecognized(payload=message)

    if message.get('type') == 'pong':
        return KeepAliveAck()

    if message.get('status') == 'error' or message.get('error'):
        error = message.get('error')
        text = error if isinstance(error, str) else message.get('message')
        return ErrorReport(message=str(text) if text is not None else 'unknown error')

    data = message.get('data')
    if (message.get('type') == 'newTransaction'
            and isinstance(data, dict)
            and isinstance(data.get('tx'), dict)):
        try:
            return parse_transaction(data)
        except ValueError as e:
            # pydantic ValidationError, e.g. a non-numeric amount
            raise MessageDecodeError(raw, str(e)) from e

    return Unrecognized(payload=message)
