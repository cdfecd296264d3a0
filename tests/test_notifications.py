"""Tests for the notifications module."""

import asyncio
import threading
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from notifications import (
    DiscordChannel,
    EmailChannel,
    NotificationDispatcher,
    NotificationError,
    NotificationSummary,
    build_dispatcher,
    format_price,
    truncate_wallet,
)
from notifications.email import RESEND_URL

SELLER = "SeLLerWa11et1111111111111111111111111111111"
BUYER = "BuyerWa11et11111111111111111111111111111111"


def make_summary(tx_type="LIST", **overrides):
    fields = {
        "tx_type": tx_type,
        "tx_id": "tx-1",
        "mint_address": "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
        "name": "PSA 10 Charizard",
        "price": Decimal("600.00"),
        "currency": "USDC",
        "seller": SELLER,
        "buyer": BUYER,
        "owner": SELLER,
        "image": "https://arweave.net/charizard.png",
        "collection_slug": "collector-crypt",
    }
    fields.update(overrides)
    return NotificationSummary(**fields)


def fake_session(error=None):
    session = MagicMock()
    response = MagicMock()
    if error:
        response.raise_for_status.side_effect = error
    session.post.return_value = response
    return session


class FakeConnection:
    def __init__(self, row):
        self.row = row
        self.queries = []

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        return self.row


class FakePool:
    def __init__(self, row=None):
        self.conn = FakeConnection(row)

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class RecordingChannel:
    name = 'recording'

    def __init__(self):
        self.summaries = []

    async def send(self, summary):
        self.summaries.append(summary)


class FailingChannel:
    name = 'failing'

    async def send(self, summary):
        raise NotificationError("webhook returned 500")


def test_format_price():
    assert format_price(Decimal("600"), "USDC") == "$600.00 USDC"
    assert format_price(Decimal("1.5"), "SOL") == "◎1.5000 SOL"


def test_truncate_wallet():
    assert truncate_wallet(SELLER) == "SeLL...1111"
    assert truncate_wallet("short") == "short"
    assert truncate_wallet(None) == ""


@pytest.mark.asyncio
async def test_dispatcher_isolates_channel_failures():
    recording = RecordingChannel()
    dispatcher = NotificationDispatcher([FailingChannel(), recording])

    dispatcher.dispatch(make_summary())
    assert dispatcher.pending == 1
    await dispatcher.drain(1.0)

    assert dispatcher.pending == 0
    assert len(recording.summaries) == 1


@pytest.mark.asyncio
async def test_dispatcher_drain_abandons_slow_channels():
    class SlowChannel:
        name = 'slow'

        async def send(self, summary):
            await asyncio.sleep(10)

    dispatcher = NotificationDispatcher([SlowChannel()])
    dispatcher.dispatch(make_summary())

    await asyncio.wait_for(dispatcher.drain(0.05), timeout=2)
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_dispatcher_without_channels_is_a_no_op():
    dispatcher = NotificationDispatcher()
    dispatcher.dispatch(make_summary())
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_discord_alerts_at_threshold():
    session = fake_session()
    channel = DiscordChannel("https://discord.test/webhook", session=session)

    await channel.send(make_summary(price=Decimal("600.00"), currency="USDC"))

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args[0] == "https://discord.test/webhook"
    embed = kwargs["json"]["embeds"][0]
    assert embed["url"] == (
        "https://www.graded.world/collector-crypt/7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
    )
    assert embed["image"] == {"url": "https://arweave.net/charizard.png"}
    assert {"name": "Price", "value": "$600.00 USDC", "inline": True} in embed["fields"]


@pytest.mark.asyncio
async def test_discord_converts_sol_listings():
    session = fake_session()
    channel = DiscordChannel("https://discord.test/webhook", sol_usd_rate=150, session=session)

    await channel.send(make_summary(price=Decimal("3.9"), currency="SOL"))
    session.post.assert_not_called()

    await channel.send(make_summary(price=Decimal("5"), currency="SOL"))
    session.post.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("summary", [
    make_summary(price=Decimal("599.99")),
    make_summary(price=None),
    make_summary("SALE", price=Decimal("5000")),
    make_summary("DELIST", price=None),
])
async def test_discord_skips(summary):
    session = fake_session()
    channel = DiscordChannel("https://discord.test/webhook", session=session)

    await channel.send(summary)

    session.post.assert_not_called()


@pytest.mark.asyncio
async def test_discord_http_error_raises_notification_error():
    session = fake_session(error=requests.exceptions.HTTPError("429 Too Many Requests"))
    channel = DiscordChannel("https://discord.test/webhook", session=session)

    with pytest.raises(NotificationError):
        await channel.send(make_summary(price=Decimal("1000")))


def test_email_recipients():
    channel = EmailChannel("re_key", "noreply@graded.world", FakePool(), session=fake_session())

    wallet, subject, _ = channel.compose(make_summary("SALE"))
    assert wallet == SELLER
    assert "sold" in subject

    wallet, subject, _ = channel.compose(make_summary("LIST"))
    assert wallet == SELLER
    assert "$600.00 USDC" in subject

    wallet, subject, _ = channel.compose(make_summary("DELIST", owner="OwnerWallet", price=None))
    assert wallet == "OwnerWallet"
    assert "delisted" in subject

    assert channel.compose(make_summary("LIST", price=None)) is None
    assert channel.compose(make_summary("PLACE_BID")) is None


@pytest.mark.asyncio
async def test_email_sent_to_profile_address():
    session = fake_session()
    pool = FakePool({"email": "collector@example.com", "display_name": "Ash"})
    channel = EmailChannel("re_key", "noreply@graded.world", pool, session=session)

    await channel.send(make_summary("SALE"))

    assert pool.conn.queries[0][1] == (SELLER,)
    args, kwargs = session.post.call_args
    assert args[0] == RESEND_URL
    assert kwargs["headers"] == {"Authorization": "Bearer re_key"}
    assert kwargs["json"]["to"] == ["collector@example.com"]
    assert kwargs["json"]["text"].startswith("Hi Ash,")


@pytest.mark.asyncio
@pytest.mark.parametrize("row", [None, {"email": None, "display_name": "Ash"}])
async def test_email_skipped_without_address(row):
    session = fake_session()
    channel = EmailChannel("re_key", "noreply@graded.world", FakePool(row), session=session)

    await channel.send(make_summary("SALE"))

    session.post.assert_not_called()


def test_build_dispatcher_channels():
    settings = {
        'discord_webhook_url': 'https://discord.test/webhook',
        'high_value_threshold_usdc': 600,
        'sol_usd_rate': 150,
        'resend_api_key': '',
        'resend_from_email': 'noreply@graded.world',
    }
    dispatcher = build_dispatcher(settings, FakePool())
    assert [channel.name for channel in dispatcher.channels] == ['discord']

    settings.update(discord_webhook_url='', resend_api_key='re_key')
    dispatcher = build_dispatcher(settings, FakePool())
    assert [channel.name for channel in dispatcher.channels] == ['email']


@pytest.mark.asyncio
async def test_channel_posts_one_at_a_time():
    class CountingSession:
        def __init__(self):
            self.lock = threading.Lock()
            self.active = 0
            self.max_active = 0

        def post(self, url, **kwargs):
            with self.lock:
                self.active += 1
                self.max_active = max(self.max_active, self.active)
            time.sleep(0.02)
            with self.lock:
                self.active -= 1
            return MagicMock()

    session = CountingSession()
    channel = DiscordChannel("https://discord.test/webhook", session=session)

    await asyncio.gather(*(
        channel.post_json("https://discord.test/webhook", {"n": n}) for n in range(4)
    ))

    assert session.max_active == 1
