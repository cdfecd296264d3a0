"""Tensor listing listener.

Connects to Tensor's websocket API, listens for listing, delisting and sale
events on the monitored collections and keeps the nfts table current.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

from config import SettingsError, load_config
from database import init_db, get_pool, close as db_close
from monitor import monitor_transactions
from nfts import NFTStore
from notifications import build_dispatcher
from tensor import ConnectionManager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run(settings_path: Optional[str] = None) -> int:
    """Run the listener until a shutdown signal.

    Returns:
        Process exit status
    """
    try:
        settings = load_config(settings_path)
    except SettingsError as e:
        logger.error(f"Configuration Error\n{e}")
        return 1

    logging.getLogger().setLevel(settings['log_level'].upper())
    collections = settings['collections']
    logger.info(
        f"Monitoring {len(collections)} collection(s): "
        f"{', '.join(collection.key for collection in collections)}"
    )

    logger.info("Initializing database...")
    await init_db(settings['db_url'])
    pool = await get_pool()

    dispatcher = build_dispatcher(settings, pool)
    monitor = monitor_transactions(
        NFTStore(pool),
        dispatcher,
        collections=collections,
        name_max_length=settings['name_max_length'],
    )
    manager = ConnectionManager(
        settings['tensor_api_key'],
        monitor.process_transaction,
        collections=collections,
        url=settings['tensor_ws_url'],
        ping_interval=settings['ping_interval'],
        base_delay_ms=settings['reconnect_base_delay_ms'],
        max_delay_ms=settings['reconnect_max_delay_ms'],
    )

    # Register shutdown handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, manager.request_shutdown, sig.name)

    grace_period = settings['shutdown_grace_period']
    try:
        await manager.serve(grace_period)
        await dispatcher.drain(grace_period)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await db_close()

    logger.info("Goodbye!")
    return 0


def main() -> None:
    """Main application entry point."""
    try:
        status = asyncio.run(run())
    except KeyboardInterrupt:
        status = 0
    sys.exit(status)


if __name__ == "__main__":
    main()
