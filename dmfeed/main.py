from __future__ import annotations

import asyncio
import logging

from dmfeed.config import CLIENT_CONFIG, load_config
from dmfeed.core import FeedClient
from dmfeed.features import FeedPrinter, LotteryWatcher


async def run_client() -> None:
    load_config()
    logging.basicConfig(level=CLIENT_CONFIG["log_level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    client = FeedClient()
    FeedPrinter(client)
    LotteryWatcher(client)

    await client.connect()
    try:
        await asyncio.Event().wait()
    finally:
        await client.close()


def main() -> None:
    try:
        asyncio.run(run_client())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
