"""
Failover demo for the HA tester.

Starts all components against a live replica set, runs for a fixed window
(step the primary down meanwhile, e.g. ``rs.stepDown()`` in mongosh), then
stops and prints the final statistics and the last validation verdict.
"""

import asyncio
import json

from loguru import logger

from ha_tester import HATester, get_settings

RUN_SECONDS = 60


async def main():
    tester = HATester(get_settings())
    report = await tester.initialize()
    if not report.any_ready:
        logger.error("Nothing to run; is the replica set up?")
        return

    await tester.start()
    logger.info(f"🚀 Running for {RUN_SECONDS}s - trigger a failover now")
    await asyncio.sleep(RUN_SECONDS)

    stats = await tester.stop()
    print(json.dumps(stats.model_dump(mode="json"), indent=2))

    last = tester.validator.last_report
    if last is not None:
        logger.info(f"Last validation: {last.summary}")


if __name__ == "__main__":
    asyncio.run(main())
