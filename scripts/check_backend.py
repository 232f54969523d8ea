#!/usr/bin/env python
"""Check gateway and Encore backend status."""
import asyncio
import sys

import httpx

from encore_console.config import settings
from encore_console.core.exceptions import BackendRequestError
from encore_console.core.logging import logger
from encore_console.client.backend import EncoreClient
from encore_console.client.config_store import JsonFileConfigStore
from encore_console.client.sync import EncoreSync


CONFIG_PATH = "~/.config/encore-console/config.json"


async def check_gateway(gateway_url: str) -> bool:
    """Check the gateway health endpoint."""
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(f"{gateway_url.rstrip('/')}/health")
        response.raise_for_status()
        health = response.json()
        logger.info(f"✓ Gateway is up, auth method: {health.get('authMethod')}")
        logger.info(f"  Encore API: {health.get('encoreApiUrl')}")
        return True
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"✗ Gateway check failed: {e}")
        return False


async def check_backend(sync: EncoreSync) -> bool:
    """Check that the backend answers and summarize its state."""
    if not await sync.client.ping():
        logger.error(f"✗ Encore API at {sync.client.base_url} is not reachable")
        return False
    logger.info(f"✓ Encore API at {sync.client.base_url} is reachable")

    try:
        counts = await sync.status_counts()
        queue = await sync.sorted_queue()
    except BackendRequestError as e:
        logger.error(f"✗ Failed to read jobs or queue: {e}")
        return False

    logger.info(f"Jobs: {counts.total} total")
    for name, value in counts.model_dump(by_alias=True).items():
        if name != "total":
            logger.info(f"  {name}: {value}")

    logger.info(f"Queue: {len(queue)} waiting")
    for item in queue:
        logger.info(f"  {item.id} priority={item.priority} created={item.created.isoformat()}")
    return True


async def main() -> int:
    """Main function."""
    gateway_url = f"http://localhost:{settings.port}"
    config = JsonFileConfigStore(CONFIG_PATH).load()

    logger.info("=" * 60)
    logger.info("Encore Console Status Check")
    logger.info("=" * 60)

    results = []

    logger.info("\n1. Checking gateway...")
    results.append(await check_gateway(gateway_url))

    logger.info("\n2. Checking Encore API...")
    async with EncoreClient.from_config(config) as client:
        results.append(await check_backend(EncoreSync(client)))

    logger.info("\n" + "=" * 60)
    if all(results):
        logger.info("✓ All checks passed")
        return 0
    logger.error("✗ Some checks failed - Please review the errors above")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
