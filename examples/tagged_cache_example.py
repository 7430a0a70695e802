"""Example demonstrating tag based invalidation with tagcache.

This example shows:
1. Backend selection from the environment (TAGCACHE_CACHE_BACKEND)
2. Saving entries with tags and lifetimes
3. Looking entries up by tag
4. Invalidating a group of entries with one clean() call

Run with a local MongoDB, or with TAGCACHE_CACHE_BACKEND=redis and a local
Redis server.
"""

import asyncio
import logging

from tagcache import CleaningMode, TagMatch, get_cache_backend


async def main():
    """Run the tagged cache example."""
    logging.basicConfig(level=logging.INFO)

    async with get_cache_backend(collection="C_Example") as cache:
        print(f"Backend: {cache.name} ({cache.url})")

        # Page fragments tagged by the records they render
        await cache.save("<li>Ada</li>", "user:1:row", tags=["user:1", "users"])
        await cache.save("<li>Bob</li>", "user:2:row", tags=["user:2", "users"])
        await cache.save("<ul>...</ul>", "users:list", tags=["users"], specific_lifetime=60)
        await cache.save("v1.2.3", "build", specific_lifetime=None)

        print("\nEntries tagged 'users':")
        for id in await cache.list_ids_by_tags(["users"], TagMatch.ALL):
            print(f"- {id}: {await cache.metadata(id)}")

        # User 1 changed: drop every fragment that depends on it
        await cache.clean(CleaningMode.MATCHING_ANY_TAG, ["user:1"])
        print(f"\nAfter invalidating user:1: {sorted(await cache.list_ids())}")

        print(f"Capabilities: {cache.capabilities()}")

        await cache.clean(CleaningMode.ALL)


if __name__ == "__main__":
    asyncio.run(main())
