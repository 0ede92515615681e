#!/usr/bin/env python3
"""
Cluster Verification Script

Checks that every configured Qdrant cluster profile is reachable with its
credentials by listing collections on each one.

Usage:
    python scripts/verify_clusters.py

Environment:
    Same variables as the server: QDRANT_URL, QDRANT_API_KEY,
    QDRANT_CLUSTER_PROFILES, QDRANT_MCP_CONFIG.
"""

import asyncio
import logging
import sys

from qdrant_mcp.clusters import ClusterProfile, ClusterRegistry
from qdrant_mcp.errors import BackendError, BackendUnavailableError
from qdrant_mcp.server.context import ServerContext

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def verify_cluster(registry: ClusterRegistry, profile: ClusterProfile) -> bool:
    """Verify a single cluster profile."""
    logger.info("-" * 50)
    logger.info(f"🔌 Verifying cluster: {profile.name}")
    logger.info(f"   Target: {profile.public_dict()['url']}")
    logger.info(f"   API key: {'set' if profile.api_key else 'not set'}")

    try:
        result = await registry.get_client(profile.name).list_collections()
    except BackendUnavailableError as e:
        logger.error(f"❌ Cluster '{profile.name}' is unreachable")
        logger.error(f"   Error: {e}")
        logger.info("💡 Check the URL and that Qdrant is running")
        return False
    except BackendError as e:
        logger.error(f"❌ Cluster '{profile.name}' rejected the request")
        logger.error(f"   Error: {e}")
        if e.status_code in (401, 403):
            logger.info("💡 Check the API key configured for this cluster")
        return False

    names = [c.get("name") for c in (result or {}).get("collections", [])]
    logger.info("✅ CONNECTION SUCCESSFUL!")
    logger.info(f"  Collections: {len(names)}")
    if names:
        logger.info(f"  Sample: {', '.join(names[:5])}")
    return True


async def verify_clusters() -> bool:
    """Verify every configured cluster profile."""
    context = ServerContext.from_settings()
    registry = context.registry
    profiles = registry.list_profiles()
    logger.info(f"✓ Configuration loaded: {len(profiles)} cluster(s) found")
    logger.info(f"  Active cluster: {registry.get_active()}")

    try:
        results = [await verify_cluster(registry, p) for p in profiles]
    finally:
        await registry.aclose()

    logger.info("-" * 50)
    if all(results):
        logger.info("🎉 All clusters are reachable")
    else:
        logger.error("❌ Some clusters failed verification. See logs above.")
    return all(results)


def main():
    """Main entry point."""
    print("=" * 70)
    print("Qdrant MCP - Cluster Verification")
    print("=" * 70)
    print()

    success = asyncio.run(verify_clusters())

    print()
    print("=" * 70)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
