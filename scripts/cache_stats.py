"""
Print extraction cache usage and the most recent comparisons stored in MongoDB.
Useful for checking how often re-submitted documents skip the AI call.
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.mongodb_service import mongodb_service


async def main():
    await mongodb_service.connect()

    try:
        stats = await mongodb_service.get_cache_stats(top=10)
        recent = await mongodb_service.get_recent_comparisons(limit=10)
    finally:
        await mongodb_service.disconnect()

    print("=" * 70)
    print("EXTRACTION CACHE")
    print("=" * 70)
    print(f"Cached extractions: {stats['total_cached']}")
    print(f"Cache hits:         {stats['total_hits']}")
    if stats["total_cached"]:
        print(f"Hits per entry:     {stats['total_hits'] / stats['total_cached']:.2f}")
    print()
    print("Top insurers:")
    for row in stats["top_insurers"]:
        print(f"  • {row['insurer']}: {row['count']}")
    print()

    print("=" * 70)
    print("RECENT COMPARISONS")
    print("=" * 70)
    if not recent:
        print("No comparisons stored yet")
    for comparison in recent:
        print(
            f"  {comparison.get('comparison_id')}  "
            f"{comparison.get('client_name') or '-':<30}  "
            f"{comparison.get('mode', '-')}  {comparison.get('created_at', '')}"
        )


if __name__ == "__main__":
    asyncio.run(main())
