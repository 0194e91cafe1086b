"""Check EigenAI badge status, recent submissions and competition stats on Recall."""
import asyncio
import os

from dotenv import load_dotenv

from eigentrader.recall.client import RegistryClient

load_dotenv()


async def main() -> None:
    competition_id = os.environ["RECALL_COMPETITION_ID"]
    registry = RegistryClient(os.environ.get("RECALL_API_URL"), os.environ.get("RECALL_API_KEY"))
    try:
        badge = await registry.get_badge_status(competition_id)
        submissions = await registry.get_submissions(competition_id, limit=10)
        stats = await registry.get_competition_stats(competition_id)
    finally:
        await registry.close()

    if badge.success:
        b = badge.data
        state = "ACTIVE" if b.get("isBadgeActive") else "inactive"
        print(f"Badge: {state} ({b.get('signaturesLast24h', 0)} signatures in 24h, last {b.get('lastVerifiedAt')})")
    else:
        print(f"Badge lookup failed: {badge.error}")

    if submissions.success:
        rows = submissions.data.get("submissions", [])
        print(f"\nRecent submissions: {len(rows)}")
        for s in rows:
            print(f"  {s.get('submittedAt')}  {s.get('verificationStatus'):<9}  {s.get('modelId')}")
    else:
        print(f"\nSubmissions lookup failed: {submissions.error}")

    if stats.success:
        print("\nCompetition stats:")
        for k, v in sorted(stats.data.items()):
            if k != "success":
                print(f"  {k}: {v}")
    else:
        print(f"\nStats lookup failed: {stats.error}")


if __name__ == "__main__":
    asyncio.run(main())
