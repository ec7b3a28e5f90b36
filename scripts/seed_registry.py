#!/usr/bin/env python3
"""
Seed the approval agents, default policies and (optionally) sample sources.

This script:
1. Registers the eight approval-stage agents (idempotent)
2. Upserts an approval policy per content type with the settings defaults
3. Registers a small set of sample sources when --with-sources is given

Usage:
    # Agents and default policies only
    python scripts/seed_registry.py

    # Policies for specific content types
    python scripts/seed_registry.py --content-type daily_brief --content-type sector_report

    # Also register sample sources
    python scripts/seed_registry.py --with-sources

Requirements:
    - Database must be running (docker-compose up -d postgres)
    - Migration must be applied (alembic upgrade head)
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from evidence_core.core.logging import get_logger, setup_logging  # noqa: E402
from evidence_core.db import Frequency, SourceTier, get_db_context, transaction  # noqa: E402
from evidence_core.services import ApprovalPipeline, StewardshipService  # noqa: E402

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPES = ["daily_brief", "sector_report", "indicator_note"]

# src_id, name_en, tier, cadence
SAMPLE_SOURCES: list[tuple[str, str, SourceTier, Frequency]] = [
    ("SRC-001", "Central Bank of Yemen - Aden", SourceTier.T1, Frequency.DAILY),
    ("SRC-002", "Central Bank of Yemen - Sanaa", SourceTier.T1, Frequency.DAILY),
    ("SRC-003", "World Bank Open Data", SourceTier.T1, Frequency.ANNUAL),
    ("SRC-004", "WFP Market Monitor", SourceTier.T2, Frequency.MONTHLY),
    ("SRC-005", "Local exchange bureau survey", SourceTier.T3, Frequency.WEEKLY),
]


async def seed(content_types: list[str], with_sources: bool, actor: str) -> None:
    async with get_db_context() as db:
        async with transaction(db):
            agents = await ApprovalPipeline(db).ensure_agents()
            print(f"Agents registered: {len(agents)}")

            steward = StewardshipService(db, actor=actor)
            for content_type in content_types:
                policy = await steward.upsert_policy(content_type, reason="Initial seed")
                print(
                    f"Policy {content_type}: mode={policy.approval_mode} "
                    f"min_citations={policy.min_citations} coverage={policy.min_evidence_coverage}"
                )

            if with_sources:
                for src_id, name_en, tier, cadence in SAMPLE_SOURCES:
                    source = await steward.register_source(src_id, name_en, tier=tier, cadence=cadence)
                    print(f"Source {source.src_id}: {source.name_en} ({source.tier.value})")

    logger.info("Registry seeded", content_types=content_types, with_sources=with_sources)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed approval agents, policies and sample sources")
    parser.add_argument(
        "--content-type",
        action="append",
        dest="content_types",
        help="Content type to create a default policy for (repeatable)",
    )
    parser.add_argument(
        "--with-sources",
        action="store_true",
        help="Also register sample sources",
    )
    parser.add_argument(
        "--actor",
        default="seed-script",
        help="Actor recorded in the audit log",
    )
    args = parser.parse_args()

    setup_logging()
    asyncio.run(seed(args.content_types or DEFAULT_CONTENT_TYPES, args.with_sources, args.actor))


if __name__ == "__main__":
    main()
