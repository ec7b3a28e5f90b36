#!/usr/bin/env python3
"""
Print the backward lineage of any referenced entity.

Usage:
    # Lineage of a published content item
    python scripts/trace_lineage.py content_item:0190a1b2-...

    # Lineage of an observation, as JSON
    python scripts/trace_lineage.py observation:0190a1b2-... --json

Requirements:
    - Database must be running (docker-compose up -d postgres)
"""

import argparse
import asyncio
import json
import sys
import warnings
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from evidence_core.core.exceptions import EngineError, LineageCycleDetected  # noqa: E402
from evidence_core.db import get_db_context  # noqa: E402
from evidence_core.services import ProvenanceLedger, Ref  # noqa: E402


async def trace(ref: str, as_json: bool) -> int:
    start = Ref.parse(ref)
    async with get_db_context() as db:
        ledger = ProvenanceLedger(db)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", LineageCycleDetected)
            entries = await ledger.lineage(start)
        cycles = [w for w in caught if issubclass(w.category, LineageCycleDetected)]

    if as_json:
        print(
            json.dumps(
                {
                    "ref": str(start),
                    "cycles_detected": len(cycles),
                    "entries": [entry.to_dict() for entry in entries],
                },
                indent=2,
            )
        )
        return 0

    print(f"Lineage of {start} ({len(entries)} entries)")
    print("=" * 60)
    for entry in entries:
        inputs = ", ".join(f"{kind}x{len(ids)}" for kind, ids in entry.input_refs.items()) or "-"
        outputs = ", ".join(f"{kind}x{len(ids)}" for kind, ids in entry.output_refs.items()) or "-"
        print(f"{entry.created_at.isoformat()}  {entry.action.value:<10} {inputs}  ->  {outputs}")
        if entry.formula:
            print(f"{'':>34}formula: {entry.formula}")
    for w in cycles:
        print(f"WARNING: {w.message}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Print the lineage of a 'kind:uuid' reference")
    parser.add_argument("ref", help="Reference, e.g. observation:0190a1b2-...")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(trace(args.ref, args.json)))
    except EngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
