# views/csv_export.py
"""
CSV exports of the redistribution.

Compact: one "epix_address,balance" line per destination, no header (the
format the airdrop tooling already consumes). Detailed: header row, then one
row per source claim; consolidated destinations repeat their final figure.
"""

import csv
import io
import json
import logging
from typing import Iterable, List

from redistribution import Redistribution, format_units

logger = logging.getLogger(__name__)

DETAILED_HEADER = [
    "epix_address",
    "x42_address",
    "claimed_balance",
    "destination_original_balance",
    "final_balance",
    "destination_deducted",
    "deduction_percentage",
    "signature",
    "raw_json",
]


def _payload_text(raw_json) -> str:
    if isinstance(raw_json, str):
        return raw_json
    return json.dumps(raw_json, separators=(",", ":"), ensure_ascii=False)


def _render(rows: Iterable[List[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue()


def compact_csv(result: Redistribution) -> str:
    scale = result.scale
    return _render(
        [d.epix_address, format_units(d.final_balance, scale)]
        for d in result.destinations
    )


def detailed_csv(result: Redistribution, claims) -> str:
    """`claims` must be the same claim set the redistribution was computed from."""
    scale = result.scale
    by_dest = result.by_destination()
    pct = result.deduction_percentage
    rows = [DETAILED_HEADER]
    for c in sorted(claims, key=lambda c: (c.epix_address, c.x42_address)):
        d = by_dest[c.epix_address]
        rows.append([
            c.epix_address,
            c.x42_address,
            format_units(c.snapshot_balance, scale),
            format_units(d.original_balance, scale),
            format_units(d.final_balance, scale),
            format_units(d.deducted, scale),
            pct,
            c.signature,
            _payload_text(c.raw_json),
        ])
    logger.info("Rendered detailed CSV: %d claims, %d destinations", len(rows) - 1, len(by_dest))
    return _render(rows)
