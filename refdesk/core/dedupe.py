"""
Deterministic digests used for deduplicating job and batch requests.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable


def canonical_json(value: Any) -> str:
    """JSON with recursively sorted keys, so equal documents encode identically."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_orders(orders: Iterable[dict]) -> list[dict]:
    """Sort {matchId, officialId} pairs and drop exact duplicates."""
    pairs = {(str(o["matchId"]), str(o["officialId"])) for o in orders}
    return [
        {"matchId": match_id, "officialId": official_id}
        for match_id, official_id in sorted(pairs)
    ]


def mission_orders_hash(orders: Iterable[dict]) -> str:
    """Content hash of a mission-order set; the key of MissionOrderBatch."""
    document = {"v": 1, "type": "mission_orders", "items": normalize_orders(orders)}
    return sha256_hex(canonical_json(document))


def time_bucket(window_minutes: int, now: datetime | None = None) -> int:
    """Index of the dedupe window that contains ``now``."""
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() // (window_minutes * 60))


def job_dedupe_key(job_type: str, items: list[Any], bucket: int) -> str:
    document = {"v": 1, "type": job_type, "items": items, "bucket": bucket}
    return sha256_hex(canonical_json(document))
