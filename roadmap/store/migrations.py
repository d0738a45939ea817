"""Ordered, idempotent schema migrations applied to the registry on load."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from roadmap.utils.helpers import utc_now

ItemMigration = Callable[[dict[str, Any], str], None]


@dataclass(frozen=True)
class Migration:
    target_version: int
    description: str
    apply: ItemMigration


def _fill_collections(item: dict[str, Any], _now: str) -> None:
    item.setdefault("claimed_by", None)
    for field in ("contributors", "deliverables", "ratings", "goals"):
        if not isinstance(item.get(field), list):
            item[field] = []
    if not isinstance(item.get("reputation"), dict):
        item["reputation"] = {"average": 0.0, "count": 0}
    mentions = item.get("mentions")
    if isinstance(mentions, dict):
        item["mentions"] = int(mentions.get("count") or 0)
    elif not isinstance(mentions, int):
        item["mentions"] = 0


def _add_leader(item: dict[str, Any], now: str) -> None:
    if "leader" in item:
        return
    claim = item.get("claimed_by") or {}
    account = claim.get("account") or item.get("founder")
    if not account:
        item["leader"] = None
        return
    item["leader"] = {
        "account": account,
        "assigned_at": claim.get("claimed_at") or item.get("created_at") or now,
        "last_active_at": item.get("updated_at") or item.get("created_at") or now,
    }


def _add_search_terms(item: dict[str, Any], _now: str) -> None:
    if not isinstance(item.get("search_terms"), list):
        item["search_terms"] = []


def _add_website(item: dict[str, Any], now: str) -> None:
    if "website" in item:
        return
    homepage = (item.get("snapshot") or {}).get("homepage")
    item["website"] = {"url": homepage, "source": "homepage", "discovered_at": now} if homepage else None


def _add_goal_history(item: dict[str, Any], _now: str) -> None:
    if not isinstance(item.get("goal_history"), list):
        item["goal_history"] = []


def _drop_heuristic_websites(item: dict[str, Any], _now: str) -> None:
    # Claims found by older filter rules are rediscovered by the website scan
    website = item.get("website")
    if website and website.get("source") != "homepage":
        item["website"] = None


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "collection fields and mention counter", _fill_collections),
    Migration(2, "explicit leader", _add_leader),
    Migration(3, "operator search terms", _add_search_terms),
    Migration(4, "website claim seeded from homepage", _add_website),
    Migration(5, "goal history", _add_goal_history),
    Migration(6, "rediscover non-homepage websites", _drop_heuristic_websites),
)

CURRENT_SCHEMA_VERSION = MIGRATIONS[-1].target_version


def migrate_registry(raw: dict[str, Any] | None, *, now: datetime | None = None) -> dict[str, Any]:
    """Return a copy of ``raw`` upgraded to ``CURRENT_SCHEMA_VERSION``.

    Steps below the stored version are skipped; a registry written by a newer
    schema keeps its version.
    """
    data = copy.deepcopy(raw) if raw else {}
    items = data.get("items")
    if not isinstance(items, list):
        items = []
        data["items"] = items

    stored_version = int(data.get("schema_version") or 0)
    timestamp = (now or utc_now()).isoformat()
    version = stored_version
    for migration in MIGRATIONS:
        if version >= migration.target_version:
            continue
        for item in items:
            if isinstance(item, dict):
                migration.apply(item, timestamp)
        version = migration.target_version

    data["schema_version"] = max(version, stored_version)
    return data
