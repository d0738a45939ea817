from __future__ import annotations

from roadmap.store.migrations import CURRENT_SCHEMA_VERSION, migrate_registry
from roadmap.store.versioned import REGISTRY_KEY


def _legacy_item() -> dict:
    return {
        "id": "r_legacy01",
        "title": "Legacy Tool",
        "founder": {"account_id": "bc1qfounder0000", "display_name": "Founder"},
        "claimed_by": {
            "account": {"account_id": "bc1qalice000000", "display_name": "Alice"},
            "claimed_at": "2025-01-05T00:00:00+00:00",
        },
        "mentions": {"count": 4},
        "snapshot": {"kind": "repo", "homepage": "https://legacy.vercel.app"},
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-02-01T00:00:00+00:00",
    }


def test_legacy_registry_upgrades_to_current_schema() -> None:
    migrated = migrate_registry({"items": [_legacy_item()]})
    item = migrated["items"][0]

    assert migrated["schema_version"] == CURRENT_SCHEMA_VERSION
    assert item["mentions"] == 4
    assert item["contributors"] == [] and item["deliverables"] == [] and item["goal_history"] == []
    assert item["leader"]["account"]["account_id"] == "bc1qalice000000"
    assert item["leader"]["last_active_at"] == "2025-02-01T00:00:00+00:00"
    assert item["website"]["url"] == "https://legacy.vercel.app"
    assert item["website"]["source"] == "homepage"
    assert item["search_terms"] == []


def test_migrations_are_idempotent() -> None:
    once = migrate_registry({"items": [_legacy_item()]})
    twice = migrate_registry(once)

    assert twice == once


def test_non_homepage_websites_are_dropped_for_rediscovery() -> None:
    item = _legacy_item()
    item["website"] = {"url": "https://x.pages.dev", "source": "readme", "discovered_at": "2025-01-01T00:00:00+00:00"}

    migrated = migrate_registry({"schema_version": 5, "items": [item]})

    assert migrated["items"][0]["website"] is None


def test_newer_schema_version_is_never_downgraded() -> None:
    migrated = migrate_registry({"schema_version": CURRENT_SCHEMA_VERSION + 3, "items": []})

    assert migrated["schema_version"] == CURRENT_SCHEMA_VERSION + 3


def test_store_load_migrates_without_touching_stored_blob(kv, store) -> None:
    kv.put(REGISTRY_KEY, {"items": [_legacy_item()]})

    registry = store.load()

    assert registry.schema_version == CURRENT_SCHEMA_VERSION
    assert registry.write_version == 1
    assert registry.items[0].mentions == 4
    assert "schema_version" not in kv.get(REGISTRY_KEY).value
