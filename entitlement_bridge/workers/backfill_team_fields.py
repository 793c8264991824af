"""
Team custom-field backfill.

Groups members by ``teamid`` (falling back to their plan id), then makes
sure the owner carries ``teamowner="1"`` and every other member carries
``teamowner="0"``, the group's ``teamid`` and the owner's ``club``.

Dry-run by default: patches are computed and reported, not sent.
"""
from __future__ import annotations

import argparse
import os
import time
from typing import Any, Dict, List, Optional

from entitlement_bridge.core.config import load_bridge_config
from entitlement_bridge.core.errors import ProviderError
from entitlement_bridge.core.logging import configure_logging, log_event
from entitlement_bridge.features.entitlements.flags import TEAM_OWNER_FIELD
from entitlement_bridge.features.members.client import MemberstackClient

TEAM_ID_FIELD = "teamid"
CLUB_FIELD = "club"


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _fields(member: Dict[str, Any]) -> Dict[str, Any]:
    fields = member.get("customFields")
    return fields if isinstance(fields, dict) else {}


def _plan_id(member: Dict[str, Any]) -> Optional[str]:
    if member.get("planId"):
        return str(member["planId"])
    for connection in member.get("planConnections") or []:
        if isinstance(connection, dict) and connection.get("planId"):
            return str(connection["planId"])
    return None


def group_members(members: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for member in members:
        if not member.get("id"):
            continue
        team_id = str(_fields(member).get(TEAM_ID_FIELD) or "") or _plan_id(member)
        if team_id:
            groups.setdefault(team_id, []).append(member)
    return groups


def plan_team_patches(team_id: str, members: List[Dict[str, Any]]) -> Dict[str, Dict[str, str]]:
    """Member id -> fields that differ from the target state. Empty if the group has no owner."""
    owner = next((m for m in members if str(_fields(m).get(TEAM_OWNER_FIELD) or "") == "1"), None)
    if owner is None:
        return {}

    owner_fields = _fields(owner)
    club = str(owner_fields.get(CLUB_FIELD) or "")
    patches: Dict[str, Dict[str, str]] = {}

    owner_patch = {}
    if str(owner_fields.get(TEAM_ID_FIELD) or "") != team_id:
        owner_patch[TEAM_ID_FIELD] = team_id
    if owner_patch:
        patches[owner["id"]] = owner_patch

    for member in members:
        if member is owner:
            continue
        fields = _fields(member)
        patch = {}
        if str(fields.get(TEAM_ID_FIELD) or "") != team_id:
            patch[TEAM_ID_FIELD] = team_id
        if str(fields.get(TEAM_OWNER_FIELD) or "") != "0":
            patch[TEAM_OWNER_FIELD] = "0"
        if club and str(fields.get(CLUB_FIELD) or "") != club:
            patch[CLUB_FIELD] = club
        if patch:
            patches[member["id"]] = patch
    return patches


def run_backfill(client: MemberstackClient, env: str, *, dry_run: bool = True, per_minute: int = 120) -> Dict:
    results = {"groups": 0, "skipped": 0, "changed": 0, "failed": 0, "dry_run": dry_run, "env": env}
    delay = 0 if per_minute <= 0 else max(0.0, 60.0 / float(per_minute))

    groups = group_members(client.list_members(env))
    results["groups"] = len(groups)

    for team_id, members in groups.items():
        patches = plan_team_patches(team_id, members)
        if not patches:
            results["skipped"] += 1
            continue
        for member_id, patch in patches.items():
            if dry_run:
                log_event("info", "backfill.dry_update", member_id=member_id, env=env, extra={"team_id": team_id, "update": patch})
                results["changed"] += 1
                continue
            try:
                client.patch_custom_fields(env, member_id, patch)
                results["changed"] += 1
            except ProviderError as exc:
                log_event("error", "backfill.patch_failed", member_id=member_id, env=env, error_code=exc.code, extra={"error": exc.message})
                results["failed"] += 1
            if delay:
                time.sleep(delay)

    return results


def main() -> int:
    parser = argparse.ArgumentParser(description="Backfill Memberstack team custom fields (teamid, teamowner, club).")
    parser.add_argument("--env", dest="env", choices=("test", "live"), default=os.getenv("BACKFILL_ENV", "test"))
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Compute patches without sending them.")
    parser.add_argument("--live", dest="dry_run", action="store_false", help="Send the patches to Memberstack.")
    parser.add_argument("--per-minute", dest="per_minute", type=int, default=int(os.getenv("BACKFILL_PER_MINUTE", "120")))
    parser.set_defaults(dry_run=_parse_bool(os.getenv("BACKFILL_DRY_RUN", "1"), True))
    args = parser.parse_args()

    configure_logging(os.getenv("ENV", "development"))
    cfg = load_bridge_config()
    client = MemberstackClient(cfg.memberstack_keys, cfg.memberstack_shared_key, base_url=cfg.memberstack_base)
    result = run_backfill(client, args.env, dry_run=args.dry_run, per_minute=args.per_minute)
    print(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
