"""Program slugs and the Memberstack custom fields they map to."""
from typing import Dict, Iterable, Optional, Sequence, Tuple


# Ordered: user-facing slug -> custom field id.
PROGRAM_FIELDS: Dict[str, str] = {
    "athletyx": "athletyx",
    "booty-shape": "booty",
    "upper-shape": "upper",
    "power-flow": "flow",
    "fight": "fight",
    "cycle": "cycle",
    "force": "force",
    "cardio": "cardio",
    "mobility": "mobility",
}

FIELD_IDS: Tuple[str, ...] = tuple(PROGRAM_FIELDS.values())

TEAM_OWNER_FIELD = "teamowner"

# Memberstack seat-tier plans -> licence count.
PLAN_SEATS: Dict[str, int] = {
    "pln_aleop-1-license-7x1ng0yup": 1,
    "pln_aleop-2-licenses-671nh0yv8": 2,
    "pln_aleop-3-licenses-6hfd0a8b": 3,
    "pln_aleop-4-licenses-kf1lq0vb7": 4,
    "pln_aleop-5-licenses-00fb0aa9": 5,
    "pln_aleop-6-licenses-t9hp0fjy": 6,
    "pln_aleop-7-licenses-38hq0fvb": 7,
    "pln_aleop-8-licenses-1zhs0fw1": 8,
    "pln_aleop-9-licenses-iefe0a7f": 9,
}


def allowed_slugs(configured: Optional[Sequence[str]] = None) -> Tuple[str, ...]:
    """The effective allow-list: configured slugs restricted to the table."""
    if not configured:
        return tuple(PROGRAM_FIELDS)
    return tuple(slug for slug in PROGRAM_FIELDS if slug in set(configured))


def build_entitlement_update(programs: Iterable[str]) -> Dict[str, str]:
    """Every field id, "1" when its program is selected, otherwise "0".

    Unknown slugs are ignored. The result always covers the whole field set
    so a previous purchase cannot leave a stale "1" behind.
    """
    selected = {str(p).strip().lower() for p in programs or []}
    return {field: "1" if slug in selected else "0" for slug, field in PROGRAM_FIELDS.items()}


def reset_update() -> Dict[str, str]:
    return build_entitlement_update([])


def seat_fields(plan_id: Optional[str]) -> Dict[str, str]:
    """Extra fields for seat-tier plans; empty for any other plan."""
    seats = PLAN_SEATS.get(plan_id or "")
    if not seats:
        return {}
    return {
        "active": "1",
        TEAM_OWNER_FIELD: "1",
        "seats_total": str(seats),
        "seats_used": "0",
    }
