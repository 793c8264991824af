from entitlement_bridge.features.entitlements.flags import (
    FIELD_IDS,
    PLAN_SEATS,
    allowed_slugs,
    build_entitlement_update,
    reset_update,
    seat_fields,
)


def test_update_covers_every_field():
    update = build_entitlement_update(["athletyx", "booty-shape"])
    assert update == {
        "athletyx": "1",
        "booty": "1",
        "upper": "0",
        "flow": "0",
        "fight": "0",
        "cycle": "0",
        "force": "0",
        "cardio": "0",
        "mobility": "0",
    }


def test_slug_to_field_mapping():
    update = build_entitlement_update(["upper-shape", "power-flow"])
    assert update["upper"] == "1"
    assert update["flow"] == "1"
    assert "upper-shape" not in update


def test_unknown_slugs_are_ignored():
    update = build_entitlement_update(["yoga", "Mobility "])
    assert update["mobility"] == "1"
    assert set(update) == set(FIELD_IDS)
    assert list(update.values()).count("1") == 1


def test_reset_clears_previous_purchase():
    assert set(reset_update().values()) == {"0"}
    assert set(reset_update()) == set(FIELD_IDS)


def test_allowed_slugs_defaults_to_full_table():
    assert len(allowed_slugs()) == 9
    assert allowed_slugs(["fight", "not-a-program"]) == ("fight",)


def test_seat_fields_for_team_plans():
    plan_id = next(p for p, seats in PLAN_SEATS.items() if seats == 3)
    assert seat_fields(plan_id) == {"active": "1", "teamowner": "1", "seats_total": "3", "seats_used": "0"}
    assert seat_fields("pln_unknown") == {}
    assert seat_fields(None) == {}
