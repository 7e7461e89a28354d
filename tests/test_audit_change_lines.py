from member_admin.services.audit_rows import (
    build_change_lines,
    build_event_label,
    build_field_diff_line,
    format_field_value,
    privilege_label,
)

from conftest import ADMIN_ID


def _row(action, details=None, actor_id=ADMIN_ID):
    return {"action": action, "actor_id": actor_id, "details": details}


def test_rename_before_after():
    row = _row("member.rename", {
        "previous_firstname": "Ola",
        "previous_lastname": "Hansen",
        "firstname": "Ole",
        "lastname": "Hansen",
    })
    assert build_change_lines(row) == ["Navn: Ola Hansen -> Ole Hansen"]


def test_rename_without_change_shows_current_name():
    row = _row("member.rename", {"previous_firstname": "Ole", "firstname": "Ole"})
    assert build_change_lines(row) == ["Navn: Ole"]


def test_privilege_update_uses_labels():
    row = _row("member.privilege.update", {"previous_privilege_type": 1, "privilege_type": 2})
    assert build_change_lines(row) == ["Tilgang: Medlem -> Frivillig"]


def test_privilege_update_accepts_numeric_strings():
    row = _row("member.privilege.update", {"previous_privilege_type": "3", "privilege_type": "4"})
    assert build_change_lines(row) == ["Tilgang: Gruppeleder -> Stortinget"]


def test_privilege_update_bulk_count_fallback():
    row = _row("member.privilege.update", {"privilege_type": None, "updated_count": 12})
    assert build_change_lines(row) == ["Tilgang oppdatert for 12 medlemmer"]


def test_privilege_label_unknown_value():
    assert privilege_label(9) == "9"
    assert privilege_label("x") is None


def test_membership_status_infers_previous_value():
    row = _row("member.membership_status.update", {"is_active": False})
    assert build_change_lines(row) == ["Aktivt medlemskap: Ja -> Nei"]


def test_membership_status_bulk_counts():
    row = _row("member.membership_status.update", {
        "is_active": True,
        "previous_is_active": None,
        "updated_count": 3,
        "unchanged_member_ids": ["a", "b"],
    })
    assert build_change_lines(row) == [
        "Aktivt medlemskap: Nei -> Ja",
        "Antall oppdatert: 3",
        "Antall uendret: 2",
    ]


def test_ban_and_unban():
    assert build_change_lines(_row("member.ban", {"is_banned": True, "is_membership_active": False})) == [
        "Kontostatus: Bannlyst",
        "Aktivt medlemskap: Nei",
    ]
    assert build_change_lines(_row("member.unban", {"next_banned": False})) == ["Kontostatus: OK"]


def test_create_and_activate():
    row = _row("member.create", {"privilege_type": 1, "is_membership_active": True})
    assert build_change_lines(row) == ["Tilgang: Medlem", "Aktivt medlemskap: Ja"]
    assert build_change_lines(_row("member.activate", {})) == []


def test_delete_single_and_plural():
    assert build_change_lines(_row("member.delete", {"deleted_count": 1})) == ["Slettet medlem"]
    assert build_change_lines(_row("member.delete", {"deleted_count": "4"})) == ["Slettet 4 medlemmer"]
    assert build_change_lines(_row("member.delete", None)) == ["Slettet medlem"]


def test_member_update_diff_from_old_new():
    row = _row("member.update", {
        "old": {"id": "x", "privilege_type": 1, "is_banned": False, "updated_at": "t1", "firstname": "Ola"},
        "new": {"id": "x", "privilege_type": 2, "is_banned": True, "updated_at": "t2", "firstname": "Ola"},
    }, actor_id=None)
    assert build_change_lines(row) == ["Tilgang: Medlem -> Frivillig", "Kontostatus: OK -> Bannlyst"]


def test_member_update_changed_fields_with_key_variants():
    row = _row("member.update", {
        "changed_fields": ["is_membership_active", "email"],
        "prev_is_membership_active": True,
        "next_is_membership_active": False,
        "old_email": "a@x.no",
        "email": "b@x.no",
    })
    assert build_change_lines(row) == ["Aktivt medlemskap: Ja -> Nei", "E-post: a@x.no -> b@x.no"]


def test_member_update_unknown_changed_fields_listed():
    row = _row("member.update", {"changed_fields": ["avatar_url"]})
    assert build_change_lines(row) == ["Felter: avatar_url"]


def test_member_update_fallback_depends_on_actor():
    assert build_change_lines(_row("member.update", {})) == ["Oppdaterte medlem"]
    assert build_change_lines(_row("member.update", {}, actor_id=None)) == ["Synkroniserte medlemsdata fra Auth"]


def test_unknown_or_missing_action_has_no_lines():
    assert build_change_lines(_row("equipment.loan", {"x": 1})) == []
    assert build_change_lines(_row(None, {"x": 1})) == []


def test_password_reset_and_card_print():
    assert build_change_lines(_row("member.password_reset.send")) == ["Passordlenke sendt"]
    row = _row("member.card_print.enqueue", {"queued_member_ids": ["a", "b"]})
    assert build_change_lines(row) == ["La til 2 i utskriftskø"]


def test_field_diff_line_shapes():
    assert build_field_diff_line({"previous_firstname": "A"}, "firstname") == "Fornavn: A"
    assert build_field_diff_line({}, "firstname") is None
    assert build_field_diff_line({"firstname": "B"}, "firstname") == "Fornavn: B"


def test_format_field_value():
    assert format_field_value("is_membership_active", "yes") is None
    assert format_field_value("other", True) == "Ja"
    assert format_field_value("other", "") is None
    assert format_field_value("other", {"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
    assert format_field_value("other", 2.0) == "2"
    assert format_field_value("other", 2.5) == "2.5"
    assert format_field_value("other", 7) == "7"


def test_event_labels():
    assert build_event_label(_row("member.rename")) == "Oppdaterte navn"
    assert build_event_label(_row("member.update", actor_id=None)) == "Synkroniserte medlem fra Auth"
    assert build_event_label(_row("member.update")) == "Oppdaterte medlem"
    assert build_event_label(_row("custom.thing")) == "custom.thing"
    assert build_event_label(_row("  ")) == "Ukjent hendelse"
