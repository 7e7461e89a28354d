"""Audit log reconstruction: raw admin_audit_log rows -> display-ready AuditLogRow views.

Read-only. One call loads the newest rows, drops trigger rows that only mirror an
admin action, resolves actor and target names (live members first, then member
snapshots carried in historical payloads), and renders change lines and bulk
breakdowns per action. details has no fixed schema across actions or over time,
so every payload read goes through the as_* / read_* accessors and degrades to None.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from member_admin.config import get_settings
from member_admin.models.audit_log import AdminAuditLog
from member_admin.models.member import Member
from member_admin.privileges import PRIVILEGE_LABELS
from member_admin.schemas.audit import AuditLogRow, AuditTargetItem

log = logging.getLogger("uvicorn.error")

RawAuditRow = Mapping[str, Any]

AUDIT_COLUMNS = (
    "id", "created_at", "actor_id", "action", "target_table",
    "target_id", "status", "error_message", "details",
)

SOURCE = "app.admin"
ACTOR_FALLBACK_LABEL = "Supabase"
MISSING_TABLE_MESSAGE = "Fant ikke public.admin_audit_log. Opprett audit-tabellen først."
_MISSING_TABLE_MARKERS = ("could not find the table", "does not exist", "no such table", "undefinedtable")

ACTION_LABELS = MappingProxyType({
    "member.create": "Opprettet medlem",
    "member.activate": "Aktiverte medlemskap",
    "member.rename": "Oppdaterte navn",
    "member.privilege.update": "Oppdaterte tilgang",
    "member.delete": "Slettet medlem",
    "member.ban": "Utestengte bruker",
    "member.unban": "Opphevet utestenging",
    "member.membership_status.update": "Oppdaterte medlemsstatus",
    "member.password_reset.send": "Sendte passordlenke",
    "member.card_print.enqueue": "La til i utskriftskø",
    "member.update": "Oppdaterte medlem",
})

FIELD_LABELS = MappingProxyType({
    "privilege_type": "Tilgang",
    "is_membership_active": "Aktivt medlemskap",
    "is_banned": "Kontostatus",
    "firstname": "Fornavn",
    "lastname": "Etternavn",
    "email": "E-post",
    "password_set_at": "Passord satt",
})

DEFAULT_DIFF_FIELDS = ("privilege_type", "is_membership_active", "firstname", "lastname", "is_banned")
# Row bookkeeping that changes on every write
_IGNORED_DIFF_FIELDS = frozenset({"id", "created_at", "updated_at"})

# Sync rows have no actor; they are redundant next to an admin row of a related action
_SYNC_RELATED_ACTIONS = MappingProxyType({
    "member.update": frozenset({"member.ban", "member.unban"}),
    "member.delete": frozenset({"member.delete"}),
})

_SNAPSHOT_ARRAY_KEYS = ("deleted_members", "target_members")
# new before old: on equal score the first fragment wins
_SNAPSHOT_OBJECT_KEYS = ("new", "member", "old")
_LOOKUP_ID_KEYS = ("member_id", "auth_user_id", "target_member_id")
_LOOKUP_ID_ARRAY_KEYS = ("member_ids", "deleted_member_ids")
_LOOKUP_EMAIL_KEYS = ("email", "target_member_email")

# (id-set keys, reason) in precedence order; all map to item status "error"
_ERROR_ID_SETS = (
    (("blocked_member_ids",), "Blokkert av tilgangsregler"),
    (("banned_member_ids", "blocked_banned_ids"), "Bruker er utestengt"),
    (("invalid_member_ids",), "Ugyldig for dette medlemmet"),
)
_FAILED_REASON = "Feilet"
_UNCHANGED_ID_KEYS = ("unchanged_member_ids", "skipped_member_ids")
_UPDATED_ID_KEYS = ("updated_member_ids", "deleted_member_ids", "queued_member_ids")
_ITEM_ID_KEYS = (
    "member_ids", "requested_member_ids", "deleted_member_ids", "updated_member_ids",
    "unchanged_member_ids", "skipped_member_ids", "queued_member_ids", "failed_member_ids",
    "invalid_member_ids", "blocked_member_ids", "banned_member_ids", "blocked_banned_ids",
)
_ITEM_STATUS_ORDER = MappingProxyType({"error": 0, "skipped": 1, "ok": 2})

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# --- Safe accessors -------------------------------------------------------


def as_string(value: Any) -> str | None:
    """Trimmed string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def as_number(value: Any) -> int | float | None:
    """Finite number from a number or numeric string. Integral values come back as int."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
    else:
        return None
    try:
        if not math.isfinite(parsed):
            return None
    except OverflowError:
        return None
    if isinstance(parsed, float) and parsed.is_integer():
        return int(parsed)
    return parsed


def normalize_id(value: str | None) -> str | None:
    return (value or "").strip() or None


def normalize_email(value: str | None) -> str | None:
    return (value or "").strip().lower() or None


def is_uuid(value: str | None) -> bool:
    return bool(value) and _UUID_RE.fullmatch(value) is not None


def is_email(value: str | None) -> bool:
    return bool(value) and _EMAIL_RE.fullmatch(value) is not None


def details_of(row: RawAuditRow) -> dict[str, Any]:
    details = row.get("details")
    return details if isinstance(details, dict) else {}


def nested_details_object(details: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = details.get(key)
    return value if isinstance(value, dict) else {}


def read_string_array(details: Mapping[str, Any], key: str) -> list[str]:
    raw = details.get(key)
    if not isinstance(raw, list):
        return []
    return [item for item in (as_string(v) for v in raw) if item]


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _unique(values: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _uuid_or_none(value: Any) -> str | None:
    normalized = normalize_id(as_string(value))
    return normalized if is_uuid(normalized) else None


def _email_or_none(value: Any) -> str | None:
    normalized = normalize_email(as_string(value))
    return normalized if is_email(normalized) else None


def _parse_created_at(value: Any) -> datetime | None:
    """UTC datetime from a datetime or ISO string; naive values are taken as UTC."""
    if isinstance(value, datetime):
        d = value
    elif isinstance(value, str) and value.strip():
        try:
            d = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if d.tzinfo is None:
        d = d.replace(tzinfo=timezone.utc)
    return d


# --- Member identities ----------------------------------------------------


def _full_name(firstname: str | None, lastname: str | None) -> str | None:
    return f"{firstname or ''} {lastname or ''}".strip() or None


@dataclass(frozen=True)
class MemberRecord:
    """Live members row."""
    id: str
    firstname: str | None = None
    lastname: str | None = None
    email: str | None = None

    @property
    def label(self) -> str | None:
        return _full_name(self.firstname, self.lastname) or self.email


@dataclass(frozen=True)
class MemberSnapshot:
    """Member identity as recorded in an audit payload at the time of the event."""
    id: str
    firstname: str | None = None
    lastname: str | None = None
    email: str | None = None
    name: str | None = None

    @property
    def score(self) -> int:
        return (
            4 * (self.name is not None)
            + 3 * (self.email is not None)
            + 2 * (self.firstname is not None)
            + (self.lastname is not None)
        )

    @property
    def label(self) -> str | None:
        return self.name or _full_name(self.firstname, self.lastname) or self.email


@dataclass
class SnapshotLookup:
    by_id: dict[str, MemberSnapshot] = field(default_factory=dict)
    by_email: dict[str, MemberSnapshot] = field(default_factory=dict)


def merge_snapshots(current: MemberSnapshot | None, incoming: MemberSnapshot) -> MemberSnapshot:
    """Higher-scoring fragment wins field by field; gaps are filled from the other.
    On equal scores the current fragment wins."""
    if current is None:
        return incoming
    if incoming.score > current.score:
        winner, other = incoming, current
    else:
        winner, other = current, incoming
    return MemberSnapshot(
        id=current.id,
        firstname=winner.firstname or other.firstname,
        lastname=winner.lastname or other.lastname,
        email=winner.email or other.email,
        name=winner.name or other.name,
    )


def _snapshot_from_object(value: Any) -> MemberSnapshot | None:
    if not isinstance(value, dict):
        return None
    member_id = _uuid_or_none(value.get("id")) or _uuid_or_none(value.get("member_id"))
    if not member_id:
        return None
    return MemberSnapshot(
        id=member_id,
        firstname=as_string(value.get("firstname")),
        lastname=as_string(value.get("lastname")),
        email=_email_or_none(value.get("email")),
        name=as_string(value.get("name")) or as_string(value.get("full_name")),
    )


def _snapshot_from_flat(details: Mapping[str, Any]) -> MemberSnapshot | None:
    member_id = _uuid_or_none(details.get("target_member_id"))
    if not member_id:
        return None
    return MemberSnapshot(
        id=member_id,
        email=_email_or_none(details.get("target_member_email")),
        name=as_string(details.get("target_member_name")),
    )


def row_snapshot_fragments(row: RawAuditRow) -> list[MemberSnapshot]:
    """All member snapshot fragments carried inline in one row's details."""
    details = details_of(row)
    fragments: list[MemberSnapshot | None] = []
    for key in _SNAPSHOT_ARRAY_KEYS:
        raw = details.get(key)
        if isinstance(raw, list):
            fragments.extend(_snapshot_from_object(item) for item in raw)
    for key in _SNAPSHOT_OBJECT_KEYS:
        fragments.append(_snapshot_from_object(details.get(key)))
    fragments.append(_snapshot_from_flat(details))
    return [f for f in fragments if f is not None]


def build_snapshot_lookup(rows: Iterable[RawAuditRow]) -> SnapshotLookup:
    lookup = SnapshotLookup()
    for row in rows:
        for fragment in row_snapshot_fragments(row):
            lookup.by_id[fragment.id] = merge_snapshots(lookup.by_id.get(fragment.id), fragment)
    for snapshot in lookup.by_id.values():
        if snapshot.email:
            lookup.by_email.setdefault(snapshot.email, snapshot)
    return lookup


# --- Target resolution ----------------------------------------------------


@dataclass(frozen=True)
class ResolvedTarget:
    name: str | None
    uuid: str | None
    email: str | None

    @property
    def label(self) -> str | None:
        return self.name or self.email or self.uuid


def get_target_lookup_ids(row: RawAuditRow) -> list[str]:
    details = details_of(row)
    values = [_uuid_or_none(row.get("target_id"))]
    values.extend(_uuid_or_none(details.get(key)) for key in _LOOKUP_ID_KEYS)
    for key in _LOOKUP_ID_ARRAY_KEYS:
        values.extend(_uuid_or_none(item) for item in read_string_array(details, key))
    values.extend(fragment.id for fragment in row_snapshot_fragments(row))
    return _unique(values)


def get_target_lookup_emails(row: RawAuditRow) -> list[str]:
    details = details_of(row)
    values = [_email_or_none(row.get("target_id"))]
    values.extend(_email_or_none(details.get(key)) for key in _LOOKUP_EMAIL_KEYS)
    values.extend(fragment.email for fragment in row_snapshot_fragments(row))
    return _unique(values)


def _target_from_member(member: MemberRecord) -> ResolvedTarget:
    return ResolvedTarget(name=member.label, uuid=member.id, email=member.email)


def _target_from_snapshot(snapshot: MemberSnapshot) -> ResolvedTarget:
    return ResolvedTarget(name=snapshot.label, uuid=snapshot.id, email=snapshot.email)


def resolve_target(
    row: RawAuditRow,
    members_by_id: Mapping[str, MemberRecord],
    members_by_email: Mapping[str, MemberRecord],
    snapshots: SnapshotLookup,
) -> ResolvedTarget:
    """Best-known identity of the member a row concerns.

    Order: live members by id, live members by email, snapshots by id,
    snapshots by email, flat target_member_* fields, fragments inline in this
    row, and finally target_id itself."""
    details = details_of(row)
    candidate_ids = get_target_lookup_ids(row)
    candidate_emails = get_target_lookup_emails(row)

    for member_id in candidate_ids:
        member = members_by_id.get(member_id)
        if member:
            return _target_from_member(member)
    for email in candidate_emails:
        member = members_by_email.get(email)
        if member:
            return _target_from_member(member)

    for member_id in candidate_ids:
        snapshot = snapshots.by_id.get(member_id)
        if snapshot and snapshot.label:
            return _target_from_snapshot(snapshot)
    for email in candidate_emails:
        snapshot = snapshots.by_email.get(email)
        if snapshot and snapshot.label:
            return _target_from_snapshot(snapshot)

    flat_id = _uuid_or_none(details.get("target_member_id"))
    flat_email = _email_or_none(details.get("target_member_email"))
    flat_name = as_string(details.get("target_member_name"))
    if flat_id or flat_email or flat_name:
        return ResolvedTarget(name=flat_name or flat_email or flat_id, uuid=flat_id, email=flat_email)

    raw_target = normalize_id(as_string(row.get("target_id")))
    fragments = [f for f in row_snapshot_fragments(row) if f.label]
    if fragments:
        chosen = next((f for f in fragments if f.id == raw_target), fragments[0])
        return _target_from_snapshot(chosen)

    target_uuid = raw_target if is_uuid(raw_target) else None
    target_email = _email_or_none(raw_target) or _email_or_none(details.get("email"))
    return ResolvedTarget(name=target_email or raw_target, uuid=target_uuid, email=target_email)


# --- Change lines ---------------------------------------------------------


def yes_no(value: Any) -> str | None:
    if not isinstance(value, bool):
        return None
    return "Ja" if value else "Nei"


def banned_label(value: Any) -> str | None:
    if not isinstance(value, bool):
        return None
    return "Bannlyst" if value else "OK"


def privilege_label(value: Any) -> str | None:
    numeric = as_number(value)
    if numeric is None:
        return None
    return PRIVILEGE_LABELS.get(numeric) or str(numeric)


def format_field_value(field_name: str, value: Any) -> str | None:
    if field_name == "privilege_type":
        return privilege_label(value)
    if field_name == "is_membership_active":
        return yes_no(value)
    if field_name == "is_banned":
        return banned_label(value)
    if isinstance(value, bool):
        return yes_no(value)
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def previous_field_value(details: Mapping[str, Any], field_name: str) -> Any:
    return _first_present(
        details.get(f"previous_{field_name}"),
        details.get(f"prev_{field_name}"),
        details.get(f"old_{field_name}"),
        nested_details_object(details, "old").get(field_name),
    )


def next_field_value(details: Mapping[str, Any], field_name: str) -> Any:
    return _first_present(
        details.get(f"next_{field_name}"),
        details.get(field_name),
        nested_details_object(details, "new").get(field_name),
    )


def _is_plain_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    """Strict equality (no bool/int mixing), then canonical JSON comparison."""
    if left is right:
        return True
    if _is_plain_number(left) and _is_plain_number(right):
        return left == right
    if type(left) is type(right) and left == right:
        return True
    try:
        return json.dumps(left, sort_keys=True) == json.dumps(right, sort_keys=True)
    except (TypeError, ValueError):
        return False


def build_field_diff_line(details: Mapping[str, Any], field_name: str) -> str | None:
    label = FIELD_LABELS.get(field_name, field_name)
    before = format_field_value(field_name, previous_field_value(details, field_name))
    after = format_field_value(field_name, next_field_value(details, field_name))
    if before is None and after is None:
        return None
    if before is not None and after is not None and before != after:
        return f"{label}: {before} -> {after}"
    if after is not None:
        return f"{label}: {after}"
    return f"{label}: {before}"


def _count_of(details: Mapping[str, Any], count_keys: Iterable[str], id_keys: Iterable[str] = ()) -> int | None:
    """Explicit count field, else the length of an id list."""
    for key in count_keys:
        count = as_number(details.get(key))
        if count is not None:
            return int(count)
    for key in id_keys:
        if isinstance(details.get(key), list):
            return len(read_string_array(details, key))
    return None


def _membership_status_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    lines = []
    after = details.get("is_active")
    after = after if isinstance(after, bool) else None
    before = details.get("previous_is_active")
    if not isinstance(before, bool):
        before = (not after) if after is not None else None
    if before is not None and after is not None:
        lines.append(f"Aktivt medlemskap: {yes_no(before)} -> {yes_no(after)}")
    elif after is not None:
        lines.append(f"Aktivt medlemskap: {yes_no(after)}")

    updated = _count_of(details, ("updated_count",))
    if updated is not None and updated > 1:
        lines.append(f"Antall oppdatert: {updated}")
    unchanged = _count_of(details, ("unchanged_count", "skipped_count"), _UNCHANGED_ID_KEYS)
    if unchanged:
        lines.append(f"Antall uendret: {unchanged}")
    return lines


def _rename_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    before = _full_name(as_string(details.get("previous_firstname")), as_string(details.get("previous_lastname")))
    after = _full_name(as_string(details.get("firstname")), as_string(details.get("lastname")))
    if before and after and before != after:
        return [f"Navn: {before} -> {after}"]
    if after:
        return [f"Navn: {after}"]
    return []


def _privilege_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    before = privilege_label(details.get("previous_privilege_type"))
    after = privilege_label(details.get("privilege_type"))
    if before and after and before != after:
        return [f"Tilgang: {before} -> {after}"]
    if after:
        return [f"Tilgang: {after}"]
    updated = _count_of(details, ("updated_count",))
    if updated is not None and updated > 1:
        return [f"Tilgang oppdatert for {updated} medlemmer"]
    return []


def _ban_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    lines = []
    banned = banned_label(_first_present(
        details.get("is_banned") if isinstance(details.get("is_banned"), bool) else None,
        details.get("next_banned"),
    ))
    if banned:
        lines.append(f"Kontostatus: {banned}")
    membership = yes_no(details.get("is_membership_active"))
    if membership:
        lines.append(f"Aktivt medlemskap: {membership}")
    return lines


def _create_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    lines = []
    privilege = privilege_label(details.get("privilege_type"))
    if privilege:
        lines.append(f"Tilgang: {privilege}")
    membership = yes_no(details.get("is_membership_active"))
    if membership:
        lines.append(f"Aktivt medlemskap: {membership}")
    return lines


def _delete_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    count = _count_of(details, ("deleted_count", "count"))
    if count is not None and count > 1:
        return [f"Slettet {count} medlemmer"]
    return ["Slettet medlem"]


def _password_reset_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    return ["Passordlenke sendt"]


def _card_print_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    queued = _count_of(details, ("queued_count",), ("queued_member_ids",))
    if queued:
        return [f"La til {queued} i utskriftskø"]
    return []


def _member_update_lines(details: Mapping[str, Any], row: RawAuditRow) -> list[str]:
    changed_fields = read_string_array(details, "changed_fields")
    old = nested_details_object(details, "old")
    new = nested_details_object(details, "new")
    inferred = [
        name for name in _unique([*old.keys(), *new.keys()])
        if name not in _IGNORED_DIFF_FIELDS and not values_equal(old.get(name), new.get(name))
    ]
    fields = changed_fields or inferred or list(DEFAULT_DIFF_FIELDS)

    lines = []
    for name in fields:
        line = build_field_diff_line(details, name)
        if line:
            lines.append(line)
    if lines:
        return lines
    if changed_fields:
        return [f"Felter: {', '.join(changed_fields)}"]
    if normalize_id(as_string(row.get("actor_id"))):
        return ["Oppdaterte medlem"]
    return ["Synkroniserte medlemsdata fra Auth"]


_CHANGE_BUILDERS = MappingProxyType({
    "member.membership_status.update": _membership_status_lines,
    "member.rename": _rename_lines,
    "member.privilege.update": _privilege_lines,
    "member.ban": _ban_lines,
    "member.unban": _ban_lines,
    "member.create": _create_lines,
    "member.activate": _create_lines,
    "member.delete": _delete_lines,
    "member.password_reset.send": _password_reset_lines,
    "member.card_print.enqueue": _card_print_lines,
    "member.update": _member_update_lines,
})


def build_change_lines(row: RawAuditRow) -> list[str]:
    """Human-readable "what changed" lines for one row; empty for unknown actions."""
    builder = _CHANGE_BUILDERS.get(as_string(row.get("action")) or "")
    if builder is None:
        return []
    return builder(details_of(row), row)


def build_event_label(row: RawAuditRow) -> str:
    action = as_string(row.get("action"))
    if not action:
        return "Ukjent hendelse"
    if not normalize_id(as_string(row.get("actor_id"))):
        if action == "member.update":
            return "Synkroniserte medlem fra Auth"
        if action == "member.delete":
            return "Slettet medlem fra Auth"
    return ACTION_LABELS.get(action, action)


# --- Redundant sync rows ----------------------------------------------------


def is_sync_row(row: RawAuditRow) -> bool:
    action = as_string(row.get("action"))
    return action in _SYNC_RELATED_ACTIONS and not normalize_id(as_string(row.get("actor_id")))


def identity_tokens(row: RawAuditRow) -> set[str]:
    tokens = {f"id:{member_id}" for member_id in get_target_lookup_ids(row)}
    tokens.update(f"email:{email}" for email in get_target_lookup_emails(row))
    return tokens


def filter_redundant_sync_rows(rows: list[RawAuditRow], window_seconds: float = 5.0) -> list[RawAuditRow]:
    """Drop actor-less member.update/member.delete rows that mirror an admin row.

    A sync row is redundant when an actor row of a related action lies within
    window_seconds and shares an id: or email: token with it. Rows without a
    parseable timestamp or identity are always kept."""
    actor_rows = [
        (as_string(row.get("action")), _parse_created_at(row.get("created_at")), identity_tokens(row))
        for row in rows
        if normalize_id(as_string(row.get("actor_id")))
    ]
    kept = []
    for row in rows:
        if not is_sync_row(row):
            kept.append(row)
            continue
        related = _SYNC_RELATED_ACTIONS[as_string(row.get("action"))]
        created_at = _parse_created_at(row.get("created_at"))
        tokens = identity_tokens(row)
        redundant = created_at is not None and bool(tokens) and any(
            action in related
            and other_created_at is not None
            and abs((other_created_at - created_at).total_seconds()) <= window_seconds
            and not tokens.isdisjoint(other_tokens)
            for action, other_created_at, other_tokens in actor_rows
        )
        if redundant:
            log.debug("Audit: hiding sync row %s (mirrors an admin action)", row.get("id"))
            continue
        kept.append(row)
    return kept


# --- Bulk breakdown -------------------------------------------------------


def _failure_reasons(details: Mapping[str, Any]) -> dict[str, str]:
    """Per-member messages from details.failed = [{id, message}, ...]."""
    raw = details.get("failed")
    reasons: dict[str, str] = {}
    if not isinstance(raw, list):
        return reasons
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        member_id = normalize_id(as_string(entry.get("id")) or as_string(entry.get("member_id")))
        if not member_id:
            continue
        message = as_string(entry.get("message")) or as_string(entry.get("error")) or as_string(entry.get("reason"))
        reasons.setdefault(member_id, message or _FAILED_REASON)
    return reasons


def _id_set(details: Mapping[str, Any], keys: Iterable[str]) -> set[str]:
    return {
        member_id
        for key in keys
        for member_id in (normalize_id(v) for v in read_string_array(details, key))
        if member_id
    }


def get_target_item_ids(row: RawAuditRow) -> list[str]:
    """Every member id a bulk row mentions, in first-seen order."""
    details = details_of(row)
    values = [normalize_id(v) for key in _ITEM_ID_KEYS for v in read_string_array(details, key)]
    values.extend(_failure_reasons(details).keys())
    return _unique(values)


def _item_outcome(
    member_id: str,
    error_sets: list[tuple[set[str], str]],
    failure_reasons: Mapping[str, str],
    failed_ids: set[str],
    unchanged_ids: set[str],
    updated_ids: set[str] | None,
) -> tuple[str, str | None]:
    for ids, reason in error_sets:
        if member_id in ids:
            return "error", reason
    if member_id in failed_ids:
        return "error", failure_reasons.get(member_id) or _FAILED_REASON
    if member_id in unchanged_ids:
        return "skipped", "Ingen endring"
    if updated_ids is not None and member_id not in updated_ids:
        return "skipped", "Ikke oppdatert"
    return "ok", None


def build_target_items(
    row: RawAuditRow,
    change_lines: list[str],
    members_by_id: Mapping[str, MemberRecord],
    snapshots: SnapshotLookup,
) -> list[AuditTargetItem]:
    """Per-member outcome for rows that touch more than one member, errors first."""
    member_ids = get_target_item_ids(row)
    if len(member_ids) < 2:
        return []

    details = details_of(row)
    error_sets = [(_id_set(details, keys), reason) for keys, reason in _ERROR_ID_SETS]
    failure_reasons = _failure_reasons(details)
    failed_ids = _id_set(details, ("failed_member_ids",)) | set(failure_reasons)
    unchanged_ids = _id_set(details, _UNCHANGED_ID_KEYS)
    updated_key = next((key for key in _UPDATED_ID_KEYS if isinstance(details.get(key), list)), None)
    updated_ids = _id_set(details, (updated_key,)) if updated_key else None
    ok_change = change_lines[0] if change_lines else None

    items = []
    for member_id in member_ids:
        status, reason = _item_outcome(
            member_id, error_sets, failure_reasons, failed_ids, unchanged_ids, updated_ids,
        )
        identity = members_by_id.get(member_id) or snapshots.by_id.get(member_id)
        items.append(
            AuditTargetItem(
                id=member_id,
                name=identity.label if identity else None,
                email=identity.email if identity else None,
                status=status,
                reason=reason,
                change=ok_change if status == "ok" else None,
            )
        )
    return sorted(items, key=lambda item: _ITEM_STATUS_ORDER[item.status])


def estimate_bulk_counts(row: RawAuditRow, target_items: list[AuditTargetItem]) -> tuple[int, int]:
    """(updated, skipped) from explicit counts, id lists, or the item breakdown."""
    details = details_of(row)
    updated = _count_of(details, ("updated_count",), ("updated_member_ids",))
    if updated is None:
        updated = sum(1 for item in target_items if item.status == "ok")
    skipped = _count_of(details, ("unchanged_count", "skipped_count"), _UNCHANGED_ID_KEYS) or 0
    skipped = max(skipped, sum(1 for item in target_items if item.status == "skipped"))
    return updated, skipped


def to_status(value: str | None) -> str:
    return value if value in ("ok", "error", "partial") else "unknown"


def compute_status(raw_status: str | None, updated: int, skipped: int) -> str:
    status = to_status(raw_status)
    if status == "ok" and updated > 0 and skipped > 0:
        return "partial"
    return status


# --- Orchestration ----------------------------------------------------------


@dataclass
class AuditRowsResult:
    rows: list[AuditLogRow]
    error_message: str | None = None


def fetch_members_by_ids(db: Session, ids: Iterable[str], chunk_size: int = 100) -> dict[str, MemberRecord]:
    """Live members keyed by id. Queries run in chunks; database errors propagate."""
    unique_ids = _unique(i for i in ids if is_uuid(i))
    found: dict[str, MemberRecord] = {}
    for index in range(0, len(unique_ids), chunk_size):
        chunk = unique_ids[index:index + chunk_size]
        rows = (
            db.query(Member.id, Member.firstname, Member.lastname, Member.email)
            .filter(Member.id.in_(chunk))
            .all()
        )
        for r in rows:
            found[str(r.id)] = MemberRecord(
                id=str(r.id),
                firstname=as_string(r.firstname),
                lastname=as_string(r.lastname),
                email=as_string(r.email),
            )
    return found


def fetch_members_by_emails(db: Session, emails: Iterable[str], chunk_size: int = 100) -> dict[str, MemberRecord]:
    """Live members keyed by lowercased email. Queries run in chunks; database errors propagate."""
    unique_emails = _unique(_email_or_none(e) for e in emails)
    found: dict[str, MemberRecord] = {}
    for index in range(0, len(unique_emails), chunk_size):
        chunk = unique_emails[index:index + chunk_size]
        rows = (
            db.query(Member.id, Member.firstname, Member.lastname, Member.email)
            .filter(func.lower(Member.email).in_(chunk))
            .all()
        )
        for r in rows:
            key = _email_or_none(r.email)
            if key:
                found[key] = MemberRecord(
                    id=str(r.id),
                    firstname=as_string(r.firstname),
                    lastname=as_string(r.lastname),
                    email=as_string(r.email),
                )
    return found


def map_audit_row(
    row: RawAuditRow,
    members_by_id: Mapping[str, MemberRecord],
    members_by_email: Mapping[str, MemberRecord],
    snapshots: SnapshotLookup,
) -> AuditLogRow:
    details = details_of(row)
    actor_id = normalize_id(as_string(row.get("actor_id")))
    actor = (members_by_id.get(actor_id) or snapshots.by_id.get(actor_id)) if actor_id else None
    target = resolve_target(row, members_by_id, members_by_email, snapshots)
    change_items = build_change_lines(row)
    target_items = build_target_items(row, change_items, members_by_id, snapshots)
    updated, skipped = estimate_bulk_counts(row, target_items)

    if not change_items:
        change = None
    elif len(change_items) == 1:
        change = change_items[0]
    else:
        change = f"{change_items[0]} (+{len(change_items) - 1})"

    row_id = row.get("id")
    return AuditLogRow(
        id="" if row_id is None else str(row_id),
        created_at=row.get("created_at"),
        action_key=as_string(row.get("action")),
        event=build_event_label(row),
        target=target.label,
        target_name=target.name,
        target_uuid=target.uuid,
        target_email=target.email,
        target_items=target_items,
        change=change,
        change_items=change_items,
        actor_label=(actor.label if actor else None) or ACTOR_FALLBACK_LABEL,
        actor_id=actor_id,
        actor_email=actor.email if actor else None,
        ip_address=None,
        status=compute_status(as_string(row.get("status")), updated, skipped),
        error_message=as_string(row.get("error_message")),
        source=SOURCE,
        raw={**row, "details": details, "_source": SOURCE},
    )


def build_audit_rows(
    db: Session,
    raw_rows: list[RawAuditRow],
    *,
    chunk_size: int = 100,
    window_seconds: float = 5.0,
) -> list[AuditLogRow]:
    """Filter, index, look up and map raw rows (newest first in, newest first out)."""
    rows = filter_redundant_sync_rows(raw_rows, window_seconds)
    snapshots = build_snapshot_lookup(rows)

    actor_ids = [normalize_id(as_string(row.get("actor_id"))) for row in rows]
    target_ids = [member_id for row in rows for member_id in get_target_lookup_ids(row)]
    item_ids = [member_id for row in rows for member_id in get_target_item_ids(row)]
    target_emails = [email for row in rows for email in get_target_lookup_emails(row)]

    members_by_id = fetch_members_by_ids(db, _unique([*actor_ids, *target_ids, *item_ids]), chunk_size)
    members_by_email = fetch_members_by_emails(db, target_emails, chunk_size)

    return [map_audit_row(row, members_by_id, members_by_email, snapshots) for row in rows]


def _entry_to_row(entry: AdminAuditLog) -> dict[str, Any]:
    return {column: getattr(entry, column) for column in AUDIT_COLUMNS}


def _is_missing_table_error(message: str) -> bool:
    lowered = message.lower()
    return "admin_audit_log" in lowered and any(marker in lowered for marker in _MISSING_TABLE_MARKERS)


def fetch_audit_rows(
    db: Session,
    *,
    limit: int | None = None,
    chunk_size: int | None = None,
    window_seconds: float | None = None,
) -> AuditRowsResult:
    """Load and enrich the newest admin audit rows for the dashboard.

    A failing audit query is returned as error_message (missing table gets its
    own message); member lookup failures raise."""
    settings = get_settings()
    limit = limit or settings.audit_fetch_limit
    chunk_size = chunk_size or settings.audit_lookup_chunk_size
    window_seconds = settings.audit_sync_window_seconds if window_seconds is None else window_seconds

    try:
        entries = (
            db.query(AdminAuditLog)
            .order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        db.rollback()
        message = str(getattr(e, "orig", None) or e)
        if _is_missing_table_error(message):
            log.warning("Audit: admin_audit_log table missing: %s", message)
            return AuditRowsResult(rows=[], error_message=MISSING_TABLE_MESSAGE)
        log.exception("Audit: admin_audit_log query failed")
        return AuditRowsResult(rows=[], error_message=message)

    raw_rows = [_entry_to_row(entry) for entry in entries]
    rows = build_audit_rows(db, raw_rows, chunk_size=chunk_size, window_seconds=window_seconds)
    return AuditRowsResult(rows=rows, error_message=None)


def filter_audit_rows(
    rows: list[AuditLogRow],
    *,
    action: str | None = None,
    status: str | None = None,
    from_ts: datetime | None = None,
    to_ts: datetime | None = None,
    search: str | None = None,
) -> list[AuditLogRow]:
    """Narrow enriched rows by action key, status, time range and free-text search."""
    action = as_string(action)
    status = as_string(status)
    term = (as_string(search) or "").casefold()
    out = []
    for r in rows:
        if action and r.action_key != action:
            continue
        if status and r.status != status:
            continue
        if from_ts is not None or to_ts is not None:
            created_at = _parse_created_at(r.created_at)
            if created_at is None:
                continue
            if from_ts is not None and created_at < from_ts:
                continue
            if to_ts is not None and created_at > to_ts:
                continue
        if term:
            haystack = [r.event, r.action_key, r.target, r.target_email, r.actor_label, r.actor_email, *r.change_items]
            if not any(term in value.casefold() for value in haystack if value):
                continue
        out.append(r)
    return out
