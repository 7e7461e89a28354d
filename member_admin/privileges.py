"""Central privilege config used by route guards and audit labels.
Keep all privilege numbers and requirement thresholds here."""
import enum


class PrivilegeLevel(enum.IntEnum):
    none = 0
    member = 1
    voluntary = 2
    group_leader = 3
    stortinget = 4
    it = 5


PRIVILEGE_REQUIREMENTS = {
    "dashboard_access": PrivilegeLevel.voluntary,
    "manage_members": PrivilegeLevel.voluntary,
    "manage_certificates": PrivilegeLevel.group_leader,
    "reset_passwords": PrivilegeLevel.group_leader,
    "delete_members": PrivilegeLevel.stortinget,
    "manage_membership_status": PrivilegeLevel.stortinget,
    "ban_members": PrivilegeLevel.stortinget,
    "view_audit_logs": PrivilegeLevel.stortinget,
}

PRIVILEGE_LABELS = {
    PrivilegeLevel.member: "Medlem",
    PrivilegeLevel.voluntary: "Frivillig",
    PrivilegeLevel.group_leader: "Gruppeleder",
    PrivilegeLevel.stortinget: "Stortinget",
    PrivilegeLevel.it: "IT",
}


def normalize_privilege(value) -> int:
    """Nullable/invalid privilege values count as 0."""
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def has_requirement(value, requirement: str) -> bool:
    return normalize_privilege(value) >= PRIVILEGE_REQUIREMENTS[requirement]


def can_access_dashboard(value) -> bool:
    return has_requirement(value, "dashboard_access")


def can_view_audit_logs(value) -> bool:
    return has_requirement(value, "view_audit_logs")
