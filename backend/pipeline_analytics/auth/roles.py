"""
Role definitions — which bundles of permissions make up each role.

    VIEWER < ENGINEER < ADMIN

SYSTEM is for internal callers (worker, schedulers): it may analyze and read
but not apply or reject on anyone's behalf.
"""

from enum import Enum
from pipeline_analytics.auth.permissions import Permission


class Role(str, Enum):
    VIEWER = "viewer"
    ENGINEER = "engineer"
    ADMIN = "admin"
    SYSTEM = "system"


# ── Viewer: read-only dashboard, runs and candidates ──
_VIEWER_PERMS: set[Permission] = {
    Permission.DASHBOARD_VIEW,
    Permission.RUNS_READ,
    Permission.OPTIMIZATIONS_READ,
}

# ── Engineer: viewer + advisor passes and lifecycle decisions ──
_ENGINEER_PERMS: set[Permission] = {
    *_VIEWER_PERMS,
    Permission.OPTIMIZATIONS_ANALYZE,
    Permission.OPTIMIZATIONS_MANAGE,
    Permission.AUDIT_READ,
}

# ── Admin: everything ──
_ADMIN_PERMS: set[Permission] = {p for p in Permission}

# ── System: operational permissions for internal services ──
_SYSTEM_PERMS: set[Permission] = {
    *_VIEWER_PERMS,
    Permission.OPTIMIZATIONS_ANALYZE,
}


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.VIEWER: _VIEWER_PERMS,
    Role.ENGINEER: _ENGINEER_PERMS,
    Role.ADMIN: _ADMIN_PERMS,
    Role.SYSTEM: _SYSTEM_PERMS,
}
