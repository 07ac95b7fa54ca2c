"""
Permission constants — every action the API exposes.

Each permission follows the pattern `resource:action`. JWTs carry a role
claim, which maps to a set of these permissions via ROLE_PERMISSIONS.
"""

from enum import Enum


class Permission(str, Enum):
    # ── Dashboard ──
    DASHBOARD_VIEW = "dashboard:view"            # stats, bottlenecks, impact

    # ── Runs ──
    RUNS_READ = "runs:read"

    # ── Optimizations ──
    OPTIMIZATIONS_READ = "optimizations:read"
    OPTIMIZATIONS_ANALYZE = "optimizations:analyze"  # trigger an advisor pass
    OPTIMIZATIONS_MANAGE = "optimizations:manage"    # apply, reject

    # ── Audit ──
    AUDIT_READ = "audit:read"

    # ── Admin ──
    ADMIN_SYSTEM = "admin:system"
