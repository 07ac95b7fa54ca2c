from pipeline_analytics.auth.permissions import Permission
from pipeline_analytics.auth.roles import Role, ROLE_PERMISSIONS
from pipeline_analytics.auth.context import RequestContext

__all__ = ["Permission", "Role", "ROLE_PERMISSIONS", "RequestContext"]
