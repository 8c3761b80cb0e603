from debtdesk.auth.permissions import Permission, IMPLIED_PERMISSIONS
from debtdesk.auth.roles import Role, ROLE_PERMISSIONS
from debtdesk.auth.context import Identity, RequestContext

__all__ = [
    "Permission", "IMPLIED_PERMISSIONS", "Role", "ROLE_PERMISSIONS",
    "Identity", "RequestContext",
]
