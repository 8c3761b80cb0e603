from debtdesk.models.user import User  # noqa: F401
from debtdesk.models.case import DebtCase  # noqa: F401
from debtdesk.models.delegation import CaseDelegation, DelegationStatus  # noqa: F401
from debtdesk.models.permission import PermissionRecord, UserPermission, ExportAllowEntry  # noqa: F401
from debtdesk.models.audit import AuditLog  # noqa: F401
