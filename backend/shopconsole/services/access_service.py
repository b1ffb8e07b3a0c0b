# Overview: Access Gate; role, ownership and verified-email checks against the effective identity.

"""
Authorization checks.

All checks look at the EFFECTIVE identity: an admin impersonating a seller
is a seller for the duration of the impersonation token. Authorization is
all-or-nothing per call; the first failed check raises.
"""

from sqlalchemy import inspect as sa_inspect

from ..errors import AccessDenied, EmailNotVerified, InsufficientPermissions, ResourceNotFound
from ..extensions import db
from .identity_service import ResolvedIdentity


DEFAULT_OWNER_COLUMNS = ("user_id", "created_by")


def require_role(identity: ResolvedIdentity, roles) -> None:
    if isinstance(roles, str):
        roles = (roles,)
    if identity.effective.role not in roles:
        raise InsufficientPermissions(
            f"Access denied. Required role: {' or '.join(roles)}"
        )


def require_verified_email(identity: ResolvedIdentity) -> None:
    if not identity.effective.email_verified:
        raise EmailNotVerified("Please verify your email address to access this resource")


def _owner_value(resource, owner_columns):
    columns = sa_inspect(type(resource)).columns
    for name in owner_columns:
        if name in columns:
            return getattr(resource, name)
    raise ValueError(f"{type(resource).__name__} has none of the owner columns {owner_columns}")


def require_ownership(identity: ResolvedIdentity, model, resource_id, owner_columns=DEFAULT_OWNER_COLUMNS):
    """
    Admins bypass; everyone else must own the row.

    The owner is the first of owner_columns present on model. Returns the
    loaded resource so handlers don't query it twice.

    Raises:
        ResourceNotFound: no row with resource_id
        AccessDenied: row exists but belongs to someone else
    """
    resource = db.session.get(model, resource_id)
    if resource is None:
        raise ResourceNotFound("Resource not found")

    if identity.effective.is_admin:
        return resource

    if _owner_value(resource, owner_columns) != identity.effective.id:
        raise AccessDenied("You can only access your own resources")

    return resource
