"""Role based capabilities for operator actions.

Every role has a default capability set which can be narrowed or widened
per (role, resource, action) through ``RolePermission`` rows. Services
receive the resolved ``frozenset`` and check membership, so they never
look at the role themselves.
"""
from dataclasses import dataclass
import enum
from typing import Dict, FrozenSet, Iterable

from sqlalchemy.orm import Session

from app.models.permission import RolePermission
from app.models.user import UserRole


class Resource(str, enum.Enum):
    COUPONS = "coupons"
    QUOTES = "quotes"
    PRODUCTS = "products"
    PURCHASES = "purchases"
    USERS = "users"


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


@dataclass(frozen=True)
class Capability:
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"


def _caps(resource: Resource, actions: Iterable[Action]) -> FrozenSet[Capability]:
    return frozenset(Capability(resource, action) for action in actions)


ALL_CAPABILITIES: FrozenSet[Capability] = frozenset(
    Capability(resource, action) for resource in Resource for action in Action
)

DEFAULT_ROLE_CAPABILITIES: Dict[UserRole, FrozenSet[Capability]] = {
    UserRole.ADMIN: ALL_CAPABILITIES,
    UserRole.EDITOR: (
        _caps(Resource.PRODUCTS, Action)
        | _caps(Resource.QUOTES, [Action.VIEW, Action.EDIT])
        | _caps(Resource.PURCHASES, [Action.VIEW])
    ),
    UserRole.AUTHOR: (
        _caps(Resource.PRODUCTS, [Action.VIEW, Action.CREATE, Action.EDIT])
        | _caps(Resource.QUOTES, [Action.VIEW])
        | _caps(Resource.PURCHASES, [Action.VIEW])
    ),
    UserRole.CUSTOMER: frozenset(),
}


def capabilities_for(db: Session, role: UserRole) -> FrozenSet[Capability]:
    """Resolve a role's capabilities, applying stored overrides on top of the defaults."""
    granted = set(DEFAULT_ROLE_CAPABILITIES.get(role, frozenset()))

    if role == UserRole.ADMIN:
        return frozenset(granted)

    overrides = db.query(RolePermission).filter(RolePermission.role == role).all()
    for override in overrides:
        try:
            capability = Capability(Resource(override.resource), Action(override.action))
        except ValueError:
            continue
        if override.allowed:
            granted.add(capability)
        else:
            granted.discard(capability)

    return frozenset(granted)


def has_capability(capabilities: FrozenSet[Capability], resource: Resource, action: Action) -> bool:
    return Capability(resource, action) in capabilities
