"""Declarative authorization table.

`POLICIES` maps an `(action, resource_type)` pair to a `Rule`. A rule is
evaluated in a fixed order by `authorize`: admin roles always pass, then
any listed role, then any listed user type, then any listed permission,
and finally an ownership match on one of the resource's owner fields.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from . import models
from .errors import Forbidden

# Owner fields per resource type. A field may hold an id or a collection of ids.
OWNER_FIELDS: Dict[str, Tuple[str, ...]] = {
    "application": ("applicant_id", "employer_id"),
    "enrollment": ("student_id",),
    "payment": ("user_id",),
    "notification": ("recipient_id",),
    "job": ("employer_id",),
    "course": ("instructor_ids",),
    "user": ("id",),
    "file": ("owner_id",),
}


@dataclass(frozen=True)
class Rule:
    roles: Tuple[str, ...] = ()
    user_types: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()
    owner_fields: Tuple[str, ...] = ()


def _owned(resource_type: str, *fields: str) -> Rule:
    return Rule(owner_fields=fields or OWNER_FIELDS[resource_type])


POLICIES: Dict[Tuple[str, str], Rule] = {
    ("read", "user"): _owned("user"),
    ("update", "user"): _owned("user"),

    ("create", "course"): Rule(permissions=("manage_courses",)),
    ("manage", "course"): _owned("course"),
    ("view_unpublished", "course"): _owned("course"),

    ("manage", "job"): _owned("job"),

    ("read", "application"): _owned("application"),
    ("update", "application"): _owned("application"),
    ("review", "application"): _owned("application", "employer_id"),
    ("respond", "application"): _owned("application", "applicant_id"),
    ("delete", "application"): _owned("application", "applicant_id"),

    ("read", "payment"): Rule(permissions=("manage_payments",), owner_fields=("user_id",)),
    ("refund", "payment"): Rule(permissions=("manage_payments",), owner_fields=("user_id",)),
    ("update_status", "payment"): Rule(permissions=("manage_payments",)),
    ("process_refund", "payment"): Rule(permissions=("manage_payments",)),

    ("read", "notification"): _owned("notification"),
    ("delete", "notification"): _owned("notification"),

    ("delete", "file"): _owned("file"),
}


def _field_value(resource: Any, field: str):
    if isinstance(resource, dict):
        return resource.get(field)
    return getattr(resource, field, None)


def is_owner(user: models.User, resource: Any, fields: Tuple[str, ...]) -> bool:
    for field in fields:
        value = _field_value(resource, field)
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            if user.id in value:
                return True
        elif value == user.id:
            return True
    return False


def allows(user: models.User, action: str, resource_type: str, resource: Any = None) -> bool:
    rule = POLICIES.get((action, resource_type))
    if user.is_admin:
        return True
    if rule is None:
        return False
    if user.role in rule.roles:
        return True
    if user.user_type in rule.user_types:
        return True
    if any(p in (user.permissions or []) for p in rule.permissions):
        return True
    return resource is not None and is_owner(user, resource, rule.owner_fields)


def authorize(user: models.User, action: str, resource_type: str, resource: Any = None) -> None:
    """Raise `Forbidden` unless the policy for `(action, resource_type)` admits `user`."""
    if not allows(user, action, resource_type, resource):
        raise Forbidden(f"Not authorized to {action.replace('_', ' ')} this {resource_type}")
