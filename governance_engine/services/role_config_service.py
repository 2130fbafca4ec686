"""
Role Configuration Service

Administrator management of application roles.

Features:
  - List active roles / read any role by id (soft-deleted included)
  - Create and update, gated by the per-principal rate limiter and the
    self-escalation check on ``default_permissions``
  - Update writes only allow-listed fields; ``is_system`` and ``is_active``
    in the payload are silently ignored
  - Soft delete (system roles refused)
  - Seed the six default system roles
  - Every mutation (and every escalation denial) is audited with before/after
"""

import logging

from governance_engine.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionEscalationError,
    ValidationError,
)
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.role_configuration import RoleConfiguration
from governance_engine.services.escalation_guard import EscalationGuard
from governance_engine.services.permission_resolver import resolve_permissions

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("display_name", "description", "default_permissions", "is_global", "sort_order")

DEFAULT_SYSTEM_ROLES = [
    {
        "role_name": "Admin",
        "display_name": "Administrator",
        "description": "Full administrative access to configuration and provisioning",
        "is_global": True,
        "default_permissions": [
            "admin:roles", "admin:flags", "admin:config", "admin:provisioning",
            "permission:templates:manage", "workflow:manage",
        ],
    },
    {
        "role_name": "Business Development Manager",
        "display_name": "Business Development Manager",
        "description": "Originates and manages leads",
        "default_permissions": ["lead:read", "lead:create", "lead:edit", "gonogo:read", "gonogo:submit"],
    },
    {
        "role_name": "Estimating Coordinator",
        "display_name": "Estimating Coordinator",
        "description": "Coordinates estimating pursuits",
        "default_permissions": ["estimating:read", "estimating:edit", "kickoff:view", "kickoff:edit"],
    },
    {
        "role_name": "Project Manager",
        "display_name": "Project Manager",
        "description": "Runs projects after turnover",
        "default_permissions": ["project:hub:view", "pmp:edit", "pmp:sign", "schedule:view", "buyout:view"],
    },
    {
        "role_name": "Leadership",
        "display_name": "Leadership",
        "description": "Executive oversight across all projects",
        "is_global": True,
        "default_permissions": ["lead:read", "gonogo:read", "gonogo:decide", "active_projects:view"],
    },
    {
        "role_name": "Project Executive",
        "display_name": "Project Executive",
        "description": "Approves plans and commitments for a portfolio of projects",
        "default_permissions": ["project:hub:view", "pmp:approve", "commitment:approve:px", "monthly:review:px"],
    },
]


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════

def list_role_configurations(include_inactive: bool = False) -> list[RoleConfiguration]:
    q = RoleConfiguration.query
    if not include_inactive:
        q = q.filter(RoleConfiguration.is_active.is_(True))
    return q.order_by(RoleConfiguration.sort_order, RoleConfiguration.id).all()


def get_role_configuration(role_id: int) -> RoleConfiguration:
    """Role by id regardless of ``is_active``."""
    role = db.session.get(RoleConfiguration, role_id)
    if role is None:
        raise NotFoundError(resource="RoleConfiguration", resource_id=role_id)
    return role


# ═══════════════════════════════════════════════════════════════
# Mutations
# ═══════════════════════════════════════════════════════════════

def guard_grant(
    guard: EscalationGuard, actor: str, requested, *, entity_id, entity_type: str = "role_configuration",
) -> None:
    """Refuse and audit a grant of anything ``actor`` does not hold."""
    held = resolve_permissions(actor)
    try:
        guard.assert_not_self_escalation(held, requested)
    except PermissionEscalationError as exc:
        write_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=f"{entity_type}.escalation_denied",
            actor=actor,
            details=exc.to_dict(),
        )
        db.session.commit()
        raise


def _clean_permissions(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("default_permissions must be a list", {"default_permissions": "list required"})
    return [str(p) for p in dict.fromkeys(value)]


def create_role_configuration(data: dict, *, actor: str, guard: EscalationGuard | None = None) -> RoleConfiguration:
    """Create a custom (never system) role."""
    guard = guard or EscalationGuard.from_app()
    role_name = (data.get("role_name") or "").strip()
    if not role_name:
        raise ValidationError("role_name is required", {"role_name": "required"})

    guard.check_rate_limit(actor, "role_configuration.create")
    permissions = _clean_permissions(data.get("default_permissions"))
    guard_grant(guard, actor, permissions, entity_id="new")

    if RoleConfiguration.query.filter_by(role_name=role_name).first():
        raise ConflictError(resource="RoleConfiguration", field="role_name", value=role_name)

    role = RoleConfiguration(
        role_name=role_name,
        display_name=data.get("display_name") or role_name,
        description=data.get("description"),
        is_global=bool(data.get("is_global", False)),
        default_permissions=permissions,
        sort_order=data.get("sort_order") or 0,
        is_system=False,
        is_active=True,
        created_by=actor,
        last_modified_by=actor,
    )
    db.session.add(role)
    db.session.flush()
    write_audit(
        entity_type="role_configuration",
        entity_id=role.id,
        action="role_configuration.created",
        actor=actor,
        after=role.to_dict(),
    )
    db.session.commit()
    logger.info("Created role configuration '%s' (id=%d) by %s", role_name, role.id, actor)
    return role


def update_role_configuration(
    role_id: int, data: dict, *, actor: str, guard: EscalationGuard | None = None,
) -> RoleConfiguration:
    """Apply allow-listed fields only. Protected fields in ``data`` are dropped."""
    guard = guard or EscalationGuard.from_app()
    role = get_role_configuration(role_id)

    guard.check_rate_limit(actor, "role_configuration.update")
    changes = {k: data[k] for k in MUTABLE_FIELDS if k in data}
    if "default_permissions" in changes:
        changes["default_permissions"] = _clean_permissions(changes["default_permissions"])
        guard_grant(guard, actor, changes["default_permissions"], entity_id=role_id)

    ignored = sorted(set(data) - set(MUTABLE_FIELDS) - {"last_modified_by"})
    if ignored:
        logger.info("Ignoring protected fields %s on role %d update by %s", ignored, role_id, actor)

    before = role.to_dict()
    for field, value in changes.items():
        setattr(role, field, value)
    role.last_modified_by = actor
    db.session.flush()
    write_audit(
        entity_type="role_configuration",
        entity_id=role.id,
        action="role_configuration.updated",
        actor=actor,
        before=before,
        after=role.to_dict(),
    )
    db.session.commit()
    logger.info("Updated role configuration %d by %s", role_id, actor)
    return role


def delete_role_configuration(role_id: int, *, actor: str, guard: EscalationGuard | None = None) -> RoleConfiguration:
    """Soft delete: ``is_active=False``. System roles cannot be deleted."""
    guard = guard or EscalationGuard.from_app()
    role = get_role_configuration(role_id)
    if role.is_system:
        raise ValidationError(f"Cannot delete system role '{role.role_name}'")

    guard.check_rate_limit(actor, "role_configuration.delete")
    before = role.to_dict()
    role.is_active = False
    role.last_modified_by = actor
    db.session.flush()
    write_audit(
        entity_type="role_configuration",
        entity_id=role.id,
        action="role_configuration.deleted",
        actor=actor,
        before=before,
        after=role.to_dict(),
    )
    db.session.commit()
    logger.info("Soft-deleted role configuration %d by %s", role_id, actor)
    return role


def seed_default_role_configurations() -> list[RoleConfiguration]:
    """Insert missing default system roles; existing ones are left untouched."""
    existing = {r.role_name for r in RoleConfiguration.query.all()}
    for order, spec in enumerate(DEFAULT_SYSTEM_ROLES, start=1):
        if spec["role_name"] in existing:
            continue
        db.session.add(RoleConfiguration(
            role_name=spec["role_name"],
            display_name=spec["display_name"],
            description=spec["description"],
            is_global=spec.get("is_global", False),
            default_permissions=list(spec["default_permissions"]),
            is_system=True,
            is_active=True,
            sort_order=order,
            created_by="system",
            last_modified_by="system",
        ))
    db.session.commit()
    return list_role_configurations()
