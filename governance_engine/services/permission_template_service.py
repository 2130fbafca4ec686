"""
Permission Template Service

Administration of the records the permission resolver reads:

  - Permission templates: create/update with a validated ``tool_access``,
    soft delete (the default template is refused), environment promotion
  - Security group mappings: create/update, default template must exist

Every grant is checked against the actor's own resolution first: a template
(or a mapping pointing at one) may not carry a permission the actor lacks.
Refusals, like every mutation, land in the audit log. Promotion bumps
``version`` on every active template and stamps the source tier; the audit
row is the promotion history.
"""

import logging
from datetime import datetime, timezone

from governance_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from governance_engine.core.types import AccessLevel
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.permission import PermissionTemplate, SecurityGroupMapping
from governance_engine.services.escalation_guard import EscalationGuard
from governance_engine.services.permission_resolver import tool_access_entries
from governance_engine.services.role_config_service import guard_grant
from governance_engine.services.tool_permissions import (
    BASELINE_PERMISSIONS,
    TOOLS_BY_KEY,
    flatten_tool_access,
)

logger = logging.getLogger(__name__)

ENVIRONMENT_TIERS = ("dev", "vetting", "prod")
IDENTITY_TYPES = ("Internal", "External")

TEMPLATE_FIELDS = (
    "name", "description", "is_global", "global_access", "identity_type",
    "tool_access", "is_default", "is_active",
)
MAPPING_FIELDS = ("security_group_name", "security_group_id", "default_template_id", "is_active")


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════

def list_permission_templates(include_inactive=False):
    q = PermissionTemplate.query
    if not include_inactive:
        q = q.filter(PermissionTemplate.is_active.is_(True))
    return q.order_by(PermissionTemplate.name).all()


def get_permission_template(template_id):
    template = db.session.get(PermissionTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="PermissionTemplate", resource_id=template_id)
    return template


def list_security_group_mappings():
    return SecurityGroupMapping.query.order_by(SecurityGroupMapping.security_group_name).all()


def get_security_group_mapping(mapping_id):
    mapping = db.session.get(SecurityGroupMapping, mapping_id)
    if mapping is None:
        raise NotFoundError(resource="SecurityGroupMapping", resource_id=mapping_id)
    return mapping


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def clean_tool_access(value) -> list[dict]:
    """Normalised ``tool_access`` list; every problem is reported at once."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("tool_access must be a list", {"tool_access": "list required"})

    problems = {}
    cleaned = []
    seen = set()
    for index, entry in enumerate(value):
        where = f"tool_access[{index}]"
        if not isinstance(entry, dict) or not entry.get("tool_key"):
            problems[where] = "tool_key required"
            continue
        definition = TOOLS_BY_KEY.get(entry["tool_key"])
        if definition is None:
            problems[where] = f"unknown tool '{entry['tool_key']}'"
            continue
        if definition.tool_key in seen:
            problems[where] = f"duplicate tool '{definition.tool_key}'"
            continue
        try:
            level = AccessLevel(entry.get("level") or AccessLevel.NONE.value)
        except ValueError:
            problems[where] = f"unknown level '{entry.get('level')}'"
            continue
        flags = entry.get("granular_flags") or []
        if not isinstance(flags, list):
            problems[where] = "granular_flags must be a list"
            continue
        unknown = [f for f in flags if definition.flag(f) is None]
        if unknown:
            problems[where] = f"unknown granular flags {unknown}"
            continue
        seen.add(definition.tool_key)
        cleaned.append({"tool_key": definition.tool_key, "level": level.value, "granular_flags": list(flags)})

    if problems:
        raise ValidationError("Invalid tool_access", problems)
    return cleaned


def granted_by(tool_access) -> list[str]:
    """Permissions a stored ``tool_access`` list grants beyond the baseline, sorted."""
    return sorted(flatten_tool_access(tool_access_entries(tool_access)) - BASELINE_PERMISSIONS)


def _check_identity_type(value):
    if value not in IDENTITY_TYPES:
        raise ValidationError(
            f"identity_type must be one of {', '.join(IDENTITY_TYPES)}",
            {"identity_type": value},
        )


def _clear_other_defaults(template_id):
    (
        PermissionTemplate.query
        .filter(PermissionTemplate.is_default.is_(True), PermissionTemplate.id != template_id)
        .update({"is_default": False}, synchronize_session="fetch")
    )


# ═══════════════════════════════════════════════════════════════
# Template mutations
# ═══════════════════════════════════════════════════════════════

def create_permission_template(data: dict, *, actor: str, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", {"name": "required"})
    identity_type = data.get("identity_type") or "Internal"
    _check_identity_type(identity_type)
    tool_access = clean_tool_access(data.get("tool_access"))

    guard.check_rate_limit(actor, "permission_template.create")
    guard_grant(guard, actor, granted_by(tool_access), entity_id="new", entity_type="permission_template")

    if PermissionTemplate.query.filter_by(name=name).first():
        raise ConflictError(resource="PermissionTemplate", field="name", value=name)

    template = PermissionTemplate(
        name=name,
        description=data.get("description"),
        is_global=bool(data.get("is_global", False)),
        global_access=bool(data.get("global_access", False)),
        identity_type=identity_type,
        tool_access=tool_access,
        is_default=bool(data.get("is_default", False)),
        is_active=True,
        version=1,
        created_by=actor,
        last_modified_by=actor,
    )
    db.session.add(template)
    db.session.flush()
    if template.is_default:
        _clear_other_defaults(template.id)
    write_audit(
        entity_type="permission_template",
        entity_id=template.id,
        action="permission_template.created",
        actor=actor,
        after=template.to_dict(),
    )
    db.session.commit()
    logger.info("Created permission template '%s' (id=%d) by %s", name, template.id, actor)
    return template


def update_permission_template(template_id, data: dict, *, actor: str, guard: EscalationGuard | None = None):
    """Apply allow-listed fields. A new ``tool_access`` passes the escalation check first."""
    guard = guard or EscalationGuard.from_app()
    template = get_permission_template(template_id)

    changes = {k: data[k] for k in TEMPLATE_FIELDS if k in data}
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValidationError("name is required", {"name": "required"})
    if "identity_type" in changes:
        _check_identity_type(changes["identity_type"])
    if "tool_access" in changes:
        changes["tool_access"] = clean_tool_access(changes["tool_access"])

    guard.check_rate_limit(actor, "permission_template.update")
    if "tool_access" in changes:
        guard_grant(
            guard, actor, granted_by(changes["tool_access"]),
            entity_id=template.id, entity_type="permission_template",
        )

    if "name" in changes and changes["name"] != template.name:
        if PermissionTemplate.query.filter_by(name=changes["name"]).first():
            raise ConflictError(resource="PermissionTemplate", field="name", value=changes["name"])

    before = template.to_dict()
    for field, value in changes.items():
        setattr(template, field, value)
    template.last_modified_by = actor
    db.session.flush()
    if template.is_default:
        _clear_other_defaults(template.id)
    write_audit(
        entity_type="permission_template",
        entity_id=template.id,
        action="permission_template.updated",
        actor=actor,
        before=before,
        after=template.to_dict(),
    )
    db.session.commit()
    logger.info("Updated permission template %d by %s", template.id, actor)
    return template


def delete_permission_template(template_id, *, actor: str, guard: EscalationGuard | None = None):
    """Soft delete. Mappings and assignments pointing here then resolve to no access."""
    guard = guard or EscalationGuard.from_app()
    template = get_permission_template(template_id)
    if template.is_default:
        raise ValidationError(f"Cannot delete the default template '{template.name}'")

    guard.check_rate_limit(actor, "permission_template.delete")
    before = template.to_dict()
    template.is_active = False
    template.last_modified_by = actor
    db.session.flush()
    write_audit(
        entity_type="permission_template",
        entity_id=template.id,
        action="permission_template.deleted",
        actor=actor,
        before=before,
        after=template.to_dict(),
    )
    db.session.commit()
    logger.info("Soft-deleted permission template %d by %s", template.id, actor)
    return template


# ═══════════════════════════════════════════════════════════════
# Security group mappings
# ═══════════════════════════════════════════════════════════════

def _mapping_target(template_id):
    if template_id is None:
        return None
    template = db.session.get(PermissionTemplate, template_id)
    if template is None or not template.is_active:
        raise ValidationError(
            f"default_template_id {template_id} is not an active template",
            {"default_template_id": template_id},
        )
    return template


def create_security_group_mapping(data: dict, *, actor: str, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    group_name = (data.get("security_group_name") or "").strip()
    if not group_name:
        raise ValidationError("security_group_name is required", {"security_group_name": "required"})
    template = _mapping_target(data.get("default_template_id"))

    guard.check_rate_limit(actor, "security_group_mapping.create")
    if template is not None:
        guard_grant(
            guard, actor, granted_by(template.tool_access),
            entity_id="new", entity_type="security_group_mapping",
        )

    if SecurityGroupMapping.query.filter_by(security_group_name=group_name).first():
        raise ConflictError(resource="SecurityGroupMapping", field="security_group_name", value=group_name)

    mapping = SecurityGroupMapping(
        security_group_name=group_name,
        security_group_id=data.get("security_group_id"),
        default_template_id=template.id if template else None,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(mapping)
    db.session.flush()
    write_audit(
        entity_type="security_group_mapping",
        entity_id=mapping.id,
        action="security_group_mapping.created",
        actor=actor,
        after=mapping.to_dict(),
    )
    db.session.commit()
    logger.info("Mapped security group '%s' → template %s by %s", group_name, mapping.default_template_id, actor)
    return mapping


def update_security_group_mapping(mapping_id, data: dict, *, actor: str, guard: EscalationGuard | None = None):
    guard = guard or EscalationGuard.from_app()
    mapping = get_security_group_mapping(mapping_id)

    changes = {k: data[k] for k in MAPPING_FIELDS if k in data}
    if "security_group_name" in changes:
        changes["security_group_name"] = (changes["security_group_name"] or "").strip()
        if not changes["security_group_name"]:
            raise ValidationError("security_group_name is required", {"security_group_name": "required"})
    template = _mapping_target(changes.get("default_template_id"))

    guard.check_rate_limit(actor, "security_group_mapping.update")
    if template is not None and template.id != mapping.default_template_id:
        guard_grant(
            guard, actor, granted_by(template.tool_access),
            entity_id=mapping.id, entity_type="security_group_mapping",
        )

    new_name = changes.get("security_group_name")
    if new_name and new_name != mapping.security_group_name:
        if SecurityGroupMapping.query.filter_by(security_group_name=new_name).first():
            raise ConflictError(resource="SecurityGroupMapping", field="security_group_name", value=new_name)

    before = mapping.to_dict()
    for field, value in changes.items():
        setattr(mapping, field, value)
    db.session.flush()
    write_audit(
        entity_type="security_group_mapping",
        entity_id=mapping.id,
        action="security_group_mapping.updated",
        actor=actor,
        before=before,
        after=mapping.to_dict(),
    )
    db.session.commit()
    logger.info("Updated security group mapping %d by %s", mapping.id, actor)
    return mapping


# ═══════════════════════════════════════════════════════════════
# Promotion
# ═══════════════════════════════════════════════════════════════

def promote_templates(from_tier, to_tier, *, actor, guard: EscalationGuard | None = None):
    """Promote all active templates one or more tiers up. Returns a summary dict."""
    if from_tier not in ENVIRONMENT_TIERS or to_tier not in ENVIRONMENT_TIERS:
        raise ValidationError(
            f"Unknown environment tier: {from_tier!r} → {to_tier!r}",
            {"allowed": list(ENVIRONMENT_TIERS)},
        )
    if ENVIRONMENT_TIERS.index(to_tier) <= ENVIRONMENT_TIERS.index(from_tier):
        raise ValidationError(f"Cannot promote from {from_tier} to {to_tier}")

    guard = guard or EscalationGuard.from_app()
    guard.check_rate_limit(actor, "permission_template.promote")

    now = datetime.now(timezone.utc)
    templates = list_permission_templates()
    versions = {}
    for template in templates:
        template.version = (template.version or 1) + 1
        template.promoted_from_tier = from_tier
        template.promoted_at = now
        template.last_modified_by = actor
        versions[template.name] = template.version
    db.session.flush()

    summary = {
        "from_tier": from_tier,
        "to_tier": to_tier,
        "promoted_by": actor,
        "promoted_at": now.isoformat(),
        "template_count": len(templates),
        "versions": versions,
    }
    write_audit(
        entity_type="permission_template",
        entity_id="*",
        action="permission_template.promoted",
        actor=actor,
        details=summary,
    )
    db.session.commit()
    logger.info("Promoted %d templates %s → %s (by %s)", len(templates), from_tier, to_tier, actor)
    return summary
