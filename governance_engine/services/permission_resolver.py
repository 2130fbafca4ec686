"""
Permission Resolver — layered template resolution.

Layers, lowest to highest precedence:
  1. Security-group default   principal's role → group → mapping.default_template_id
                              (no active mapping → the built-in default template)
  2. Project override         active ProjectTeamAssignment.template_override_id
  3. Granular flag merge      assignment.granular_flag_overrides appended onto
                              the winning template's matching tool entries

Evaluation is deterministic and fail-closed:
  - a template id that resolves to nothing yields an empty permission set
  - configuration is never mutated (template JSON is copied before merging)
  - an unknown principal resolves through the read-only group like anyone else

Usage:
    from governance_engine.services.permission_resolver import resolve_permissions
    resolved = resolve_permissions("pm@example.com", "25-042-01")
    if resolved.has("pmp:approve"):
        ...
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from governance_engine.core.types import (
    AccessLevel,
    PermissionSource,
    ResolvedPermissions,
    ToolAccess,
)
from governance_engine.models import db
from governance_engine.models.permission import (
    PermissionTemplate,
    ProjectTeamAssignment,
    SecurityGroupMapping,
)
from governance_engine.models.project import Lead, Principal
from governance_engine.services.tool_permissions import flatten_tool_access

logger = logging.getLogger(__name__)

READ_ONLY_GROUP = "Read Only"

# Current application role → directory security group.
ROLE_TO_SECURITY_GROUP: dict[str, str] = {
    # Configured system roles
    "Admin": "SharePoint Admins",
    "Business Development Manager": "Business Development",
    "Project Manager": "Project Managers",
    "Leadership": "Executive Leadership",
    "Project Executive": "Project Executives",
    # Legacy role names
    "Executive Leadership": "Executive Leadership",
    "Department Director": "Project Executives",
    "Operations Team": "Project Managers",
    "Preconstruction Team": "Estimating",
    "BD Representative": "Business Development",
    "Estimating Coordinator": "Estimating",
    "Accounting Manager": "Accounting",
    "Legal": READ_ONLY_GROUP,
    "Risk Management": READ_ONLY_GROUP,
    "Marketing": READ_ONLY_GROUP,
    "Quality Control": READ_ONLY_GROUP,
    "Safety": READ_ONLY_GROUP,
    "IDS": READ_ONLY_GROUP,
    "SharePoint Admin": "SharePoint Admins",
}

EMPTY_TEMPLATE_NAME = "Unknown"


def _normalise(email: str) -> str:
    return (email or "").strip().lower()


def security_group_for(email: str) -> str:
    """Security group derived from the principal's current role."""
    principal = Principal.query.filter(func.lower(Principal.email) == _normalise(email)).first()
    role_name = principal.role_name if principal and principal.is_active else None
    return ROLE_TO_SECURITY_GROUP.get(role_name or "", READ_ONLY_GROUP)


def _default_template_id(group_name: str) -> int | None:
    mapping = SecurityGroupMapping.query.filter_by(
        security_group_name=group_name, is_active=True,
    ).first()
    if mapping is not None and mapping.default_template_id is not None:
        return mapping.default_template_id
    fallback = (
        PermissionTemplate.query
        .filter_by(is_default=True, is_active=True)
        .order_by(PermissionTemplate.id)
        .first()
    )
    return fallback.id if fallback else None


def _active_assignment(email: str, project_code: str) -> ProjectTeamAssignment | None:
    return (
        ProjectTeamAssignment.query
        .filter(
            func.lower(ProjectTeamAssignment.user_email) == email,
            ProjectTeamAssignment.project_code == project_code,
            ProjectTeamAssignment.is_active.is_(True),
        )
        .order_by(ProjectTeamAssignment.id)
        .first()
    )


def tool_access_entries(raw, *, template_name: str = "") -> list[ToolAccess]:
    """Parse stored ``tool_access`` JSON; malformed entries are skipped and grant nothing."""
    if not isinstance(raw, list):
        if raw:
            logger.warning("Template %s has non-list tool_access; ignoring it", template_name)
        return []
    entries = []
    for entry in raw:
        try:
            entries.append(ToolAccess.from_dict(entry))
        except ValueError:
            logger.warning("Template %s: skipping malformed tool access entry %r", template_name, entry)
    return entries


def _merge_granular_overrides(
    tool_access: list[ToolAccess], overrides: list[dict] | None,
) -> list[ToolAccess]:
    if not overrides:
        return tool_access
    extra: dict[str, list[str]] = {}
    for override in overrides:
        if not isinstance(override, dict):
            continue
        extra.setdefault(override.get("tool_key"), []).extend(override.get("flags") or [])
    merged = []
    for access in tool_access:
        added = extra.get(access.tool_key)
        if added:
            access = ToolAccess(
                tool_key=access.tool_key,
                level=access.level,
                granular_flags=tuple(access.granular_flags) + tuple(added),
            )
        merged.append(access)
    return merged


def _empty(email: str, project_code: str | None, source: PermissionSource) -> ResolvedPermissions:
    return ResolvedPermissions(
        user_id=email,
        project_code=project_code,
        template_id=0,
        template_name=EMPTY_TEMPLATE_NAME,
        source=source,
    )


def resolve_permissions(principal_email: str, project_code: str | None = None) -> ResolvedPermissions:
    """Effective permissions of ``principal_email``, optionally scoped to a project."""
    email = _normalise(principal_email)

    # 1. Security-group default
    group_name = security_group_for(email)
    template_id = _default_template_id(group_name)
    source = PermissionSource.SECURITY_GROUP_DEFAULT

    # 2. Project-level template override
    assignment = _active_assignment(email, project_code) if project_code else None
    if assignment is not None and assignment.template_override_id:
        template_id = assignment.template_override_id
        source = PermissionSource.PROJECT_OVERRIDE

    # 3. Load the winner; anything missing fails closed
    template = db.session.get(PermissionTemplate, template_id) if template_id else None
    if template is None or not template.is_active:
        logger.warning(
            "Permission template %s unavailable for %s (group=%s); resolving to no access",
            template_id, email, group_name,
        )
        return _empty(email, project_code, source)

    tool_access = tool_access_entries(template.tool_access, template_name=template.name)

    # 4. Granular flags append onto matching tools; global templates are project-independent
    if assignment is not None and not template.is_global:
        tool_access = _merge_granular_overrides(tool_access, assignment.granular_flag_overrides)

    # 5. Flatten
    permissions = flatten_tool_access(tool_access)
    tool_levels: dict[str, AccessLevel] = {}
    granular_flags: dict[str, list[str]] = {}
    for access in tool_access:
        tool_levels[access.tool_key] = access.level
        if access.granular_flags:
            granular_flags[access.tool_key] = list(access.granular_flags)

    logger.debug(
        "Resolved permissions for %s project=%s template=%s source=%s count=%d",
        email, project_code, template.name, source.value, len(permissions),
    )
    return ResolvedPermissions(
        user_id=email,
        project_code=project_code,
        template_id=template.id,
        template_name=template.name,
        source=source,
        tool_levels=tool_levels,
        granular_flags=granular_flags,
        permissions=frozenset(permissions),
        global_access=bool(template.global_access),
    )


def get_accessible_projects(principal_email: str) -> list[str]:
    """Project codes the principal may see: all of them with global access, else assigned ones."""
    email = _normalise(principal_email)
    resolved = resolve_permissions(email, None)
    if resolved.global_access:
        rows = (
            db.session.query(Lead.project_code)
            .filter(Lead.project_code.isnot(None))
            .distinct()
            .all()
        )
    else:
        rows = (
            db.session.query(ProjectTeamAssignment.project_code)
            .filter(
                func.lower(ProjectTeamAssignment.user_email) == email,
                ProjectTeamAssignment.is_active.is_(True),
            )
            .distinct()
            .all()
        )
    return sorted({r[0] for r in rows})
