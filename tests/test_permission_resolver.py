"""
Permission resolution tests

Covers:
  - Security-group default via role → group → mapping
  - Fallback to the default template when a group has no mapping
  - Project template override and granular flag merge
  - Fail-closed on missing/inactive templates
  - Global access and accessible project listing
  - Determinism and non-mutation of configuration
  - Tool permission catalogue flattening
"""

import copy

from governance_engine.core.types import AccessLevel, PermissionSource, ToolAccess
from governance_engine.models import db
from governance_engine.models.permission import (
    PermissionTemplate,
    ProjectTeamAssignment,
    SecurityGroupMapping,
)
from governance_engine.models.project import Lead, Principal
from governance_engine.services.permission_resolver import (
    READ_ONLY_GROUP,
    get_accessible_projects,
    resolve_permissions,
    security_group_for,
)
from governance_engine.services.tool_permissions import (
    BASELINE_PERMISSIONS,
    all_known_permissions,
    flatten_tool_access,
)

PM_EMAIL = "pm@example.com"
PROJECT = "25-042-01"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _make_template(name, tool_access, **kw):
    tpl = PermissionTemplate(name=name, tool_access=tool_access, **kw)
    db.session.add(tpl)
    db.session.flush()
    return tpl


def _map_group(group, template):
    db.session.add(SecurityGroupMapping(security_group_name=group, default_template_id=template.id))
    db.session.flush()


def _make_principal(email=PM_EMAIL, role="Project Manager", **kw):
    db.session.add(Principal(email=email, display_name=email.split("@")[0], role_name=role, **kw))
    db.session.flush()


def _assign(email=PM_EMAIL, project=PROJECT, template=None, granular=None, **kw):
    a = ProjectTeamAssignment(
        user_email=email, project_code=project, assigned_role="Project Manager",
        template_override_id=template.id if template else None,
        granular_flag_overrides=granular, **kw,
    )
    db.session.add(a)
    db.session.flush()
    return a


def _pm_template():
    return _make_template("Project Manager", [
        {"tool_key": "pmp", "level": "STANDARD", "granular_flags": []},
        {"tool_key": "buyout_log", "level": "STANDARD", "granular_flags": []},
    ])


# ═══════════════════════════════════════════════════════════════════════════════
# A — Security group default
# ═══════════════════════════════════════════════════════════════════════════════


class TestSecurityGroupDefault:

    def test_role_maps_to_group_template(self):
        tpl = _pm_template()
        _map_group("Project Managers", tpl)
        _make_principal()

        resolved = resolve_permissions(PM_EMAIL)
        assert resolved.template_id == tpl.id
        assert resolved.template_name == "Project Manager"
        assert resolved.source is PermissionSource.SECURITY_GROUP_DEFAULT
        assert resolved.has("pmp:edit")
        assert resolved.has("buyout:edit")
        assert not resolved.has("pmp:approve")
        assert resolved.tool_levels["pmp"] is AccessLevel.STANDARD

    def test_email_lookup_is_case_insensitive(self):
        tpl = _pm_template()
        _map_group("Project Managers", tpl)
        _make_principal()

        assert resolve_permissions("PM@Example.COM").template_id == tpl.id

    def test_unknown_principal_maps_to_read_only_group(self):
        assert security_group_for("stranger@example.com") == READ_ONLY_GROUP

    def test_unknown_role_maps_to_read_only_group(self):
        _make_principal(role="Chief Vibes Officer")
        assert security_group_for(PM_EMAIL) == READ_ONLY_GROUP

    def test_inactive_principal_maps_to_read_only_group(self):
        _make_principal(is_active=False)
        assert security_group_for(PM_EMAIL) == READ_ONLY_GROUP

    def test_unmapped_group_falls_back_to_default_template(self):
        default = _make_template("Read Only", [
            {"tool_key": "leads", "level": "READ_ONLY", "granular_flags": []},
        ], is_default=True)
        _make_principal()

        resolved = resolve_permissions(PM_EMAIL)
        assert resolved.template_id == default.id
        assert resolved.has("lead:read")
        assert not resolved.has("lead:edit")

    def test_baseline_permissions_granted(self):
        tpl = _pm_template()
        _map_group("Project Managers", tpl)
        _make_principal()

        resolved = resolve_permissions(PM_EMAIL)
        assert BASELINE_PERMISSIONS <= resolved.permissions


# ═══════════════════════════════════════════════════════════════════════════════
# B — Project layer
# ═══════════════════════════════════════════════════════════════════════════════


class TestProjectLayer:

    def test_project_override_replaces_group_template(self):
        _map_group("Project Managers", _pm_template())
        px = _make_template("Project Executive", [
            {"tool_key": "pmp", "level": "ADMIN", "granular_flags": []},
        ])
        _make_principal()
        _assign(template=px)

        resolved = resolve_permissions(PM_EMAIL, PROJECT)
        assert resolved.template_id == px.id
        assert resolved.source is PermissionSource.PROJECT_OVERRIDE
        assert resolved.has("pmp:approve")

    def test_override_applies_only_to_its_project(self):
        pm = _pm_template()
        _map_group("Project Managers", pm)
        px = _make_template("Project Executive", [
            {"tool_key": "pmp", "level": "ADMIN", "granular_flags": []},
        ])
        _make_principal()
        _assign(template=px)

        assert resolve_permissions(PM_EMAIL, "99-000-00").template_id == pm.id
        assert resolve_permissions(PM_EMAIL).template_id == pm.id

    def test_inactive_assignment_is_ignored(self):
        pm = _pm_template()
        _map_group("Project Managers", pm)
        px = _make_template("Project Executive", [
            {"tool_key": "pmp", "level": "ADMIN", "granular_flags": []},
        ])
        _make_principal()
        _assign(template=px, is_active=False)

        assert resolve_permissions(PM_EMAIL, PROJECT).template_id == pm.id

    def test_granular_flags_append_to_matching_tool(self):
        _map_group("Project Managers", _pm_template())
        _make_principal()
        _assign(granular=[{"tool_key": "pmp", "flags": ["can_approve_pmp"]}])

        resolved = resolve_permissions(PM_EMAIL, PROJECT)
        assert resolved.has("pmp:approve")
        assert resolved.granular_flags["pmp"] == ["can_approve_pmp"]
        assert resolved.source is PermissionSource.SECURITY_GROUP_DEFAULT

    def test_granular_flags_for_absent_tool_contribute_nothing(self):
        _map_group("Project Managers", _pm_template())
        _make_principal()
        _assign(granular=[{"tool_key": "leads", "flags": ["can_delete_leads"]}])

        assert not resolve_permissions(PM_EMAIL, PROJECT).has("lead:delete")

    def test_granular_merge_does_not_mutate_template(self):
        tpl = _pm_template()
        _map_group("Project Managers", tpl)
        _make_principal()
        _assign(granular=[{"tool_key": "pmp", "flags": ["can_approve_pmp"]}])
        snapshot = copy.deepcopy(tpl.tool_access)

        resolve_permissions(PM_EMAIL, PROJECT)
        assert tpl.tool_access == snapshot
        assert not resolve_permissions(PM_EMAIL).has("pmp:approve")

    def test_global_template_ignores_granular_flags(self):
        tpl = _make_template("Executive", [
            {"tool_key": "pmp", "level": "STANDARD", "granular_flags": []},
        ], is_global=True, global_access=True)
        _map_group("Executive Leadership", tpl)
        _make_principal(role="Leadership")
        _assign(granular=[{"tool_key": "pmp", "flags": ["can_approve_pmp"]}])

        assert resolve_permissions(PM_EMAIL, PROJECT).permissions == resolve_permissions(PM_EMAIL).permissions


# ═══════════════════════════════════════════════════════════════════════════════
# C — Fail closed
# ═══════════════════════════════════════════════════════════════════════════════


class TestFailClosed:

    def test_no_template_anywhere_is_empty(self):
        _make_principal()
        resolved = resolve_permissions(PM_EMAIL)
        assert resolved.permissions == frozenset()
        assert resolved.template_id == 0
        assert resolved.template_name == "Unknown"
        assert resolved.global_access is False

    def test_inactive_template_is_empty(self):
        tpl = _make_template("Retired", [
            {"tool_key": "leads", "level": "ADMIN", "granular_flags": []},
        ], is_active=False)
        _map_group("Project Managers", tpl)
        _make_principal()

        assert resolve_permissions(PM_EMAIL).permissions == frozenset()

    def test_override_to_inactive_template_is_empty(self):
        _map_group("Project Managers", _pm_template())
        retired = _make_template("Retired PX", [
            {"tool_key": "pmp", "level": "ADMIN", "granular_flags": []},
        ], is_active=False)
        _make_principal()
        _assign(template=retired)

        resolved = resolve_permissions(PM_EMAIL, PROJECT)
        assert resolved.permissions == frozenset()
        assert resolved.source is PermissionSource.PROJECT_OVERRIDE

    def test_entry_without_tool_key_grants_nothing(self):
        _make_template("Broken default", [{"level": "ADMIN"}], is_default=True)

        resolved = resolve_permissions("x@example.com")
        assert resolved.template_name == "Broken default"
        assert resolved.permissions == frozenset(BASELINE_PERMISSIONS)
        assert resolved.tool_levels == {}

    def test_malformed_entries_are_skipped_valid_ones_kept(self):
        tpl = _make_template("Partly broken", [
            {"level": "ADMIN"},
            "leads",
            None,
            {"tool_key": "pmp", "level": "STANDARD", "granular_flags": []},
        ])
        _map_group("Project Managers", tpl)
        _make_principal()

        resolved = resolve_permissions(PM_EMAIL)
        assert resolved.tool_levels == {"pmp": AccessLevel.STANDARD}
        assert resolved.has("pmp:edit")
        assert not resolved.has("lead:delete")

    def test_non_list_tool_access_grants_only_baseline(self):
        _make_template("Scalar", {"tool_key": "leads", "level": "ADMIN"}, is_default=True)
        assert resolve_permissions("x@example.com").permissions == frozenset(BASELINE_PERMISSIONS)

    def test_malformed_granular_overrides_are_ignored(self):
        _map_group("Project Managers", _pm_template())
        _make_principal()
        _assign(granular=["can_approve_pmp", {"tool_key": "pmp", "flags": ["can_approve_pmp"]}])

        assert resolve_permissions(PM_EMAIL, PROJECT).has("pmp:approve")


# ═══════════════════════════════════════════════════════════════════════════════
# D — Accessible projects & determinism
# ═══════════════════════════════════════════════════════════════════════════════


class TestAccessibleProjects:

    def test_global_access_sees_every_project(self):
        tpl = _make_template("Executive", [], is_global=True, global_access=True)
        _map_group("Executive Leadership", tpl)
        _make_principal(role="Leadership")
        for code in ("25-002-01", "25-001-01"):
            db.session.add(Lead(title=code, project_code=code))
        db.session.add(Lead(title="Unwon lead"))
        db.session.flush()

        assert get_accessible_projects(PM_EMAIL) == ["25-001-01", "25-002-01"]

    def test_scoped_principal_sees_assigned_projects(self):
        _map_group("Project Managers", _pm_template())
        _make_principal()
        _assign(project="25-010-01")
        _assign(project="25-003-01")
        _assign(project="25-099-01", is_active=False)
        db.session.add(Lead(title="Other", project_code="25-777-01"))
        db.session.flush()

        assert get_accessible_projects(PM_EMAIL) == ["25-003-01", "25-010-01"]

    def test_resolution_is_deterministic(self):
        _map_group("Project Managers", _pm_template())
        _make_principal()
        _assign(granular=[{"tool_key": "pmp", "flags": ["can_approve_pmp"]}])

        first = resolve_permissions(PM_EMAIL, PROJECT)
        second = resolve_permissions(PM_EMAIL, PROJECT)
        assert first.to_dict() == second.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# E — Tool catalogue
# ═══════════════════════════════════════════════════════════════════════════════


class TestToolCatalogue:

    def test_unknown_tool_and_flag_contribute_only_baseline(self):
        perms = flatten_tool_access([
            ToolAccess("no_such_tool", AccessLevel.ADMIN, ("whatever",)),
            ToolAccess("leads", AccessLevel.NONE, ("no_such_flag",)),
        ])
        assert perms == set(BASELINE_PERMISSIONS)

    def test_admin_panel_flag_grants_template_sync(self):
        perms = flatten_tool_access([
            ToolAccess("admin_panel", AccessLevel.READ_ONLY, ("can_manage_templates",)),
        ])
        assert "admin:templates:sync" in perms
        assert "admin:roles" not in perms

    def test_catalogue_covers_every_level_permission(self):
        known = all_known_permissions()
        assert {"lead:delete", "gonogo:decide", "pmp:final:approve", "admin:templates:sync"} <= known
