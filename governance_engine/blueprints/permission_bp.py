"""
Permission Blueprint

Endpoints:
  GET  /api/v1/governance/permissions/me                  — Caller's resolved permissions (?project_code=)
  GET  /api/v1/governance/permissions/me/projects         — Project codes the caller may access
  GET  /api/v1/governance/permissions/users/:email        — Someone else's resolution (admin)
  GET  /api/v1/governance/permissions/templates           — Permission templates
  GET  /api/v1/governance/permissions/group-mappings      — Security group → template mappings
  POST /api/v1/governance/permissions/templates/promote   — Promote templates to the next tier
  GET  /api/v1/governance/permissions/catalogue           — Tools, levels, flags and every known permission

  POST   /templates                  GET/PUT/DELETE /templates/:id
  POST   /group-mappings             PUT            /group-mappings/:id
  GET    /me/assignments             — Caller's active project team assignments
  GET    /project-team               — Active assignments (?project_code= narrows)
  POST   /project-team               PUT/DELETE     /project-team/:id

Template and mapping writes need permission:templates:manage, project team
writes permission:project_team:manage. Grants beyond the caller's own
permissions come back as 403 ERR_PERMISSION_ESCALATION.
"""

from flask import Blueprint, g, jsonify, request

from governance_engine.middleware.principal_context import require_permission, require_principal
from governance_engine.services import permission_template_service as tpl_svc
from governance_engine.services import project_team_service as team_svc
from governance_engine.services.permission_resolver import (
    get_accessible_projects,
    resolve_permissions,
)
from governance_engine.services.tool_permissions import TOOL_DEFINITIONS, all_known_permissions
from governance_engine.utils.errors import E, api_error

permission_bp = Blueprint(
    "governance_permissions", __name__, url_prefix="/api/v1/governance/permissions",
)


@permission_bp.route("/me", methods=["GET"])
@require_principal
def my_permissions():
    resolved = resolve_permissions(g.principal_email, request.args.get("project_code"))
    return jsonify(resolved.to_dict()), 200


@permission_bp.route("/me/projects", methods=["GET"])
@require_principal
def my_projects():
    return jsonify({"project_codes": get_accessible_projects(g.principal_email)}), 200


@permission_bp.route("/users/<path:email>", methods=["GET"])
@require_permission("permission:templates:manage")
def user_permissions(email):
    resolved = resolve_permissions(email, request.args.get("project_code"))
    return jsonify(resolved.to_dict()), 200


@permission_bp.route("/templates", methods=["GET"])
@require_permission("permission:templates:manage")
def list_templates():
    include_inactive = request.args.get("include_inactive") == "true"
    items = tpl_svc.list_permission_templates(include_inactive=include_inactive)
    return jsonify([t.to_dict() for t in items]), 200


@permission_bp.route("/group-mappings", methods=["GET"])
@require_permission("permission:templates:manage")
def list_group_mappings():
    return jsonify([m.to_dict() for m in tpl_svc.list_security_group_mappings()]), 200


@permission_bp.route("/templates/promote", methods=["POST"])
@require_permission("permission:templates:manage")
def promote():
    data = request.get_json(silent=True) or {}
    if not data.get("from_tier") or not data.get("to_tier"):
        return api_error(E.VALIDATION_REQUIRED, "from_tier and to_tier are required")
    summary = tpl_svc.promote_templates(data["from_tier"], data["to_tier"], actor=g.principal_email)
    return jsonify(summary), 200


@permission_bp.route("/catalogue", methods=["GET"])
@require_principal
def catalogue():
    tools = [
        {
            "tool_key": t.tool_key,
            "tool_group": t.tool_group,
            "label": t.label,
            "levels": {level.value: list(perms) for level, perms in t.levels.items()},
            "granular_flags": [
                {"key": f.key, "label": f.label, "permissions": list(f.permissions)}
                for f in t.granular_flags
            ],
        }
        for t in TOOL_DEFINITIONS
    ]
    return jsonify({"tools": tools, "permissions": sorted(all_known_permissions())}), 200


# ── Templates ────────────────────────────────────────────────────────────


@permission_bp.route("/templates", methods=["POST"])
@require_permission("permission:templates:manage")
def create_template():
    data = request.get_json(silent=True) or {}
    template = tpl_svc.create_permission_template(data, actor=g.principal_email)
    return jsonify(template.to_dict()), 201


@permission_bp.route("/templates/<int:template_id>", methods=["GET"])
@require_permission("permission:templates:manage")
def get_template(template_id):
    return jsonify(tpl_svc.get_permission_template(template_id).to_dict()), 200


@permission_bp.route("/templates/<int:template_id>", methods=["PUT"])
@require_permission("permission:templates:manage")
def update_template(template_id):
    data = request.get_json(silent=True) or {}
    template = tpl_svc.update_permission_template(template_id, data, actor=g.principal_email)
    return jsonify(template.to_dict()), 200


@permission_bp.route("/templates/<int:template_id>", methods=["DELETE"])
@require_permission("permission:templates:manage")
def delete_template(template_id):
    template = tpl_svc.delete_permission_template(template_id, actor=g.principal_email)
    return jsonify(template.to_dict()), 200


# ── Group mappings ───────────────────────────────────────────────────────


@permission_bp.route("/group-mappings", methods=["POST"])
@require_permission("permission:templates:manage")
def create_group_mapping():
    data = request.get_json(silent=True) or {}
    mapping = tpl_svc.create_security_group_mapping(data, actor=g.principal_email)
    return jsonify(mapping.to_dict()), 201


@permission_bp.route("/group-mappings/<int:mapping_id>", methods=["PUT"])
@require_permission("permission:templates:manage")
def update_group_mapping(mapping_id):
    data = request.get_json(silent=True) or {}
    mapping = tpl_svc.update_security_group_mapping(mapping_id, data, actor=g.principal_email)
    return jsonify(mapping.to_dict()), 200


# ── Project team ─────────────────────────────────────────────────────────


@permission_bp.route("/me/assignments", methods=["GET"])
@require_principal
def my_assignments():
    return jsonify([a.to_dict() for a in team_svc.list_assignments_for(g.principal_email)]), 200


@permission_bp.route("/project-team", methods=["GET"])
@require_permission("permission:project_team:manage")
def list_project_team():
    project_code = request.args.get("project_code")
    if project_code:
        items = team_svc.list_project_team_assignments(project_code)
    else:
        items = team_svc.list_all_project_team_assignments()
    return jsonify([a.to_dict() for a in items]), 200


@permission_bp.route("/project-team", methods=["POST"])
@require_permission("permission:project_team:manage")
def create_project_team_assignment():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("user_email", "project_code", "assigned_role") if not data.get(k)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing fields: {', '.join(missing)}")
    assignment = team_svc.create_project_team_assignment(data, actor=g.principal_email)
    return jsonify(assignment.to_dict()), 201


@permission_bp.route("/project-team/<int:assignment_id>", methods=["PUT"])
@require_permission("permission:project_team:manage")
def update_project_team_assignment(assignment_id):
    data = request.get_json(silent=True) or {}
    assignment = team_svc.update_project_team_assignment(assignment_id, data, actor=g.principal_email)
    return jsonify(assignment.to_dict()), 200


@permission_bp.route("/project-team/<int:assignment_id>", methods=["DELETE"])
@require_permission("permission:project_team:manage")
def remove_project_team_assignment(assignment_id):
    assignment = team_svc.remove_project_team_assignment(assignment_id, actor=g.principal_email)
    return jsonify(assignment.to_dict()), 200
