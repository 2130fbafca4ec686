"""
Workflow Blueprint

Endpoints:
  GET    /api/v1/governance/workflows                          — List definitions
  GET    /api/v1/governance/workflows/:key                     — Definition with steps
  GET    /api/v1/governance/workflows/:key/chain/:project_code — Resolved chain
  GET    /api/v1/governance/workflows/overrides/:project_code  — Overrides for a project
  POST   /api/v1/governance/workflows/overrides                — Set a step override
  DELETE /api/v1/governance/workflows/overrides/:id            — Remove a step override
  PUT    /api/v1/governance/workflows/:key/steps/:step_id       — Edit a step
  POST   /api/v1/governance/workflows/steps/:step_id/conditions — Add a conditional assignment
  PUT    /api/v1/governance/workflows/conditions/:id            — Edit a conditional assignment
  DELETE /api/v1/governance/workflows/conditions/:id            — Remove a conditional assignment

Writes need workflow:manage.
"""

from flask import Blueprint, g, jsonify, request

from governance_engine.middleware.principal_context import require_permission, require_principal
from governance_engine.services import workflow_service as svc
from governance_engine.services.workflow_step_resolver import resolve_workflow_chain
from governance_engine.utils.errors import E, api_error

workflow_bp = Blueprint("governance_workflows", __name__, url_prefix="/api/v1/governance/workflows")


@workflow_bp.route("", methods=["GET"])
@require_principal
def list_workflows():
    include_inactive = request.args.get("include_inactive") == "true"
    items = svc.list_workflow_definitions(include_inactive=include_inactive)
    return jsonify([w.to_dict(include_steps=False) for w in items]), 200


@workflow_bp.route("/<workflow_key>", methods=["GET"])
@require_principal
def get_workflow(workflow_key):
    return jsonify(svc.get_workflow_definition(workflow_key).to_dict()), 200


@workflow_bp.route("/<workflow_key>/chain/<project_code>", methods=["GET"])
@require_principal
def get_chain(workflow_key, project_code):
    """Resolved assignee per step. Unknown workflow keys give an empty list."""
    chain = resolve_workflow_chain(workflow_key, project_code)
    return jsonify({
        "workflow_key": workflow_key,
        "project_code": project_code,
        "steps": [step.to_dict() for step in chain],
    }), 200


@workflow_bp.route("/overrides/<project_code>", methods=["GET"])
@require_principal
def list_overrides(project_code):
    items = svc.list_step_overrides(project_code, request.args.get("workflow_key"))
    return jsonify([o.to_dict() for o in items]), 200


@workflow_bp.route("/overrides", methods=["POST"])
@require_permission("workflow:manage")
def set_override():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("project_code", "workflow_key", "step_id", "assignee") if not data.get(k)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing fields: {', '.join(missing)}")
    override = svc.set_step_override(
        project_code=data["project_code"],
        workflow_key=data["workflow_key"],
        step_id=data["step_id"],
        assignee=data["assignee"],
        reason=data.get("reason"),
        actor=g.principal_email,
    )
    return jsonify(override.to_dict()), 201


@workflow_bp.route("/overrides/<int:override_id>", methods=["DELETE"])
@require_permission("workflow:manage")
def remove_override(override_id):
    svc.remove_step_override(override_id, actor=g.principal_email)
    return jsonify({"message": "Deleted"}), 200


@workflow_bp.route("/<workflow_key>/steps/<int:step_id>", methods=["PUT"])
@require_permission("workflow:manage")
def update_step(workflow_key, step_id):
    data = request.get_json(silent=True) or {}
    step = svc.update_workflow_step(workflow_key, step_id, data, actor=g.principal_email)
    return jsonify(step.to_dict()), 200


@workflow_bp.route("/steps/<int:step_id>/conditions", methods=["POST"])
@require_permission("workflow:manage")
def add_condition(step_id):
    data = request.get_json(silent=True) or {}
    if not data.get("assignee"):
        return api_error(E.VALIDATION_REQUIRED, "Missing fields: assignee")
    rule = svc.add_conditional_assignment(step_id, data, actor=g.principal_email)
    return jsonify(rule.to_dict()), 201


@workflow_bp.route("/conditions/<int:assignment_id>", methods=["PUT"])
@require_permission("workflow:manage")
def update_condition(assignment_id):
    data = request.get_json(silent=True) or {}
    rule = svc.update_conditional_assignment(assignment_id, data, actor=g.principal_email)
    return jsonify(rule.to_dict()), 200


@workflow_bp.route("/conditions/<int:assignment_id>", methods=["DELETE"])
@require_permission("workflow:manage")
def remove_condition(assignment_id):
    svc.remove_conditional_assignment(assignment_id, actor=g.principal_email)
    return jsonify({"message": "Deleted"}), 200
