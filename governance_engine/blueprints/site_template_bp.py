"""
Site Template Blueprint

Endpoints:
  GET  /api/v1/governance/site-templates             — List templates
  POST /api/v1/governance/site-templates             — Create (content validated)
  GET  /api/v1/governance/site-templates/:id         — Get template
  PUT  /api/v1/governance/site-templates/:id         — Update (content validated)
  POST /api/v1/governance/site-templates/:id/sync    — Publish ({"approvals": [...]})

A sync whose executor fails still answers with the template; the response
status is 502 and ``sync_status`` is "Failed".
"""

from flask import Blueprint, current_app, g, jsonify, request

from governance_engine.core.types import SyncStatus
from governance_engine.middleware.principal_context import require_permission, require_principal
from governance_engine.services import site_template_service as svc

site_template_bp = Blueprint(
    "governance_templates", __name__, url_prefix="/api/v1/governance/site-templates",
)

# app.extensions key for an alternative sync executor (tests, integrations)
SYNC_EXECUTOR_KEY = "governance_sync_executor"


@site_template_bp.route("", methods=["GET"])
@require_principal
def list_templates():
    include_inactive = request.args.get("include_inactive") == "true"
    return jsonify([t.to_dict() for t in svc.list_site_templates(include_inactive)]), 200


@site_template_bp.route("", methods=["POST"])
@require_permission("admin:provisioning")
def create_template():
    data = request.get_json(silent=True) or {}
    template = svc.create_site_template(data, actor=g.principal_email)
    return jsonify(template.to_dict()), 201


@site_template_bp.route("/<int:template_id>", methods=["GET"])
@require_principal
def get_template(template_id):
    return jsonify(svc.get_site_template(template_id).to_dict()), 200


@site_template_bp.route("/<int:template_id>", methods=["PUT"])
@require_permission("admin:provisioning")
def update_template(template_id):
    data = request.get_json(silent=True) or {}
    template = svc.update_site_template(template_id, data, actor=g.principal_email)
    return jsonify(template.to_dict()), 200


@site_template_bp.route("/<int:template_id>/sync", methods=["POST"])
@require_permission("admin:templates:sync")
def sync_template(template_id):
    data = request.get_json(silent=True) or {}
    template = svc.sync_template(
        template_id,
        data.get("approvals") or [],
        actor=g.principal_email,
        executor=current_app.extensions.get(SYNC_EXECUTOR_KEY),
    )
    status = 200 if template.status is SyncStatus.SUCCESS else 502
    return jsonify(template.to_dict()), status
