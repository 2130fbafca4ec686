"""
Role Configuration Blueprint

Endpoints:
  GET    /api/v1/governance/roles        — List active roles (?include_inactive=true for all)
  POST   /api/v1/governance/roles        — Create custom role
  GET    /api/v1/governance/roles/:id    — Get role (soft-deleted included)
  PUT    /api/v1/governance/roles/:id    — Update allow-listed fields
  DELETE /api/v1/governance/roles/:id    — Soft delete (system roles refused)

Create/update are subject to the per-principal rate limit and the
self-escalation check; refusals come back as 429 / 403.
"""

import logging

from flask import Blueprint, g, jsonify, request

from governance_engine.middleware.principal_context import require_permission
from governance_engine.services import role_config_service as svc

logger = logging.getLogger(__name__)

role_config_bp = Blueprint("governance_roles", __name__, url_prefix="/api/v1/governance/roles")


@role_config_bp.route("", methods=["GET"])
@require_permission("admin:roles")
def list_roles():
    include_inactive = request.args.get("include_inactive") == "true"
    roles = svc.list_role_configurations(include_inactive=include_inactive)
    return jsonify([r.to_dict() for r in roles]), 200


@role_config_bp.route("", methods=["POST"])
@require_permission("admin:roles")
def create_role():
    data = request.get_json(silent=True) or {}
    role = svc.create_role_configuration(data, actor=g.principal_email)
    return jsonify(role.to_dict()), 201


@role_config_bp.route("/<int:role_id>", methods=["GET"])
@require_permission("admin:roles")
def get_role(role_id):
    return jsonify(svc.get_role_configuration(role_id).to_dict()), 200


@role_config_bp.route("/<int:role_id>", methods=["PUT"])
@require_permission("admin:roles")
def update_role(role_id):
    data = request.get_json(silent=True) or {}
    role = svc.update_role_configuration(role_id, data, actor=g.principal_email)
    return jsonify(role.to_dict()), 200


@role_config_bp.route("/<int:role_id>", methods=["DELETE"])
@require_permission("admin:roles")
def delete_role(role_id):
    role = svc.delete_role_configuration(role_id, actor=g.principal_email)
    return jsonify(role.to_dict()), 200
