"""
Feature Flag Blueprint

Endpoints:
  GET /api/v1/governance/feature-flags           — List all flags
  GET /api/v1/governance/feature-flags/:name     — Single flag by feature name
  PUT /api/v1/governance/feature-flags/:id       — Toggle ({"enabled": bool})
"""

from flask import Blueprint, g, jsonify, request

from governance_engine.middleware.principal_context import require_permission, require_principal
from governance_engine.services import feature_flag_service as svc
from governance_engine.utils.errors import E, api_error

feature_flag_bp = Blueprint("governance_flags", __name__, url_prefix="/api/v1/governance/feature-flags")


@feature_flag_bp.route("", methods=["GET"])
@require_principal
def list_flags():
    """List all feature flags."""
    return jsonify(svc.list_flags()), 200


@feature_flag_bp.route("/<feature_name>", methods=["GET"])
@require_principal
def get_flag(feature_name):
    flag = svc.get_flag_by_name(feature_name)
    if not flag:
        return api_error(E.NOT_FOUND, "Flag not found")
    return jsonify(flag.to_dict()), 200


@feature_flag_bp.route("/<int:flag_id>", methods=["PUT"])
@require_permission("admin:flags")
def toggle_flag(flag_id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled (boolean) is required")
    flag = svc.set_flag_enabled(flag_id, data["enabled"], actor=g.principal_email)
    return jsonify(flag.to_dict()), 200
