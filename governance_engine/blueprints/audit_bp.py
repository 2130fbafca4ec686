"""
Governance audit trail blueprint.

Endpoints:
    GET  /api/v1/governance/audit               — list / filter audit logs
    GET  /api/v1/governance/audit/<int:log_id>  — single audit entry
"""

from flask import Blueprint, jsonify, request

from governance_engine.blueprints import paginate_query
from governance_engine.middleware.principal_context import require_permission
from governance_engine.models import db
from governance_engine.models.audit import AuditLog
from governance_engine.utils.errors import E, api_error

audit_bp = Blueprint("governance_audit", __name__, url_prefix="/api/v1/governance/audit")


@audit_bp.route("", methods=["GET"])
@require_permission("admin:config")
def list_audit_logs():
    """
    Return audit logs, newest first.

    Query params:
        entity_type     — filter by entity type
        entity_id       — filter by entity id
        action          — filter by action string (prefix match)
        actor           — filter by actor
        correlation_id  — filter by request correlation id
        limit / offset  — pagination
    """
    q = AuditLog.query

    entity_type = request.args.get("entity_type")
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)

    entity_id = request.args.get("entity_id")
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    actor = request.args.get("actor")
    if actor:
        q = q.filter(AuditLog.actor == actor.lower())

    correlation_id = request.args.get("correlation_id")
    if correlation_id:
        q = q.filter(AuditLog.correlation_id == correlation_id)

    items, total = paginate_query(q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()))
    return jsonify({"items": [a.to_dict() for a in items], "total": total}), 200


@audit_bp.route("/<int:log_id>", methods=["GET"])
@require_permission("admin:config")
def get_audit_log(log_id):
    log = db.session.get(AuditLog, log_id)
    if not log:
        return api_error(E.NOT_FOUND, "Audit log not found")
    return jsonify(log.to_dict()), 200
