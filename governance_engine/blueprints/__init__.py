"""
Governance Engine
Blueprint registry.
"""

from flask import request


def paginate_query(query, default_limit=100, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 100, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_blueprints(app):
    from governance_engine.blueprints.audit_bp import audit_bp
    from governance_engine.blueprints.feature_flag_bp import feature_flag_bp
    from governance_engine.blueprints.permission_bp import permission_bp
    from governance_engine.blueprints.role_config_bp import role_config_bp
    from governance_engine.blueprints.site_template_bp import site_template_bp
    from governance_engine.blueprints.workflow_bp import workflow_bp

    for bp in (workflow_bp, permission_bp, role_config_bp, feature_flag_bp, site_template_bp, audit_bp):
        app.register_blueprint(bp)
