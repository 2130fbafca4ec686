"""
Feature Flag Service

Lookup and toggling of global feature flags.

Two lookup policies:
  - Workflow gating is fail-open: a flag name nobody registered counts as
    enabled (FEATURE_FLAG_FAIL_OPEN), so a typo in a step definition never
    hides an approval step.
  - ``require_feature`` guards privileged operations and is fail-closed.
"""

import logging

from governance_engine.core.exceptions import FeatureFlagViolationError, NotFoundError
from governance_engine.models import db
from governance_engine.models.audit import write_audit
from governance_engine.models.feature_flag import FeatureFlag

logger = logging.getLogger(__name__)

FEATURE_FLAG_FAIL_OPEN = True

SITE_TEMPLATE_MANAGEMENT = "SiteTemplateManagement"


def list_flags():
    """Return all feature flags."""
    return [f.to_dict() for f in FeatureFlag.query.order_by(FeatureFlag.feature_name).all()]


def get_flag_by_name(feature_name):
    """Return a single flag by name, or None."""
    return FeatureFlag.query.filter_by(feature_name=feature_name).first()


def is_enabled(feature_name, *, fail_open=FEATURE_FLAG_FAIL_OPEN):
    """Whether the named flag is on. Unknown names resolve to ``fail_open``."""
    flag = get_flag_by_name(feature_name)
    if flag is None:
        return fail_open
    return bool(flag.enabled)


def require_feature(feature_name):
    """Raise FeatureFlagViolationError unless the flag exists and is on."""
    if not is_enabled(feature_name, fail_open=False):
        logger.warning("Blocked operation gated by disabled feature %s", feature_name)
        raise FeatureFlagViolationError(feature_name)


def set_flag_enabled(flag_id, enabled, *, actor="system"):
    """Toggle a flag and audit the change."""
    flag = db.session.get(FeatureFlag, flag_id)
    if not flag:
        raise NotFoundError(resource="FeatureFlag", resource_id=flag_id)
    before = flag.to_dict()
    flag.enabled = bool(enabled)
    flag.updated_by = actor
    db.session.flush()
    write_audit(
        entity_type="feature_flag",
        entity_id=flag.id,
        action="feature_flag.toggled",
        actor=actor,
        before=before,
        after=flag.to_dict(),
    )
    db.session.commit()
    logger.info("Feature flag %s → %s (by %s)", flag.feature_name, flag.enabled, actor)
    return flag
