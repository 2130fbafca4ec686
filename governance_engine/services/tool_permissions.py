"""
Tool Permission Catalogue

Maps each tool's access level and granular flags to permission strings.
Templates store only ``{tool_key, level, granular_flags}``; this registry is
what turns them into the flat permission set the rest of the app checks.

Unknown tool keys and unknown flag keys contribute nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from governance_engine.core.types import AccessLevel, ToolAccess


@dataclass(frozen=True)
class GranularFlag:
    key: str
    label: str
    permissions: tuple[str, ...]


@dataclass(frozen=True)
class ToolDefinition:
    tool_key: str
    tool_group: str
    label: str
    levels: dict[AccessLevel, tuple[str, ...]]
    granular_flags: tuple[GranularFlag, ...] = field(default_factory=tuple)

    def flag(self, key: str) -> GranularFlag | None:
        for f in self.granular_flags:
            if f.key == key:
                return f
        return None


def _levels(read_only=(), standard=(), admin=()) -> dict[AccessLevel, tuple[str, ...]]:
    return {
        AccessLevel.NONE: (),
        AccessLevel.READ_ONLY: tuple(read_only),
        AccessLevel.STANDARD: tuple(standard),
        AccessLevel.ADMIN: tuple(admin),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════

TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    # Preconstruction
    ToolDefinition(
        "leads", "preconstruction", "Lead Management",
        _levels(
            ["lead:read"],
            ["lead:read", "lead:edit", "lead:create"],
            ["lead:read", "lead:edit", "lead:create", "lead:delete"],
        ),
        (
            GranularFlag("can_delete_leads", "Delete Leads", ("lead:delete",)),
            GranularFlag("can_decide_gonogo", "Go/No-Go Decision", ("gonogo:decide",)),
        ),
    ),
    ToolDefinition(
        "gonogo", "preconstruction", "Go/No-Go Scorecard",
        _levels(
            ["gonogo:read"],
            ["gonogo:read", "gonogo:score:originator", "gonogo:submit"],
            ["gonogo:read", "gonogo:score:originator", "gonogo:score:committee",
             "gonogo:submit", "gonogo:decide"],
        ),
        (GranularFlag("can_score_committee", "Committee Scoring", ("gonogo:score:committee",)),),
    ),
    ToolDefinition(
        "estimating", "preconstruction", "Estimating Tracker",
        _levels(
            ["estimating:read", "precon:read"],
            ["estimating:read", "estimating:edit", "precon:read", "precon:edit"],
            ["estimating:read", "estimating:edit", "precon:read", "precon:edit", "precon:hub:view"],
        ),
    ),
    ToolDefinition(
        "kickoff", "preconstruction", "Estimating Kickoff",
        _levels(["kickoff:view"], ["kickoff:view", "kickoff:edit"],
                ["kickoff:view", "kickoff:edit", "kickoff:template:edit"]),
    ),
    ToolDefinition(
        "job_number", "preconstruction", "Job Number Request",
        _levels([], ["job_number_request:create"],
                ["job_number_request:create", "job_number_request:finalize"]),
    ),
    # Operations
    ToolDefinition(
        "project_hub", "operations", "Project Hub",
        _levels(["project:hub:view"], ["project:hub:view"], ["project:hub:view"]),
    ),
    ToolDefinition(
        "active_projects", "operations", "Active Projects",
        _levels(["active_projects:view"], ["active_projects:view"],
                ["active_projects:view", "active_projects:sync"]),
    ),
    ToolDefinition(
        "pmp", "operations", "Project Management Plan",
        _levels([], ["pmp:edit", "pmp:sign"],
                ["pmp:edit", "pmp:approve", "pmp:final:approve", "pmp:sign"]),
        (GranularFlag("can_approve_pmp", "PMP Approval", ("pmp:approve",)),),
    ),
    ToolDefinition(
        "buyout_log", "operations", "Buyout Log",
        _levels(
            ["buyout:view"],
            ["buyout:view", "buyout:edit", "commitment:submit"],
            ["buyout:view", "buyout:edit", "buyout:manage", "commitment:submit",
             "commitment:approve:px", "commitment:approve:cfo", "commitment:escalate"],
        ),
        (GranularFlag("can_approve_commitments", "Commitment Approval", ("commitment:approve:px",)),),
    ),
    ToolDefinition(
        "schedule", "operations", "Schedule",
        _levels(["schedule:view"], ["schedule:view", "schedule:edit", "schedule:import"],
                ["schedule:view", "schedule:edit", "schedule:import", "schedule:manage"]),
    ),
    ToolDefinition(
        "monthly_review", "operations", "Monthly Review",
        _levels([], ["monthly:review:pm"],
                ["monthly:review:pm", "monthly:review:px", "monthly:review:create"]),
        (GranularFlag("can_review_as_px", "PX Review", ("monthly:review:px",)),),
    ),
    ToolDefinition(
        "contract_tracking", "operations", "Contract Tracking",
        _levels(["contract:read"], ["contract:read", "contract:edit"],
                ["contract:read", "contract:edit", "contract:approve"]),
    ),
    ToolDefinition(
        "turnover", "operations", "Turnover",
        _levels(["turnover:read"], ["turnover:read", "turnover:edit"],
                ["turnover:read", "turnover:edit", "turnover:approve"]),
    ),
    # Admin
    ToolDefinition(
        "admin_panel", "admin", "Admin Panel",
        _levels(
            ["admin:config"],
            ["admin:config", "admin:flags"],
            ["admin:roles", "admin:flags", "admin:config", "admin:connections",
             "admin:provisioning", "permission:templates:manage",
             "permission:project_team:manage"],
        ),
        (GranularFlag("can_manage_templates", "Site Template Management", ("admin:templates:sync",)),),
    ),
    ToolDefinition(
        "workflow_definitions", "admin", "Workflow Definitions",
        _levels([], ["workflow:manage"], ["workflow:manage"]),
    ),
)

TOOLS_BY_KEY: dict[str, ToolDefinition] = {t.tool_key: t for t in TOOL_DEFINITIONS}

# Granted to every principal whose template resolved.
BASELINE_PERMISSIONS: frozenset[str] = frozenset({
    "meeting:read",
    "precon:read",
    "proposal:read",
    "winloss:read",
    "contract:read",
    "turnover:read",
    "closeout:read",
})


def flatten_tool_access(tool_access: list[ToolAccess]) -> set[str]:
    """Union of level permissions and granular-flag permissions, plus the baseline."""
    permissions: set[str] = set()
    for access in tool_access:
        definition = TOOLS_BY_KEY.get(access.tool_key)
        if definition is None:
            continue
        permissions.update(definition.levels.get(access.level, ()))
        for flag_key in access.granular_flags:
            flag = definition.flag(flag_key)
            if flag is not None:
                permissions.update(flag.permissions)
    permissions.update(BASELINE_PERMISSIONS)
    return permissions


def all_known_permissions() -> set[str]:
    """Every permission string any template could grant."""
    perms = set(BASELINE_PERMISSIONS)
    for definition in TOOL_DEFINITIONS:
        for level_perms in definition.levels.values():
            perms.update(level_perms)
        for flag in definition.granular_flags:
            perms.update(flag.permissions)
    return perms
