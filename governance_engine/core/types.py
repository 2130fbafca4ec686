"""
Enumerations and plain result records shared by resolvers, guards and services.

Results are dataclasses with a ``to_dict`` so they cross any process boundary
as JSON without dragging ORM objects along.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class WorkflowKey(str, Enum):
    GO_NO_GO = "GO_NO_GO"
    PMP_APPROVAL = "PMP_APPROVAL"
    MONTHLY_REVIEW = "MONTHLY_REVIEW"
    COMMITMENT_APPROVAL = "COMMITMENT_APPROVAL"
    TURNOVER_APPROVAL = "TURNOVER_APPROVAL"
    CONTRACT_TRACKING = "CONTRACT_TRACKING"


class StepAssignmentType(str, Enum):
    PROJECT_ROLE = "ProjectRole"
    NAMED_PERSON = "NamedPerson"


class ConditionField(str, Enum):
    """Lead fields a conditional assignment may match on."""
    DIVISION = "Division"
    REGION = "Region"
    SECTOR = "Sector"


class AssignmentSource(str, Enum):
    """Which resolution branch produced a step's assignee."""
    OVERRIDE = "Override"
    PROJECT_ROLE = "ProjectRole"
    CONDITION = "Condition"
    DEFAULT = "Default"


class AccessLevel(str, Enum):
    NONE = "NONE"
    READ_ONLY = "READ_ONLY"
    STANDARD = "STANDARD"
    ADMIN = "ADMIN"


class PermissionSource(str, Enum):
    SECURITY_GROUP_DEFAULT = "SecurityGroupDefault"
    PROJECT_OVERRIDE = "ProjectOverride"
    DIRECT_ASSIGNMENT = "DirectAssignment"


class SyncStatus(str, Enum):
    IDLE = "Idle"
    SYNCING = "Syncing"
    SUCCESS = "Success"
    FAILED = "Failed"


# ═════════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Assignee:
    """A person who can act on a workflow step.

    An empty ``user_id``/``email`` with a parenthesised display name is the
    sentinel for "nobody resolved"; see :func:`placeholder`.
    """
    user_id: str
    display_name: str
    email: str

    @property
    def is_placeholder(self) -> bool:
        return not self.user_id and not self.email

    @classmethod
    def from_dict(cls, data: dict | None) -> "Assignee | None":
        if not data:
            return None
        return cls(
            user_id=str(data.get("user_id") or data.get("userId") or ""),
            display_name=data.get("display_name") or data.get("displayName") or "",
            email=data.get("email") or "",
        )

    @classmethod
    def placeholder(cls, display_name: str = "(Unassigned)") -> "Assignee":
        return cls(user_id="", display_name=display_name, email="")

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "email": self.email,
        }


@dataclass(frozen=True)
class ResolvedWorkflowStep:
    step_id: int
    step_order: int
    name: str
    assignee: Assignee
    assignment_source: AssignmentSource
    is_conditional: bool
    condition_met: bool
    action_label: str
    can_chair_meeting: bool
    skipped: bool = False
    skip_reason: str | None = None

    def to_dict(self) -> dict:
        d = {
            "step_id": self.step_id,
            "step_order": self.step_order,
            "name": self.name,
            "assignee": self.assignee.to_dict(),
            "assignment_source": self.assignment_source.value,
            "is_conditional": self.is_conditional,
            "condition_met": self.condition_met,
            "action_label": self.action_label,
            "can_chair_meeting": self.can_chair_meeting,
        }
        if self.skipped:
            d["skipped"] = True
            d["skip_reason"] = self.skip_reason
        return d


@dataclass(frozen=True)
class ToolAccess:
    tool_key: str
    level: AccessLevel
    granular_flags: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "ToolAccess":
        """Raises ValueError for an entry without a ``tool_key``; an unknown level reads as NONE."""
        if not isinstance(data, dict) or not data.get("tool_key"):
            raise ValueError(f"Tool access entry without tool_key: {data!r}")
        raw_level = data.get("level") or AccessLevel.NONE.value
        try:
            level = AccessLevel(raw_level)
        except ValueError:
            level = AccessLevel.NONE
        return cls(
            tool_key=str(data["tool_key"]),
            level=level,
            granular_flags=tuple(data.get("granular_flags") or ()),
        )

    def to_dict(self) -> dict:
        return {
            "tool_key": self.tool_key,
            "level": self.level.value,
            "granular_flags": list(self.granular_flags),
        }


@dataclass(frozen=True)
class ResolvedPermissions:
    user_id: str
    project_code: str | None
    template_id: int
    template_name: str
    source: PermissionSource
    tool_levels: dict[str, AccessLevel] = field(default_factory=dict)
    granular_flags: dict[str, list[str]] = field(default_factory=dict)
    permissions: frozenset[str] = frozenset()
    global_access: bool = False

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "project_code": self.project_code,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "source": self.source.value,
            "tool_levels": {k: v.value for k, v in sorted(self.tool_levels.items())},
            "granular_flags": {k: list(v) for k, v in sorted(self.granular_flags.items())},
            "permissions": sorted(self.permissions),
            "global_access": self.global_access,
        }


@dataclass(frozen=True)
class SyncApproval:
    approver_email: str
    approved_at: str
    role: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "SyncApproval":
        return cls(
            approver_email=data.get("approver_email") or data.get("approverEmail") or "",
            approved_at=data.get("approved_at") or data.get("approvedAt") or "",
            role=data.get("role") or "",
        )
