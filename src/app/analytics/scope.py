"""Role resolution: which records a dashboard user may see.

A Scope carries the same visibility rules in two forms so that the SQL record
source and in-memory sources cannot drift apart:

- Python predicates (allows_deal, allows_callback, ...) for already-loaded
  records and document-store data.
- SQLAlchemy clauses (deal_clause, callback_clause, target_clause) applied in
  the WHERE of the SQL record source. None means "no restriction".

Rules:
    manager                      everything
    salesman                     own deals (sales or closing agent), own
                                 callbacks, own targets
    team_leader + managed team   own records OR records of the managed team;
                                 targets they own or manage
    team_leader, no managed team same as salesman
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from src.app.analytics.errors import ScopeValidationError
from src.app.analytics.schemas import Callback, Deal, Notification, Target, UserRole

BROADCAST_RECIPIENT = "all"

_ROLE_ALIASES: dict[str, UserRole] = {
    "manager": UserRole.MANAGER,
    "admin": UserRole.MANAGER,
    "salesman": UserRole.SALESMAN,
    "team_leader": UserRole.TEAM_LEADER,
    "teamleader": UserRole.TEAM_LEADER,
}


def parse_role(value: str | None) -> UserRole:
    """Parse a role string case-insensitively; ``team-leader`` is accepted."""
    if value is None or not value.strip():
        raise ScopeValidationError("userRole is required")
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _ROLE_ALIASES[key]
    except KeyError:
        raise ScopeValidationError(f"Unknown userRole '{value}'") from None


@dataclass(frozen=True)
class Scope:
    """Visibility rules for one user."""

    role: UserRole
    user_id: str | None = None
    managed_team: str | None = None

    @property
    def unrestricted(self) -> bool:
        return self.role is UserRole.MANAGER

    @property
    def team(self) -> str | None:
        """The team whose records are visible in addition to the user's own."""
        if self.role is UserRole.TEAM_LEADER and self.managed_team:
            return self.managed_team
        return None

    @property
    def can_list_users(self) -> bool:
        return self.unrestricted

    # ── Python predicates ───────────────────────────────────────────────────

    def allows_deal(self, deal: Deal) -> bool:
        if self.unrestricted:
            return True
        if self.team is not None:
            return deal.sales_agent_id == self.user_id or deal.team == self.team
        return self.user_id in (deal.sales_agent_id, deal.closing_agent_id)

    def allows_callback(self, callback: Callback) -> bool:
        if self.unrestricted:
            return True
        if callback.sales_agent_id == self.user_id:
            return True
        return self.team is not None and callback.team == self.team

    def allows_target(self, target: Target) -> bool:
        if self.unrestricted:
            return True
        if target.agent_id == self.user_id:
            return True
        if self.team is None:
            return False
        return target.manager_id == self.user_id or (
            target.team is not None and target.team == self.team
        )

    def allows_notification(self, notification: Notification) -> bool:
        if self.unrestricted:
            return True
        recipients = {r.lower() for r in notification.recipients}
        tokens = {BROADCAST_RECIPIENT, self.role.value, self.role.value.replace("_", "-")}
        if self.user_id:
            tokens.add(self.user_id.lower())
        if recipients & tokens:
            return True
        if self.user_id and notification.sales_agent_id == self.user_id:
            return True
        return self.team is not None and notification.team == self.team

    def allows(self, entity: str, record: Any) -> bool:
        """Dispatch to the predicate for ``entity``."""
        if entity == "deals":
            return self.allows_deal(record)
        if entity == "callbacks":
            return self.allows_callback(record)
        if entity == "targets":
            return self.allows_target(record)
        if entity == "notifications":
            return self.allows_notification(record)
        if entity == "users":
            return self.can_list_users
        raise ValueError(f"Unknown entity type: {entity}")

    # ── SQLAlchemy clauses ──────────────────────────────────────────────────

    def deal_clause(self, model: Any) -> ColumnElement[bool] | None:
        if self.unrestricted:
            return None
        if self.team is not None:
            return or_(model.sales_agent_id == self.user_id, model.team == self.team)
        return or_(
            model.sales_agent_id == self.user_id,
            model.closing_agent_id == self.user_id,
        )

    def callback_clause(self, model: Any) -> ColumnElement[bool] | None:
        if self.unrestricted:
            return None
        if self.team is not None:
            return or_(model.sales_agent_id == self.user_id, model.team == self.team)
        return model.sales_agent_id == self.user_id

    def target_clause(self, model: Any) -> ColumnElement[bool] | None:
        if self.unrestricted:
            return None
        if self.team is None:
            return model.agent_id == self.user_id
        conditions = [model.agent_id == self.user_id, model.manager_id == self.user_id]
        # The upstream targets table has no team column; only match on it when mapped.
        if hasattr(model, "team"):
            conditions.append(model.team == self.team)
        return or_(*conditions)


def resolve_scope(
    role: str | UserRole | None,
    user_id: str | None,
    managed_team: str | None = None,
) -> Scope:
    """Build the Scope for a request.

    Raises:
        ScopeValidationError: role missing or unknown, or user id missing for
            a non-manager role.
    """
    parsed = role if isinstance(role, UserRole) else parse_role(role)
    user_id = (user_id or "").strip() or None
    managed_team = (managed_team or "").strip() or None

    if parsed is not UserRole.MANAGER and user_id is None:
        raise ScopeValidationError("userId is required for non-manager roles")

    return Scope(role=parsed, user_id=user_id, managed_team=managed_team)
