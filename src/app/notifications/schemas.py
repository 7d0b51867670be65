"""Request schemas for the notification endpoints."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class NotificationCreate(BaseModel):
    """Body of POST /notifications.

    ``recipients`` also accepts the legacy ``to`` key. Entries are user ids,
    role names, or ``all`` for a broadcast.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: str = "info"
    priority: str = "medium"
    sender: str | None = Field(default=None, validation_alias=AliasChoices("sender", "from"))
    sender_name: str | None = Field(default=None, validation_alias=AliasChoices("sender_name", "senderName"))
    recipients: list[str] = Field(validation_alias=AliasChoices("recipients", "to"))
    deal_id: str | None = Field(default=None, validation_alias=AliasChoices("deal_id", "dealId"))
    callback_id: str | None = Field(default=None, validation_alias=AliasChoices("callback_id", "callbackId"))
    target_id: str | None = Field(default=None, validation_alias=AliasChoices("target_id", "targetId"))
    sales_agent_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sales_agent_id", "salesAgentId")
    )
    team: str | None = None

    @field_validator("recipients")
    @classmethod
    def recipients_not_empty(cls, value: list[str]) -> list[str]:
        cleaned = [r.strip() for r in value if r and r.strip()]
        if not cleaned:
            raise ValueError("Notifications require a non-empty recipients list")
        return list(dict.fromkeys(cleaned))


class MarkAllReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
    user_role: str = Field(validation_alias=AliasChoices("user_role", "userRole"))
    managed_team: str | None = Field(
        default=None, validation_alias=AliasChoices("managed_team", "managedTeam")
    )


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))
