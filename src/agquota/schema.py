"""Schema of the GetUserStatus payload and its conversion to snapshots."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agquota.errors import FetchFailure
from agquota.models import ModelQuota, PromptCredits, QuotaSnapshot


class _RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", protected_namespaces=())


class QuotaInfo(_RawModel):
    """Usage numbers of one model. Any field may be missing."""

    remaining_fraction: float | None = Field(default=None, alias="remainingFraction")
    used: float | None = None
    limit: float | None = None
    remaining: float | None = None
    reset_time: str | None = Field(default=None, alias="resetTime")


class ModelOrAlias(_RawModel):
    model: str | None = None
    alias: str | None = None


class ClientModelConfig(_RawModel):
    """One entry of clientModelConfigs."""

    label: str = "Unknown"
    model_or_alias: ModelOrAlias | None = Field(default=None, alias="modelOrAlias")
    quota_info: QuotaInfo | None = Field(default=None, alias="quotaInfo")
    # Some builds put the counters on the entry itself
    used: float | None = None
    limit: float | None = None
    remaining: float | None = None
    is_exhausted: bool | None = Field(default=None, alias="isExhausted")

    @property
    def model_id(self) -> str:
        if self.model_or_alias is not None:
            if self.model_or_alias.model:
                return self.model_or_alias.model
            if self.model_or_alias.alias:
                return self.model_or_alias.alias
        return self.label


class CascadeModelConfigData(_RawModel):
    client_model_configs: list[ClientModelConfig] = Field(
        default_factory=list, alias="clientModelConfigs"
    )


class PlanInfo(_RawModel):
    plan_name: str | None = Field(default=None, alias="planName")
    monthly_prompt_credits: int | None = Field(default=None, alias="monthlyPromptCredits")


class PlanStatus(_RawModel):
    plan_info: PlanInfo | None = Field(default=None, alias="planInfo")
    available_prompt_credits: int | None = Field(default=None, alias="availablePromptCredits")


class UserStatus(_RawModel):
    name: str | None = None
    email: str | None = None
    plan_status: PlanStatus | None = Field(default=None, alias="planStatus")
    cascade_model_config_data: CascadeModelConfigData | None = Field(
        default=None, alias="cascadeModelConfigData"
    )


class UserStatusResponse(_RawModel):
    user_status: UserStatus = Field(alias="userStatus")


def compute_remaining_percentage(entry: ClientModelConfig) -> float | None:
    """
    Derive the remaining share of a model's quota in percent.

    Tries used/limit, then remaining/limit, then remainingFraction. Returns
    None when none of them is usable, so "unknown" stays distinct from 0.
    """
    info = entry.quota_info or QuotaInfo()
    used = info.used if info.used is not None else entry.used
    limit = info.limit if info.limit is not None else entry.limit
    remaining = info.remaining if info.remaining is not None else entry.remaining

    if limit is not None and limit > 0:
        if used is not None:
            value = (limit - used) * 100 / limit
        elif remaining is not None:
            value = remaining * 100 / limit
        else:
            value = None
    else:
        value = None

    if value is None and info.remaining_fraction is not None:
        value = info.remaining_fraction * 100

    if value is None:
        return None
    return max(0.0, min(100.0, float(value)))


def parse_reset_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time_until(reset_time: datetime | None, now: datetime) -> str:
    """Format the time left until ``reset_time`` as e.g. '4h 12m'."""
    if reset_time is None:
        return "N/A"

    seconds = int((reset_time - now).total_seconds())
    if seconds <= 0:
        return "now"

    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return "<1m"


def to_model_quota(entry: ClientModelConfig, now: datetime) -> ModelQuota:
    remaining_percentage = compute_remaining_percentage(entry)
    if remaining_percentage is None:
        is_exhausted = bool(entry.is_exhausted)
    else:
        is_exhausted = remaining_percentage == 0

    reset_time = parse_reset_time(entry.quota_info.reset_time if entry.quota_info else None)
    return ModelQuota(
        model_id=entry.model_id,
        label=entry.label,
        remaining_percentage=remaining_percentage,
        is_exhausted=is_exhausted,
        time_until_reset_formatted=format_time_until(reset_time, now),
        reset_time=reset_time,
    )


def to_prompt_credits(plan_status: PlanStatus | None) -> PromptCredits | None:
    if plan_status is None or plan_status.plan_info is None:
        return None
    available = plan_status.available_prompt_credits
    monthly = plan_status.plan_info.monthly_prompt_credits
    if available is None or monthly is None:
        return None
    return PromptCredits(available=available, monthly=monthly)


def parse_user_status(payload: Any, now: datetime | None = None) -> QuotaSnapshot:
    """
    Convert a raw GetUserStatus payload into a QuotaSnapshot.

    Raises:
        FetchFailure: The payload does not have the expected structure.
    """
    if not isinstance(payload, dict):
        raise FetchFailure("quota response is not a JSON object")
    try:
        response = UserStatusResponse.model_validate(payload)
    except ValidationError as exc:
        raise FetchFailure(f"malformed quota response: {exc.error_count()} error(s)") from exc

    now = now or datetime.now(timezone.utc)
    status = response.user_status
    entries = (
        status.cascade_model_config_data.client_model_configs
        if status.cascade_model_config_data
        else []
    )
    return QuotaSnapshot(
        timestamp=now,
        models=tuple(to_model_quota(entry, now) for entry in entries),
        prompt_credits=to_prompt_credits(status.plan_status),
    )
