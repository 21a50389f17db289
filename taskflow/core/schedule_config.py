import logging
import re
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from taskflow.core.errors import ConfigValidationError
from taskflow.models.workflow import ScheduleConfig, WorkflowKind

logger = logging.getLogger("taskflow.schedule_config")

TIME_OF_DAY_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

DEFAULT_TIMES = {
    WorkflowKind.MORNING: "09:00",
    WorkflowKind.EVENING: "18:00",
}


def parse_time_of_day(value: str) -> time:
    """Parse a local 'HH:MM' string."""
    match = TIME_OF_DAY_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid time of day '{value}', expected H:MM or HH:MM (00:00-23:59)")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone '{name}'") from exc


def available_timezone_names() -> List[str]:
    return sorted(available_timezones())


class ScheduleConfigUpdate(BaseModel):
    """Partial update of a schedule. Unset fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    time_of_day: Optional[str] = None
    timezone: Optional[str] = None
    channel_id: Optional[str] = None

    @field_validator("time_of_day")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            return parse_time_of_day(value).strftime("%H:%M")
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            load_timezone(value)
        return value


class ScheduleConfigStore:
    """
    Per-kind schedule configuration. Both kinds are seeded with defaults on
    first access.
    """

    def __init__(self, session_factory, default_timezone: str = "UTC", default_channel_id: Optional[str] = None):
        self._session_factory = session_factory
        self._default_timezone = default_timezone
        self._default_channel_id = default_channel_id

    def _default_config(self, kind: WorkflowKind) -> ScheduleConfig:
        return ScheduleConfig(
            kind=kind,
            enabled=True,
            time_of_day=DEFAULT_TIMES[kind],
            timezone=self._default_timezone,
            channel_id=self._default_channel_id or f"taskflow-{kind.value}-workflow",
        )

    async def _ensure_defaults(self, session) -> None:
        result = await session.execute(select(ScheduleConfig.kind))
        existing = set(result.scalars().all())
        missing = [kind for kind in WorkflowKind if kind not in existing]
        if not missing:
            return

        for kind in missing:
            session.add(self._default_config(kind))
        try:
            await session.commit()
            logger.info(f"Seeded default schedules: {', '.join(k.value for k in missing)}")
        except IntegrityError:
            # Another caller seeded concurrently
            await session.rollback()

    async def get(self, kind: WorkflowKind) -> ScheduleConfig:
        async with self._session_factory() as session:
            await self._ensure_defaults(session)
            return await session.get(ScheduleConfig, WorkflowKind(kind))

    async def get_all(self) -> List[ScheduleConfig]:
        async with self._session_factory() as session:
            await self._ensure_defaults(session)
            result = await session.execute(select(ScheduleConfig))
            configs = list(result.scalars().all())
            return sorted(configs, key=lambda c: list(WorkflowKind).index(c.kind))

    async def update(
        self, kind: WorkflowKind, fields: Union[Dict[str, Any], ScheduleConfigUpdate]
    ) -> ScheduleConfig:
        """Apply a validated partial update. Raises ConfigValidationError on bad input."""
        try:
            kind = WorkflowKind(kind)
        except ValueError as exc:
            raise ConfigValidationError(f"Unknown workflow kind '{kind}'", field="kind") from exc

        if isinstance(fields, ScheduleConfigUpdate):
            changes = fields
        else:
            try:
                changes = ScheduleConfigUpdate.model_validate(fields)
            except ValidationError as exc:
                first = exc.errors()[0]
                field = ".".join(str(p) for p in first.get("loc", ())) or None
                raise ConfigValidationError(first.get("msg", str(exc)), field=field) from exc

        async with self._session_factory() as session:
            await self._ensure_defaults(session)
            config = await session.get(ScheduleConfig, kind)
            for name, value in changes.model_dump(exclude_unset=True).items():
                if value is None:
                    continue
                setattr(config, name, value)
            config.updated_at = datetime.utcnow()
            session.add(config)
            await session.commit()
            await session.refresh(config)

        logger.info(
            f"Schedule updated: {kind.value} enabled={config.enabled} time={config.time_of_day} tz={config.timezone}"
        )
        return config
