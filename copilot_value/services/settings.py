"""Settings service: named application settings stored in the relational database."""

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings, persist_env
from ..jobs.schedule import metrics_scheduler
from ..models import Setting

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    "metricsCronExpression": "0 * * * *",
    "timezone": "UTC",
    "devCostPerYear": 0,
    "developerCount": 0,
    "hoursPerYear": 2000,
    "percentCoding": 50,
    "percentTimeSaved": 20,
    "daysInactive": 30,
}

# Settings mirrored into the environment (and .env) when they change
ENV_SETTINGS = {
    "webhookProxyUrl": "WEBHOOK_PROXY_URL",
    "webhookSecret": "GITHUB_WEBHOOK_SECRET",
}


class SettingsNotFoundError(Exception):
    """Setting does not exist."""
    pass


class SettingsService:
    """Service for reading and writing settings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def initialize_settings(self) -> None:
        """Seed ``baseUrl`` from the environment when it was never stored."""
        try:
            base_url = await self.get_setting("baseUrl")
            logger.debug(f"Using stored baseUrl {base_url}")
        except SettingsNotFoundError:
            await self.update_setting("baseUrl", get_settings().base_url)

    async def get_all_settings(self) -> dict[str, Any]:
        """Every setting by name; defaults fill in names never stored."""
        result = await self.session.execute(select(Setting))
        stored = {setting.name: setting.value for setting in result.scalars()}
        return {**DEFAULT_SETTINGS, **stored}

    async def get_setting(self, name: str) -> Any:
        setting = await self.session.get(Setting, name)
        if setting is not None:
            return setting.value
        if name in DEFAULT_SETTINGS:
            return DEFAULT_SETTINGS[name]
        raise SettingsNotFoundError(f"Setting {name} not found")

    async def update_setting(self, name: str, value: Any) -> Setting:
        """Upsert a setting and apply its side effects."""
        if name in ENV_SETTINGS:
            persist_env({ENV_SETTINGS[name]: "" if value is None else str(value)})
        elif name == "metricsCronExpression":
            metrics_scheduler.reschedule(str(value))

        setting = await self.session.get(Setting, name)
        if setting is None:
            setting = Setting(name=name, value=value)
            self.session.add(setting)
        else:
            setting.value = value
        await self.session.flush()
        logger.info(f"Setting {name} updated")
        return setting

    async def update_settings(self, values: dict[str, Any]) -> dict[str, Any]:
        for name, value in values.items():
            await self.update_setting(name, value)
        return await self.get_all_settings()

    async def delete_setting(self, name: str) -> None:
        """Drop the stored value; names with a default fall back to it."""
        result = await self.session.execute(delete(Setting).where(Setting.name == name))
        if result.rowcount == 0 and name not in DEFAULT_SETTINGS:
            raise SettingsNotFoundError(f"Setting {name} not found")
        logger.info(f"Setting {name} deleted")
