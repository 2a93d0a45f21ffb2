"""Config flow for Prayer Alerts integration."""

from __future__ import annotations

import logging
from typing import Any

# Set up logging FIRST, before any other operations
_LOGGER = logging.getLogger(__name__)

try:
    import voluptuous as vol
except ImportError as e:
    _LOGGER.error("Prayer Alerts config_flow.py: Failed to import voluptuous: %s", e)
    raise

try:
    from homeassistant.config_entries import ConfigEntry, ConfigFlow, ConfigFlowResult, OptionsFlow
    from homeassistant.const import CONF_NAME
    from homeassistant.core import callback
    from homeassistant.helpers.aiohttp_client import async_get_clientsession
    from homeassistant.helpers.selector import (
        BooleanSelector,
        NumberSelector,
        NumberSelectorConfig,
        NumberSelectorMode,
        SelectSelector,
        SelectSelectorConfig,
        SelectSelectorMode,
        TextSelector,
    )
    from homeassistant.util import dt as dt_util
except ImportError as e:
    _LOGGER.error("Prayer Alerts config_flow.py: Failed to import HA modules: %s", e)
    raise

from .const import (
    ALERT_SOUNDS,
    CALC_METHODS,
    CONF_ALERT_SOUND,
    CONF_CALC_METHOD,
    CONF_DEBUG_LOGGING,
    CONF_LATITUDE,
    CONF_LONGITUDE,
    CONF_LOOKAHEAD_DAYS,
    CONF_MUTED_SESSIONS,
    CONF_NOTIFY_SERVICE,
    CONF_REFRESH_INTERVAL,
    CONF_REMINDER_LEAD_MINUTES,
    CONF_SCHOOL,
    DEFAULT_ALERT_SOUND,
    DEFAULT_CALC_METHOD,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_LOOKAHEAD_DAYS,
    DEFAULT_NAME,
    DEFAULT_NOTIFY_SERVICE,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_REMINDER_LEAD_MINUTES,
    DEFAULT_SCHOOL,
    DOMAIN,
    MAX_LOOKAHEAD_DAYS,
    REMINDER_LEAD_OPTIONS,
    SCHOOLS,
)
from .models import PrayerSession, PrayerTimesUnavailable
from .prayer_times import AladhanPrayerTimeSource


def _lead_options() -> list[dict[str, str]]:
    return [
        {"value": str(minutes), "label": "Off" if minutes == 0 else f"{minutes} minutes before"}
        for minutes in REMINDER_LEAD_OPTIONS
    ]


def _session_options() -> list[dict[str, str]]:
    return [{"value": session.value, "label": session.value} for session in PrayerSession]


def _int_keyed_options(options: dict[int, str]) -> list[dict[str, str]]:
    return [{"value": str(key), "label": label} for key, label in options.items()]


class PrayerAlertsConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Prayer Alerts."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> OptionsFlow:
        """Get the options flow for this handler."""
        return PrayerAlertsOptionsFlow(config_entry)

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the location step."""
        errors: dict[str, str] = {}

        if user_input is not None:
            data = {
                CONF_LATITUDE: float(user_input[CONF_LATITUDE]),
                CONF_LONGITUDE: float(user_input[CONF_LONGITUDE]),
                CONF_CALC_METHOD: int(user_input[CONF_CALC_METHOD]),
                CONF_SCHOOL: int(user_input[CONF_SCHOOL]),
            }
            await self.async_set_unique_id(f"{data[CONF_LATITUDE]:.4f}_{data[CONF_LONGITUDE]:.4f}")
            self._abort_if_unique_id_configured()

            source = AladhanPrayerTimeSource(
                async_get_clientsession(self.hass),
                data[CONF_LATITUDE],
                data[CONF_LONGITUDE],
                method=data[CONF_CALC_METHOD],
                school=data[CONF_SCHOOL],
            )
            try:
                await source.async_fetch_day(dt_util.now().date())
            except PrayerTimesUnavailable as err:
                _LOGGER.warning("Prayer Alerts: prayer time check failed: %s", err)
                errors["base"] = "cannot_connect"
            else:
                return self.async_create_entry(
                    title=user_input.get(CONF_NAME) or DEFAULT_NAME,
                    data=data,
                )

        defaults = user_input or {}
        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {
                    vol.Required(
                        CONF_NAME, default=defaults.get(CONF_NAME, DEFAULT_NAME)
                    ): TextSelector(),
                    vol.Required(
                        CONF_LATITUDE,
                        default=defaults.get(CONF_LATITUDE, self.hass.config.latitude),
                    ): NumberSelector(
                        NumberSelectorConfig(min=-90, max=90, step="any", mode=NumberSelectorMode.BOX)
                    ),
                    vol.Required(
                        CONF_LONGITUDE,
                        default=defaults.get(CONF_LONGITUDE, self.hass.config.longitude),
                    ): NumberSelector(
                        NumberSelectorConfig(min=-180, max=180, step="any", mode=NumberSelectorMode.BOX)
                    ),
                    vol.Required(
                        CONF_CALC_METHOD,
                        default=str(defaults.get(CONF_CALC_METHOD, DEFAULT_CALC_METHOD)),
                    ): SelectSelector(
                        SelectSelectorConfig(
                            options=_int_keyed_options(CALC_METHODS),
                            mode=SelectSelectorMode.DROPDOWN,
                        )
                    ),
                    vol.Required(
                        CONF_SCHOOL,
                        default=str(defaults.get(CONF_SCHOOL, DEFAULT_SCHOOL)),
                    ): SelectSelector(
                        SelectSelectorConfig(
                            options=_int_keyed_options(SCHOOLS),
                            mode=SelectSelectorMode.DROPDOWN,
                        )
                    ),
                }
            ),
            errors=errors,
        )


class PrayerAlertsOptionsFlow(OptionsFlow):
    """Handle options flow (notification preferences) for Prayer Alerts."""

    _options_data: dict[str, Any]

    def __init__(self, config_entry: ConfigEntry) -> None:
        """Initialize options flow."""
        super().__init__()
        # Options take precedence over data
        self._options_data = dict(config_entry.options)
        self._current = {**config_entry.data, **config_entry.options}

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Step 1: Notification preferences."""
        if user_input is not None:
            self._options_data.update(
                {
                    CONF_REMINDER_LEAD_MINUTES: int(user_input[CONF_REMINDER_LEAD_MINUTES]),
                    CONF_MUTED_SESSIONS: list(user_input.get(CONF_MUTED_SESSIONS, [])),
                    CONF_ALERT_SOUND: user_input[CONF_ALERT_SOUND],
                    CONF_NOTIFY_SERVICE: str(user_input[CONF_NOTIFY_SERVICE]).strip()
                    or DEFAULT_NOTIFY_SERVICE,
                }
            )
            return await self.async_step_schedule()

        current = self._current

        return self.async_show_form(
            step_id="init",
            data_schema=vol.Schema(
                {
                    vol.Required(
                        CONF_REMINDER_LEAD_MINUTES,
                        default=str(
                            current.get(CONF_REMINDER_LEAD_MINUTES, DEFAULT_REMINDER_LEAD_MINUTES)
                        ),
                    ): SelectSelector(
                        SelectSelectorConfig(
                            options=_lead_options(),
                            mode=SelectSelectorMode.DROPDOWN,
                        )
                    ),
                    vol.Optional(
                        CONF_MUTED_SESSIONS,
                        default=list(current.get(CONF_MUTED_SESSIONS, [])),
                    ): SelectSelector(
                        SelectSelectorConfig(
                            options=_session_options(),
                            multiple=True,
                            mode=SelectSelectorMode.LIST,
                        )
                    ),
                    vol.Required(
                        CONF_ALERT_SOUND,
                        default=current.get(CONF_ALERT_SOUND, DEFAULT_ALERT_SOUND),
                    ): SelectSelector(
                        SelectSelectorConfig(
                            options=[
                                {"value": value, "label": label}
                                for value, label in ALERT_SOUNDS.items()
                            ],
                            mode=SelectSelectorMode.DROPDOWN,
                        )
                    ),
                    vol.Required(
                        CONF_NOTIFY_SERVICE,
                        default=current.get(CONF_NOTIFY_SERVICE, DEFAULT_NOTIFY_SERVICE),
                    ): TextSelector(),
                }
            ),
        )

    async def async_step_schedule(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Step 2: Refresh window and diagnostics."""
        if user_input is not None:
            self._options_data.update(
                {
                    CONF_LOOKAHEAD_DAYS: int(user_input[CONF_LOOKAHEAD_DAYS]),
                    CONF_REFRESH_INTERVAL: int(user_input[CONF_REFRESH_INTERVAL]),
                    CONF_DEBUG_LOGGING: bool(user_input[CONF_DEBUG_LOGGING]),
                }
            )
            return self.async_create_entry(title="", data=self._options_data)

        current = self._current

        return self.async_show_form(
            step_id="schedule",
            data_schema=vol.Schema(
                {
                    vol.Required(
                        CONF_LOOKAHEAD_DAYS,
                        default=current.get(CONF_LOOKAHEAD_DAYS, DEFAULT_LOOKAHEAD_DAYS),
                    ): NumberSelector(
                        NumberSelectorConfig(
                            min=1,
                            max=MAX_LOOKAHEAD_DAYS,
                            step=1,
                            mode=NumberSelectorMode.SLIDER,
                        )
                    ),
                    vol.Required(
                        CONF_REFRESH_INTERVAL,
                        default=current.get(CONF_REFRESH_INTERVAL, DEFAULT_REFRESH_INTERVAL),
                    ): NumberSelector(
                        NumberSelectorConfig(
                            min=5,
                            max=720,
                            step=5,
                            unit_of_measurement="min",
                            mode=NumberSelectorMode.BOX,
                        )
                    ),
                    vol.Required(
                        CONF_DEBUG_LOGGING,
                        default=current.get(CONF_DEBUG_LOGGING, DEFAULT_DEBUG_LOGGING),
                    ): BooleanSelector(),
                }
            ),
        )
