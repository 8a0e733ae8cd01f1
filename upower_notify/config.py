# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from .errors import ConfigError
from .rules import Rule, NotifyAction, find_unreachable
from .transitions import TransitionKind
from .upower import DEFAULT_DEVICE

logger = logging.getLogger(__name__)

DEFAULT_RULES = (
    Rule(
        on=TransitionKind.ENTERED_CRITICAL,
        notify=NotifyAction(
            summary="Battery critically low",
            body="Shutting down soon unless plugged in. ({percentage}%)",
            icon="battery-caution-symbolic",
            urgency="critical",
            timeout=0,
        ),
    ),
    Rule(
        on=TransitionKind.ENTERED_LOW,
        notify=NotifyAction(
            summary="Battery low",
            body="Approximately <b>{time}</b> remaining ({percentage}%)",
            icon="battery-low-symbolic",
            urgency="normal",
            timeout=30000,
        ),
    ),
    Rule(
        on=TransitionKind.REACHED_FULL,
        notify=NotifyAction(
            summary="Battery full",
            body="The battery is fully charged ({percentage}%)",
            icon="battery-full-charged-symbolic",
            urgency="low",
            timeout=5000,
        ),
    ),
)


class Config(BaseModel):
    """
    The whole daemon configuration, as read from the TOML config file. Every key is optional, the
    default values are the ones below.

    ```toml
    device = "/org/freedesktop/UPower/devices/battery_BAT0"
    low_threshold = 20
    critical_threshold = 5

    [[rule]]
    on = "entered-critical"
    exec = { argv = ["systemctl", "hibernate"] }

    [[rule]]
    on = ["entered-low", "exited-low"]
    percentage = [0, 30]
    notify = { summary = "Battery at {percentage}%", urgency = "normal" }
    ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    device: str = DEFAULT_DEVICE
    critical_threshold: int = Field(default=5, ge=0, le=100)
    low_threshold: int = Field(default=20, ge=0, le=100)
    full_threshold: int = Field(default=100, ge=0, le=100)
    exit_low_margin: int = Field(default=5, ge=1, le=100)
    # Seconds a command may run before being killed, 0 lets it run forever
    command_timeout: float = Field(default=60, ge=0)
    replace_notifications: bool = True
    # Seconds to wait for the notification server before giving up on a notification
    notify_timeout: float = Field(default=10.0, gt=0)
    reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, gt=0)
    reconnect_max_delay: float = Field(default=30.0, gt=0)
    queue_size: int = Field(default=64, ge=1)
    rules: tuple[Rule, ...] = Field(default=DEFAULT_RULES, alias="rule")

    @model_validator(mode="after")
    def check_consistency(self) -> "Config":
        """Thresholds must be ordered and every rule must be reachable"""
        if self.critical_threshold >= self.low_threshold:
            raise ValueError(
                f"critical_threshold ({self.critical_threshold}) must be lower than "
                f"low_threshold ({self.low_threshold})"
            )
        if self.full_threshold <= self.low_threshold:
            raise ValueError(
                f"full_threshold ({self.full_threshold}) must be higher than "
                f"low_threshold ({self.low_threshold})"
            )

        problems = [
            f"rule #{shadowed + 1} ({self.rules[shadowed].describe()}) is never reached because "
            f"rule #{shadowing + 1} ({self.rules[shadowing].describe()}) always matches first"
            for shadowing, shadowed in find_unreachable(list(self.rules))
        ]
        if problems:
            raise ValueError("; ".join(problems))

        return self


def load_config(config_file: str, required: bool = True) -> Config:
    """
    Reads and validates the config file. When it is not `required` and does not exist, the default
    configuration is used instead.

    Raises `ConfigError` for anything that prevents having a valid configuration.
    """
    try:
        with open(config_file, "rb") as file:
            data = tomllib.load(file)
    except FileNotFoundError as err:
        if required:
            raise ConfigError(f"Config file not found at '{config_file}'") from err
        logger.info("No config file at '%s', using the default configuration", config_file)
        data = {}
    except OSError as err:
        raise ConfigError(f"Unable to read config file '{config_file}': {err}") from err
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(f"Config file '{config_file}' is not valid TOML: {err}") from err

    try:
        config = Config.model_validate(data)
    except ValidationError as err:
        raise ConfigError(f"Invalid config file '{config_file}':\n{err}") from err

    logger.debug("Config loaded: %s", config)
    return config
