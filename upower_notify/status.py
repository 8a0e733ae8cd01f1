# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import math
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from .utils.dbus_client import unwrap

logger = logging.getLogger(__name__)


class BatteryState(Enum):
    """The current state of the battery, reduced to what the rules care about"""

    CHARGING = "charging"
    DISCHARGING = "discharging"
    FULL = "full"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BatteryStatus:
    """
    A snapshot of the battery at a given instant. A new one is created for every event received from
    the power service, superseding the previous one.
    """

    percentage: int
    state: BatteryState
    timestamp: float = field(default_factory=time.monotonic, compare=False)
    time_to_empty: int = 0
    time_to_full: int = 0

    @property
    def remaining_time(self) -> int:
        """Seconds until the battery is either empty or full, depending on where it is heading"""
        if self.state == BatteryState.CHARGING:
            return self.time_to_full
        return self.time_to_empty


# UPower `State` property values
# See: https://upower.freedesktop.org/docs/Device.html#Device:State
UPOWER_STATES = {
    0: BatteryState.UNKNOWN,  # Unknown
    1: BatteryState.CHARGING,  # Charging
    2: BatteryState.DISCHARGING,  # Discharging
    3: BatteryState.DISCHARGING,  # Empty
    4: BatteryState.FULL,  # Fully charged
    5: BatteryState.UNKNOWN,  # Pending charge
    6: BatteryState.UNKNOWN,  # Pending discharge
}

# Textual forms, as printed by `upower -i` or read from /sys/class/power_supply/*/status
TEXTUAL_STATES = {
    "unknown": BatteryState.UNKNOWN,
    "charging": BatteryState.CHARGING,
    "discharging": BatteryState.DISCHARGING,
    "empty": BatteryState.DISCHARGING,
    "full": BatteryState.FULL,
    "fully-charged": BatteryState.FULL,
    "fully charged": BatteryState.FULL,
    "pending-charge": BatteryState.UNKNOWN,
    "pending-discharge": BatteryState.UNKNOWN,
    "not charging": BatteryState.UNKNOWN,
}


class StatusNormalizer:
    """
    Converts the raw properties sent by UPower into a complete `BatteryStatus`.

    UPower only sends the properties that have changed, so the normalizer keeps the last value of
    each one and merges every change on top of them. Bad values coming from the device are never
    fatal: they are logged and replaced by the closest sensible value.
    """

    # Used until the device tells us anything, so that a missing value never looks like an alarm
    DEFAULT_PERCENTAGE = 100

    def __init__(self):
        self.percentage: int | None = None
        self.state = BatteryState.UNKNOWN
        self.properties = {}

    def normalize(self, changes: dict) -> BatteryStatus:
        """
        Merges the changed properties into the last known ones and returns the resulting snapshot
        """
        for name, value in changes.items():
            value = unwrap(value)
            match name:
                case "Percentage":
                    self.update_percentage(value)
                case "State":
                    self.state = self.parse_state(value)
                case _:
                    self.properties[name] = value

        if self.percentage is None:
            self.update_percentage(self._percentage_from_energy(), quiet=True)

        return BatteryStatus(
            percentage=(
                self.DEFAULT_PERCENTAGE if self.percentage is None else self.percentage
            ),
            state=self.state,
            time_to_empty=self._seconds("TimeToEmpty"),
            time_to_full=self._seconds("TimeToFull"),
        )

    def update_percentage(self, raw: any, quiet: bool = False):
        """
        Rounds and clamps a raw percentage value, keeping the previous one if it is not a number
        """
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = math.nan

        if math.isnan(value):
            if not quiet:
                logger.warning("Ignoring invalid battery percentage: %r", raw)
            return

        if not 0 <= value <= 100:
            logger.warning("Battery percentage out of range, clamping it: %s", value)

        self.percentage = round(min(100.0, max(0.0, value)))

    @staticmethod
    def parse_state(raw: any) -> BatteryState:
        """
        Maps either the UPower numeric state or its textual form into a `BatteryState`
        """
        if isinstance(raw, str):
            state = TEXTUAL_STATES.get(raw.strip().lower())
        elif isinstance(raw, int) and not isinstance(raw, bool):
            state = UPOWER_STATES.get(raw)
        else:
            state = None

        if state is None:
            logger.warning("Unrecognized battery state: %r", raw)
            return BatteryState.UNKNOWN

        return state

    def _percentage_from_energy(self) -> float | None:
        energy = self.properties.get("Energy")
        energy_full = self.properties.get("EnergyFull")
        try:
            if energy is not None and energy_full and float(energy_full) > 0:
                return float(energy) / float(energy_full) * 100
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid energy values: %r / %r", energy, energy_full)
        return None

    def _seconds(self, name: str) -> int:
        raw = self.properties.get(name, 0)
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            return 0
