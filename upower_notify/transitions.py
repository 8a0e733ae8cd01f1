# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from enum import Enum
from dataclasses import dataclass, field
from .status import BatteryState, BatteryStatus

logger = logging.getLogger(__name__)


class TransitionKind(Enum):
    """The kind of battery change a rule can react to"""

    ENTERED_CRITICAL = "entered-critical"
    ENTERED_LOW = "entered-low"
    EXITED_LOW = "exited-low"
    REACHED_FULL = "reached-full"
    STARTED_CHARGING = "started-charging"
    STARTED_DISCHARGING = "started-discharging"


class Threshold(Enum):
    """Battery bands that are notified only once per discharge"""

    CRITICAL = "critical"
    LOW = "low"


@dataclass(frozen=True)
class Transition:
    """A relevant change on the battery, along with the status that caused it"""

    kind: TransitionKind
    status: BatteryStatus


@dataclass
class MonitorState:
    """
    Everything the monitor remembers between two events: the last battery snapshot and which bands
    have already been notified. There is exactly one of these per daemon and only the monitor task
    changes it.
    """

    last_status: BatteryStatus | None = None
    notified: set[Threshold] = field(default_factory=set)

    def rearm(self):
        """Forgets the notified bands, so that they can fire again on the next discharge"""
        self.notified.clear()


class TransitionDetector:
    """
    Compares a new battery status with the previous one and tells which transition, if any, has
    happened in between.

    Only one transition is reported per status. They are checked in this order:

    1. The battery started charging (re-arms the low and critical bands)
    2. The battery started discharging
    3. The charge dropped into the critical band
    4. The charge dropped into the low band
    5. The battery became full (re-arms the bands)
    6. The charge climbed out of the low band by `exit_low_margin` (re-arms the bands)

    Bands are notified only once until re-armed, which is what keeps small oscillations of the
    charge from firing the same warning over and over.
    """

    def __init__(
        self,
        critical_threshold: int = 5,
        low_threshold: int = 20,
        full_threshold: int = 100,
        exit_low_margin: int = 5,
    ):
        self.critical_threshold = critical_threshold
        self.low_threshold = low_threshold
        self.full_threshold = full_threshold
        self.exit_low_margin = exit_low_margin

    def detect(self, state: MonitorState, new: BatteryStatus) -> Transition | None:
        """
        Returns the transition between `state.last_status` and `new`, updating the notified bands
        accordingly. The caller is responsible for storing `new` as the last status afterwards.

        When there is no previous status, `new` is compared against itself, so only the charge
        bands are evaluated.
        """
        previous = state.last_status or new
        kind = None

        if new.state == BatteryState.CHARGING and previous.state != BatteryState.CHARGING:
            kind = TransitionKind.STARTED_CHARGING
            state.rearm()
        elif new.state == BatteryState.DISCHARGING and previous.state != BatteryState.DISCHARGING:
            kind = TransitionKind.STARTED_DISCHARGING
        elif self._entered(state, new, self.critical_threshold, Threshold.CRITICAL):
            kind = TransitionKind.ENTERED_CRITICAL
            # The critical band is contained in the low one
            state.notified.update([Threshold.CRITICAL, Threshold.LOW])
        elif self._entered(state, new, self.low_threshold, Threshold.LOW):
            kind = TransitionKind.ENTERED_LOW
            state.notified.add(Threshold.LOW)
        elif (
            new.percentage >= self.full_threshold
            and new.state == BatteryState.FULL
            and previous.state != BatteryState.FULL
        ):
            kind = TransitionKind.REACHED_FULL
            state.rearm()
        elif (
            Threshold.LOW in state.notified
            and new.percentage >= self.low_threshold + self.exit_low_margin
        ):
            kind = TransitionKind.EXITED_LOW
            state.rearm()

        if kind is None:
            return None

        logger.debug("Detected %s at %d%% (%s)", kind.value, new.percentage, new.state.value)
        return Transition(kind, new)

    @staticmethod
    def _entered(state: MonitorState, new: BatteryStatus, threshold: int, band: Threshold) -> bool:
        return (
            new.state != BatteryState.CHARGING
            and new.percentage <= threshold
            and band not in state.notified
        )
