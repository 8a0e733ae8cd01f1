# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from .transitions import Transition, TransitionKind


class NotifyAction(BaseModel):
    """
    Shows a desktop notification. `summary` and `body` are templates, where `{percentage}`,
    `{state}`, `{time}` and `{kind}` are replaced by the values of the battery status.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    summary: str
    body: str = ""
    icon: str = ""
    urgency: Literal["low", "normal", "critical"] = "normal"
    # Milliseconds. Unset lets the notification server decide, 0 never expires
    timeout: Optional[int] = Field(default=None, ge=0)
    category: str = "device"
    transient: bool = False
    stack_tag: str = ""


class RunCommandAction(BaseModel):
    """
    Runs a command, either as an argument list (`argv`) or as a shell line (`command`). Arguments
    and environment values are templates, the same way as notification texts.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    argv: Optional[tuple[str, ...]] = None
    command: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_single_form(self) -> "RunCommandAction":
        """Either `argv` or `command` must be given, not both"""
        if (self.argv is None) == (self.command is None):
            raise ValueError("exactly one of 'argv' or 'command' must be set")
        if self.argv is not None and not self.argv:
            raise ValueError("'argv' must not be empty")
        if self.command is not None and not self.command.strip():
            raise ValueError("'command' must not be empty")
        return self

    @property
    def args(self) -> tuple[str, ...]:
        """The final argument list that will be executed"""
        if self.command is not None:
            return ("sh", "-c", self.command)
        return self.argv


class Rule(BaseModel):
    """
    Associates battery transitions with one action. A rule matches a transition when its kind is
    listed on `on` (or `on` is empty, meaning any kind) and, if `percentage` is set, the battery
    charge is within that inclusive range.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    on: tuple[TransitionKind, ...] = ()
    percentage: Optional[tuple[int, int]] = None
    notify: Optional[NotifyAction] = None
    run: Optional[RunCommandAction] = Field(default=None, alias="exec")

    @field_validator("on", mode="before")
    @classmethod
    def accept_single_kind(cls, value):
        """Allows `on = "entered-low"` as a shorthand for a single-item list"""
        if isinstance(value, (str, TransitionKind)):
            return (value,)
        return value

    @field_validator("percentage")
    @classmethod
    def check_range(cls, value):
        """The range must be inside 0..100 and not inverted"""
        if value is None:
            return value
        low, high = value
        if not 0 <= low <= high <= 100:
            raise ValueError(f"invalid percentage range [{low}, {high}]")
        return value

    @model_validator(mode="after")
    def check_single_action(self) -> "Rule":
        """A rule runs exactly one action"""
        if (self.notify is None) == (self.run is None):
            raise ValueError("a rule must have exactly one of 'notify' or 'exec'")
        return self

    @property
    def action(self) -> NotifyAction | RunCommandAction:
        return self.notify or self.run

    @property
    def bounds(self) -> tuple[int, int]:
        return self.percentage or (0, 100)

    def matches(self, transition: Transition) -> bool:
        """Tells whether this rule should act upon the given transition"""
        if self.on and transition.kind not in self.on:
            return False
        low, high = self.bounds
        return low <= transition.status.percentage <= high

    def covers(self, other: "Rule") -> bool:
        """
        Tells whether every transition matched by `other` is also matched by this rule, in which
        case `other` can never be reached if it comes after this one.
        """
        if self.on and (not other.on or not set(other.on) <= set(self.on)):
            return False
        low, high = self.bounds
        other_low, other_high = other.bounds
        return low <= other_low and other_high <= high

    def describe(self) -> str:
        kinds = ", ".join(kind.value for kind in self.on) or "any transition"
        if self.percentage:
            kinds += f" within {self.percentage[0]}-{self.percentage[1]}%"
        return kinds


def match_rule(transition: Transition, rules: list[Rule]) -> Rule | None:
    """
    Returns the first rule that matches the transition, or None. Rule order is significant: when two
    rules could match, the one declared first always wins.
    """
    for rule in rules:
        if rule.matches(transition):
            return rule
    return None


def find_unreachable(rules: list[Rule]) -> list[tuple[int, int]]:
    """
    Lists pairs of `(shadowing, shadowed)` rule indexes, where the second rule can never be matched
    because the first one always matches before it.
    """
    unreachable = []
    for index, rule in enumerate(rules):
        for earlier_index, earlier in enumerate(rules[:index]):
            if earlier.covers(rule):
                unreachable.append((earlier_index, index))
                break
    return unreachable
