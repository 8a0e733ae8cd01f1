# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from enum import Enum
from dataclasses import dataclass
from .utils.dbus_client import SessionDBusClient, Variant

logger = logging.getLogger(__name__)

APP_NAME = "upower-notify"


class Urgency(Enum):
    """
    Level of urgency, as defined by
    https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html#urgency-levels
    """

    LOW = 0
    NORMAL = 1
    CRITICAL = 2


class HintABC:  # pylint: disable=too-few-public-methods
    """
    Hints are a way to provide extra data to a notification server that the server may be able to
    make use of.
    """

    name: str
    value_type: type
    signature: str

    def __init__(self, value: any):
        self.value = value

    def to_value(self):
        """
        Transform the hint object into a value to be transmitted to the notification server
        """
        raw = self.value_type(self.value)
        if hasattr(raw, "value"):
            raw = raw.value  # Unwrap Enums
        return [self.name, Variant(self.signature, raw)]


# pylint: disable=too-few-public-methods
class Hint:
    """
    Namespace for the hints this daemon sends
    """

    class Category(HintABC):
        """
        The type of notification this is, such as "device" or "device.error".
        See: https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html#categories
        """

        name = "category"
        value_type = str
        signature = "s"

    class Transient(HintABC):
        """
        When set the server will treat the notification as transient and by-pass the server's
        persistence capability, if it should exist.
        """

        name = "transient"
        value_type = bool
        signature = "b"

    class Urgency(HintABC):
        """
        The urgency level.

        Usage: Hint.Urgency(Urgency.LOW)
        """

        name = "urgency"
        value_type = Urgency
        signature = "y"

    class XDunstStackTag(HintABC):
        """
        Non-standard hint, used by Dunst.

        Notifications with the same (non-empty) stack tag and the same appid will replace each-other
        so only the newest one is visible.
        """

        name = "x-dunst-stack-tag"
        value_type = str
        signature = "s"


@dataclass(frozen=True)
class NotificationRequest:
    """Everything the notification server needs to show one notification"""

    summary: str
    body: str = ""
    icon: str = ""
    urgency: Urgency = Urgency.NORMAL
    # -1 lets the server decide, 0 never expires
    expire_time_ms: int = -1
    category: str = ""
    transient: bool = False
    stack_tag: str = ""
    replaces_id: int = 0

    def hints(self) -> list[HintABC]:
        hints = [Hint.Urgency(self.urgency)]
        if self.category:
            hints.append(Hint.Category(self.category))
        if self.transient:
            hints.append(Hint.Transient(self.transient))
        if self.stack_tag:
            hints.append(Hint.XDunstStackTag(self.stack_tag))
        return hints


class Notifier:
    """
    Send desktop notifications according to the Freedesktop spec.
    See: https://specifications.freedesktop.org/notification-spec/notification-spec-latest.html
    """

    def __init__(self, dbus_client: SessionDBusClient = None):
        self.dbus_client = dbus_client or SessionDBusClient()

    async def send(self, request: NotificationRequest) -> int:
        """
        Send the notification to the Desktop Notifications Daemon via DBus, and returns the id the
        server gave to it. Raises `DBusClientError` if the server can't be reached.
        """
        hints = dict(hint.to_value() for hint in request.hints())

        params = [
            APP_NAME,
            request.replaces_id,
            request.icon,
            request.summary,
            request.body,
            [],
            hints,
            request.expire_time_ms,
        ]

        logger.debug("Sending notification: %s", request)
        return await self.dbus_client.call_method(
            destination="org.freedesktop.Notifications",
            interface="org.freedesktop.Notifications",
            path="/org/freedesktop/Notifications",
            member="Notify",
            signature="susssasa{sv}i",
            body=params,
        )

    async def close(self):
        await self.dbus_client.disconnect()
