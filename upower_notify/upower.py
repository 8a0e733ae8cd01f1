# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import logging
from .utils.dbus_client import SystemDBusClient, DBusClientError, unwrap

logger = logging.getLogger(__name__)

UPOWER_SERVICE = "org.freedesktop.UPower"
DEVICE_INTERFACE = "org.freedesktop.UPower.Device"
DEFAULT_DEVICE = "/org/freedesktop/UPower/devices/battery_BAT0"


class UPowerDevice:
    """
    A single power device exposed by UPower on the system bus, such as a laptop battery.

    See: https://upower.freedesktop.org/docs/Device.html
    """

    def __init__(self, path: str = DEFAULT_DEVICE, dbus_client: SystemDBusClient = None):
        self.path = path
        self.dbus_client = dbus_client or SystemDBusClient()

    async def connect(self):
        await self.dbus_client.connect()

    async def disconnect(self):
        await self.dbus_client.disconnect()

    async def get_properties(self) -> dict:
        """
        Reads the current value of every device property, e.g. `Percentage` and `State`
        """
        return await self.dbus_client.get_all_properties(
            destination=UPOWER_SERVICE,
            path=self.path,
            interface=DEVICE_INTERFACE,
        )

    async def subscribe(self, callback: callable):
        """
        Calls `callback` with a dict of the changed properties every time the device changes.
        """

        def property_changed(interface, values, _invalidated, dbus_message):
            if dbus_message.path != self.path or interface != DEVICE_INTERFACE:
                return

            callback({name: unwrap(value) for name, value in values.items()})

        subscribed = await self.dbus_client.add_signal_receiver(
            callback=property_changed,
            signal_name="PropertiesChanged",
            dbus_interface="org.freedesktop.DBus.Properties",
            path=self.path,
        )

        if not subscribed:
            logger.warning("Could not subscribe to UPower PropertiesChanged signal.")
            raise DBusClientError(f"Fail to setup UPower DBus signal receiver for {self.path}")

    async def wait_for_disconnect(self):
        await self.dbus_client.wait_for_disconnect()
