# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import unittest
from unittest.mock import AsyncMock
from upower_notify.notifications import APP_NAME, NotificationRequest, Notifier, Urgency


class TestNotifier(unittest.IsolatedAsyncioTestCase):

    async def test_send(self):
        client = AsyncMock()
        client.call_method.return_value = 7
        request = NotificationRequest(
            summary="Battery low",
            body="19%",
            icon="battery-low-symbolic",
            urgency=Urgency.CRITICAL,
            expire_time_ms=0,
            category="device",
            transient=True,
            stack_tag="battery",
            replaces_id=3,
        )

        self.assertEqual(await Notifier(client).send(request), 7)

        kwargs = client.call_method.call_args.kwargs
        self.assertEqual(kwargs["member"], "Notify")
        self.assertEqual(kwargs["signature"], "susssasa{sv}i")
        app_name, replaces_id, icon, summary, body, actions, hints, timeout = kwargs["body"]
        self.assertEqual(
            (app_name, replaces_id, icon, summary, body, actions, timeout),
            (APP_NAME, 3, "battery-low-symbolic", "Battery low", "19%", [], 0),
        )
        self.assertEqual(
            {name: (variant.signature, variant.value) for name, variant in hints.items()},
            {
                "urgency": ("y", 2),
                "category": ("s", "device"),
                "transient": ("b", True),
                "x-dunst-stack-tag": ("s", "battery"),
            },
        )

    async def test_minimal_request_only_carries_urgency(self):
        request = NotificationRequest(summary="Battery full")

        self.assertEqual([hint.name for hint in request.hints()], ["urgency"])
        self.assertEqual(request.hints()[0].to_value()[1].value, Urgency.NORMAL.value)

    async def test_close_disconnects(self):
        client = AsyncMock()

        await Notifier(client).close()

        client.disconnect.assert_awaited_once()
