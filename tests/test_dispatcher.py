# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import sys
import asyncio
import unittest
from unittest.mock import AsyncMock
from upower_notify.dispatcher import ActionDispatcher, format_duration, render
from upower_notify.notifications import Urgency
from upower_notify.rules import NotifyAction, Rule, RunCommandAction
from upower_notify.status import BatteryState
from upower_notify.transitions import Transition, TransitionKind
from upower_notify.utils.dbus_client import DBusClientError
from upower_notify.utils.process import CommandSupervisor
from tests.fakes import FakeNotifier, UnresponsiveNotifier, status, wait_until


def low_battery(percentage: int = 19) -> Transition:
    return Transition(
        TransitionKind.ENTERED_LOW,
        status(percentage, BatteryState.DISCHARGING, time_to_empty=3900),
    )


def notify_rule(**kwargs) -> Rule:
    kwargs.setdefault("summary", "Battery low")
    return Rule(on="entered-low", notify=NotifyAction(**kwargs))


def test_format_duration():
    assert format_duration(0) == "0 minutes"
    assert format_duration(59) == "0 minutes"
    assert format_duration(60) == "1 minute"
    assert format_duration(3600) == "1 hour"
    assert format_duration(3900) == "1 hour, 5 minutes"
    assert format_duration(7320) == "2 hours, 2 minutes"


def test_render_keeps_unknown_placeholders():
    values = {"percentage": "19"}

    assert render("{percentage}% {unknown} {}", values) == "19% {unknown} {}"


class TestNotifyAction(unittest.IsolatedAsyncioTestCase):

    async def test_notification_request(self):
        notifier = FakeNotifier()
        dispatcher = ActionDispatcher(notifier, CommandSupervisor())
        rule = notify_rule(
            body="{time} remaining ({percentage}%, {state})",
            icon="battery-low-symbolic",
            urgency="critical",
            timeout=0,
            stack_tag="battery",
        )

        self.assertTrue(await dispatcher.dispatch(rule, low_battery()))

        request = notifier.requests[0]
        self.assertEqual(request.summary, "Battery low")
        self.assertEqual(request.body, "1 hour, 5 minutes remaining (19%, discharging)")
        self.assertEqual(request.icon, "battery-low-symbolic")
        self.assertEqual(request.urgency, Urgency.CRITICAL)
        self.assertEqual(request.expire_time_ms, 0)
        self.assertEqual(request.stack_tag, "battery")
        self.assertEqual(request.category, "device")

    async def test_server_default_timeout(self):
        notifier = FakeNotifier()
        dispatcher = ActionDispatcher(notifier, CommandSupervisor())

        await dispatcher.dispatch(notify_rule(), low_battery())

        self.assertEqual(notifier.requests[0].expire_time_ms, -1)
        self.assertEqual(notifier.requests[0].urgency, Urgency.NORMAL)

    async def test_replaces_previous_notification(self):
        notifier = FakeNotifier()
        dispatcher = ActionDispatcher(notifier, CommandSupervisor())

        await dispatcher.dispatch(notify_rule(), low_battery())
        await dispatcher.dispatch(notify_rule(), low_battery(18))

        self.assertEqual([r.replaces_id for r in notifier.requests], [0, 1])

    async def test_stacks_notifications_when_not_replacing(self):
        notifier = FakeNotifier()
        dispatcher = ActionDispatcher(notifier, CommandSupervisor(), replace_notifications=False)

        await dispatcher.dispatch(notify_rule(), low_battery())
        await dispatcher.dispatch(notify_rule(), low_battery(18))

        self.assertEqual([r.replaces_id for r in notifier.requests], [0, 0])

    async def test_delivery_failure_is_logged(self):
        dispatcher = ActionDispatcher(
            FakeNotifier(error=DBusClientError("no notification server")), CommandSupervisor()
        )

        with self.assertLogs("upower_notify.dispatcher", level="ERROR") as logs:
            result = await dispatcher.dispatch(notify_rule(), low_battery())

        self.assertFalse(result)
        self.assertIn("entered-low", logs.output[0])

    async def test_unresponsive_server_times_out(self):
        notifier = UnresponsiveNotifier()
        dispatcher = ActionDispatcher(notifier, CommandSupervisor(), notify_timeout=0.05)

        with self.assertLogs("upower_notify.dispatcher", level="ERROR"):
            result = await asyncio.wait_for(dispatcher.dispatch(notify_rule(), low_battery()), 5)

        self.assertFalse(result)
        self.assertEqual(len(notifier.requests), 1)
        self.assertEqual(dispatcher.last_notification_id, 0)


class TestRunCommandAction(unittest.IsolatedAsyncioTestCase):

    async def test_spawns_with_rendered_arguments_and_env(self):
        supervisor = AsyncMock(spec=CommandSupervisor)
        dispatcher = ActionDispatcher(FakeNotifier(), supervisor)
        rule = Rule(
            on="entered-low",
            exec=RunCommandAction(
                argv=["notify", "--level={percentage}"], env={"LEVEL": "{percentage}%"}
            ),
        )

        self.assertTrue(await dispatcher.dispatch(rule, low_battery()))

        args, kwargs = supervisor.spawn.call_args
        self.assertEqual(args[0], ["notify", "--level=19"])
        env = kwargs["env"]
        self.assertEqual(env["LEVEL"], "19%")
        self.assertEqual(env["UPOWER_NOTIFY_PERCENTAGE"], "19")
        self.assertEqual(env["UPOWER_NOTIFY_STATE"], "discharging")
        self.assertEqual(env["UPOWER_NOTIFY_TRANSITION"], "entered-low")
        self.assertIn("PATH", env)

    async def test_missing_executable_is_logged(self):
        supervisor = CommandSupervisor()
        dispatcher = ActionDispatcher(FakeNotifier(), supervisor)
        rule = Rule(on="entered-low", exec=RunCommandAction(argv=["/nonexistent/upower-notify-cmd"]))

        with self.assertLogs("upower_notify.dispatcher", level="ERROR"):
            self.assertFalse(await dispatcher.dispatch(rule, low_battery()))

        self.assertEqual(supervisor.running, 0)

    async def test_does_not_wait_for_the_command(self):
        supervisor = CommandSupervisor(timeout=30)
        dispatcher = ActionDispatcher(FakeNotifier(), supervisor)
        rule = Rule(
            on="entered-low",
            exec=RunCommandAction(argv=[sys.executable, "-c", "import time; time.sleep(30)"]),
        )

        await asyncio.wait_for(dispatcher.dispatch(rule, low_battery()), 5)
        self.assertEqual(supervisor.running, 1)

        await dispatcher.close()
        self.assertEqual(supervisor.running, 0)


class TestCommandSupervisor(unittest.IsolatedAsyncioTestCase):

    async def test_failed_command_is_logged(self):
        supervisor = CommandSupervisor()

        with self.assertLogs("upower_notify.utils.process", level="WARNING") as logs:
            await supervisor.spawn(
                [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
            )
            await wait_until(lambda: supervisor.running == 0, timeout=10)

        self.assertIn("returned 3: boom", logs.output[-1])

    async def test_hung_command_is_killed(self):
        supervisor = CommandSupervisor(timeout=0.2)

        with self.assertLogs("upower_notify.utils.process", level="WARNING") as logs:
            proc = await supervisor.spawn([sys.executable, "-c", "import time; time.sleep(30)"])
            await wait_until(lambda: supervisor.running == 0, timeout=10)

        self.assertIn("Killing it", logs.output[-1])
        self.assertIsNotNone(proc.returncode)

    async def test_command_output_is_discarded(self):
        supervisor = CommandSupervisor()

        proc = await supervisor.spawn([sys.executable, "-c", "print('x' * 1000000)"])
        await wait_until(lambda: supervisor.running == 0, timeout=10)

        self.assertIsNone(proc.stdout)
        self.assertIsNotNone(proc.stderr)
        self.assertEqual(proc.returncode, 0)
