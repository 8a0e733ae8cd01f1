# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import os
import re
import asyncio
import logging
from .notifications import Notifier, NotificationRequest, Urgency
from .rules import Rule, NotifyAction, RunCommandAction
from .transitions import Transition
from .utils.process import CommandSupervisor

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{(\w+)\}")


def format_duration(seconds: int) -> str:
    """
    Human readable form of a duration, such as "1 hour, 5 minutes"
    """
    hours, minutes = seconds // 3600, (seconds % 3600) // 60

    parts = []
    if hours > 0:
        parts.append(f"{hours} hour" + ("s" if hours > 1 else ""))
    if minutes > 0:
        parts.append(f"{minutes} minute" + ("s" if minutes > 1 else ""))

    return ", ".join(parts) or "0 minutes"


def template_values(transition: Transition) -> dict[str, str]:
    status = transition.status
    return {
        "percentage": str(status.percentage),
        "state": status.state.value,
        "time": format_duration(status.remaining_time),
        "kind": transition.kind.value,
    }


def render(template: str, values: dict[str, str]) -> str:
    """
    Replaces the known `{name}` placeholders of a template. Anything else, including braces that are
    part of the text, is kept untouched.
    """
    return PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


class ActionDispatcher:
    """
    Runs the action of a matched rule. Failures are logged and never raised, so that a broken
    notification server or a missing command can't stop the battery monitoring. A notification
    server that does not reply within `notify_timeout` seconds counts as a failure.
    """

    def __init__(
        self,
        notifier: Notifier,
        supervisor: CommandSupervisor,
        replace_notifications: bool = True,
        notify_timeout: float = 10.0,
    ):
        self.notifier = notifier
        self.supervisor = supervisor
        self.replace_notifications = replace_notifications
        # Seconds to wait for the notification server to reply
        self.notify_timeout = notify_timeout
        self.last_notification_id = 0

    async def dispatch(self, rule: Rule, transition: Transition) -> bool:
        """
        Executes the rule action for the given transition. Returns whether it succeeded.
        """
        values = template_values(transition)

        try:
            match rule.action:
                case NotifyAction() as action:
                    await self.notify(action, values)
                case RunCommandAction() as action:
                    await self.run_command(action, values)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to dispatch action for %s", transition.kind.value)
            return False

        return True

    async def notify(self, action: NotifyAction, values: dict[str, str]):
        request = NotificationRequest(
            summary=render(action.summary, values),
            body=render(action.body, values),
            icon=action.icon,
            urgency=Urgency[action.urgency.upper()],
            expire_time_ms=-1 if action.timeout is None else action.timeout,
            category=action.category,
            transient=action.transient,
            stack_tag=action.stack_tag,
            replaces_id=self.last_notification_id if self.replace_notifications else 0,
        )

        logger.info("Sending notification: %s", request.summary)
        notification_id = await asyncio.wait_for(self.notifier.send(request), self.notify_timeout)
        if isinstance(notification_id, int):
            self.last_notification_id = notification_id

    async def run_command(self, action: RunCommandAction, values: dict[str, str]):
        args = [render(arg, values) for arg in action.args]

        env = dict(os.environ)
        env.update({name: render(value, values) for name, value in action.env.items()})
        env.update(
            {
                "UPOWER_NOTIFY_PERCENTAGE": values["percentage"],
                "UPOWER_NOTIFY_STATE": values["state"],
                "UPOWER_NOTIFY_TRANSITION": values["kind"],
            }
        )

        logger.info("Executing: %s", " ".join(args))
        await self.supervisor.spawn(args, env=env)

    async def close(self):
        """
        Abandons running commands and releases the notification server connection
        """
        await self.supervisor.stop()
        await self.notifier.close()
