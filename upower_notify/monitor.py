# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging
from enum import Enum
from .errors import SubscriptionLostError
from .dispatcher import ActionDispatcher
from .rules import Rule, match_rule
from .status import StatusNormalizer
from .transitions import MonitorState, Transition, TransitionDetector
from .upower import UPowerDevice
from .utils.dbus_client import DBusClientError

logger = logging.getLogger(__name__)


class MonitorPhase(Enum):
    """Where the monitor currently is in its lifecycle"""

    SUBSCRIBING = "subscribing"
    RUNNING = "running"


class BatteryMonitor:
    """
    Drives the whole pipeline: receives the property changes of the power device, then for each one
    of them, in order, normalizes the status, detects transitions, finds the matching rule and
    dispatches its action.

    Signals from the bus are only queued; events are processed one at a time by the task running
    `run()`, which is the only one that ever touches `self.state`.

    If the bus connection is lost, it reconnects with an exponential backoff, keeping the state it
    had so far. Only when all attempts fail `SubscriptionLostError` is raised. A connection that
    keeps dropping right after subscribing also spends the budget, until a change actually arrives.
    """

    # pylint: disable-next=too-many-arguments
    def __init__(
        self,
        device: UPowerDevice,
        normalizer: StatusNormalizer,
        detector: TransitionDetector,
        rules: list[Rule],
        dispatcher: ActionDispatcher,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        queue_size: int = 64,
    ):
        self.device = device
        self.normalizer = normalizer
        self.detector = detector
        self.rules = rules
        self.dispatcher = dispatcher
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.state = MonitorState()
        self.phase = MonitorPhase.SUBSCRIBING
        self.queue = asyncio.Queue(maxsize=queue_size)
        self.refresh_needed = False
        self.retry_attempts = 0

    def receive(self, changes: dict):
        """
        Signal callback. A change coming from the bus proves the subscription works, so the retry
        budget is restored.
        """
        self.retry_attempts = 0
        self.enqueue(changes)

    def enqueue(self, changes: dict):
        """
        Receives property changes from the bus. Runs outside of the pipeline, so it must not do
        anything but queueing them.
        """
        try:
            self.queue.put_nowait(changes)
        except asyncio.QueueFull:
            # The dropped change will be recovered by reading all the properties again
            logger.warning("Too many pending battery events, dropping %s", list(changes))
            self.refresh_needed = True

    async def subscribe(self):
        """
        Connects to the device, listens for its changes and queues its current properties so that
        they are the first event to be processed.
        """
        self.phase = MonitorPhase.SUBSCRIBING
        await self.device.connect()
        await self.device.subscribe(self.receive)
        self.enqueue(await self.device.get_properties())
        self.phase = MonitorPhase.RUNNING
        logger.info("Monitoring power device %s", self.device.path)

    async def subscribe_with_retry(self):
        """
        Subscribes to the device, retrying with an exponential backoff whenever it fails
        """
        while True:
            try:
                await self.subscribe()
                return
            except DBusClientError as err:
                await self.backoff(f"Unable to subscribe to power device ({err})", err)

    async def backoff(self, reason: str, err: Exception | None = None):
        """
        Spends one attempt of the retry budget, waiting longer after each one. The budget is shared
        by failed subscriptions and lost connections, and is only restored by `receive()`.
        """
        self.retry_attempts += 1
        if self.retry_attempts > self.reconnect_attempts:
            raise SubscriptionLostError(
                f"Unable to subscribe to {self.device.path} after "
                f"{self.reconnect_attempts} retries"
            ) from err

        delay = min(
            self.reconnect_delay * 2 ** (self.retry_attempts - 1), self.reconnect_max_delay
        )
        logger.warning(
            "%s. Retrying in %.1fs... (%d/%d)",
            reason,
            delay,
            self.retry_attempts,
            self.reconnect_attempts,
        )
        await self.device.disconnect()
        await asyncio.sleep(delay)

    async def run(self):
        """
        Monitors the battery until cancelled or until the connection can't be recovered
        """
        await self.subscribe_with_retry()

        while True:
            await self.process_events()
            await self.backoff("Connection to the power service was lost")
            await self.subscribe_with_retry()

    async def process_events(self):
        """
        Processes queued events until the bus connection is lost. Events queued before the
        disconnection are still processed first.
        """
        disconnected = asyncio.ensure_future(self.device.wait_for_disconnect())
        try:
            while True:
                getter = asyncio.ensure_future(self.queue.get())
                done, _ = await asyncio.wait(
                    {getter, disconnected}, return_when=asyncio.FIRST_COMPLETED
                )

                if getter not in done:
                    getter.cancel()
                    return

                await self.process(getter.result())
                await self.refresh_if_needed()
        finally:
            disconnected.cancel()

    async def process(self, changes: dict) -> Transition | None:
        """
        Runs a single event through the pipeline. The new status is always stored, whether a
        transition happened or not.
        """
        status = self.normalizer.normalize(changes)
        logger.debug("Battery at %d%% (%s)", status.percentage, status.state.value)

        transition = self.detector.detect(self.state, status)
        self.state.last_status = status

        if transition is None:
            return None

        rule = match_rule(transition, self.rules)
        if rule is None:
            logger.debug("No rule matches %s", transition.kind.value)
        else:
            logger.info("Rule '%s' matched %s", rule.describe(), transition.kind.value)
            await self.dispatcher.dispatch(rule, transition)

        return transition

    async def refresh_if_needed(self):
        if not self.refresh_needed or not self.queue.empty():
            return

        self.refresh_needed = False
        try:
            self.enqueue(await self.device.get_properties())
        except DBusClientError as err:
            # A lost connection is detected by `process_events()` on its own
            logger.warning("Unable to refresh battery properties: %s", err)
