# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import os, logging, signal, asyncio
from .config import Config, load_config
from .dispatcher import ActionDispatcher
from .errors import UpowerNotifyFatalError
from .monitor import BatteryMonitor
from .notifications import Notifier
from .status import StatusNormalizer
from .transitions import TransitionDetector
from .upower import UPowerDevice
from .utils.process import CommandSupervisor

logger = logging.getLogger(__name__)

class App:
    """
    Orchestrate the application functionality into a single unit.

    Instantiate then hit `start()` to have it running. It returns the process exit code.
    """
    def __init__(self, config_file: str | None = None, verbose: bool = False):
        # A missing config file is only an error when the user explicitly asked for it
        self.config_required = config_file is not None
        self.config_file = config_file or self._default_config_file_path()
        self.verbose = verbose
        self.loop = None
        self.monitor = None
        self.monitor_task = None
        self.stopping = False

    def _default_config_file_path(self) -> str:
        config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
        return f"{config_home}/upower-notify/config.toml"

    def setup_logging(self):
        """
        Setup the global application logging
        """
        log_level = "DEBUG" if self.verbose else "INFO"
        log_format = "[%(levelname)s] [%(filename)s:%(funcName)s():L%(lineno)d] %(message)s"
        logging.basicConfig(level = log_level, format = log_format)

    def create_monitor(self, config: Config) -> BatteryMonitor:
        """
        Instantiate the battery monitor and all of its collaborators from the configuration
        """
        dispatcher = ActionDispatcher(
            notifier=Notifier(),
            supervisor=CommandSupervisor(timeout=config.command_timeout),
            replace_notifications=config.replace_notifications,
            notify_timeout=config.notify_timeout,
        )
        detector = TransitionDetector(
            critical_threshold=config.critical_threshold,
            low_threshold=config.low_threshold,
            full_threshold=config.full_threshold,
            exit_low_margin=config.exit_low_margin,
        )
        return BatteryMonitor(
            device=UPowerDevice(config.device),
            normalizer=StatusNormalizer(),
            detector=detector,
            rules=list(config.rules),
            dispatcher=dispatcher,
            reconnect_attempts=config.reconnect_attempts,
            reconnect_delay=config.reconnect_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            queue_size=config.queue_size,
        )

    def stop(self):
        """
        Gracefully stops the monitoring
        """
        if self.stopping:
            return

        self.stopping = True
        logger.info("Exiting...")
        self.monitor_task.cancel()

    # pylint: disable-next=unused-argument
    def exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict):
        """
        Logs errors of background tasks that nobody awaited for
        """
        exception = context.get("exception")
        logger.error("Unhandled error: %s", context.get("message"), exc_info=exception)

    def start(self) -> int:
        """
        Load the configuration, instantiate all required application classes then run it

        It will stop gracefully when receiving a SIGINT or SIGTERM
        """
        self.setup_logging()

        try:
            config = load_config(self.config_file, required=self.config_required)
        except UpowerNotifyFatalError as err:
            logger.error("%s", err)
            return 1

        self.monitor = self.create_monitor(config)
        self.loop = asyncio.new_event_loop()
        self.loop.set_exception_handler(self.exception_handler)

        # Add signal handlers
        for sig in [signal.SIGINT, signal.SIGTERM]:
            self.loop.add_signal_handler(sig, self.stop)

        self.monitor_task = self.loop.create_task(self.monitor.run())
        try:
            self.loop.run_until_complete(self.monitor_task)
        except asyncio.CancelledError:
            return 0
        except UpowerNotifyFatalError as err:
            logger.critical("%s", err)
            return 1
        finally:
            self.loop.run_until_complete(self.shutdown())
            self.loop.close()

        return 0

    async def shutdown(self):
        """
        Abandons in-flight actions and closes the bus connections
        """
        await self.monitor.dispatcher.close()
        await self.monitor.device.disconnect()
