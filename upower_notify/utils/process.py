# Copyright (c) 2022 Daniel Pereira
#
# SPDX-License-Identifier: Apache-2.0

import asyncio, asyncio.subprocess
from logging import getLogger

logger = getLogger(__name__)

class CommandSupervisor:
    """
    Spawns commands without waiting for them. Each process is then watched by a background task that
    logs how it ended, and kills it if it runs for longer than `timeout` seconds.
    """

    def __init__(self, timeout: float | None = None, output_encoding: str = "utf-8"):
        self.timeout = timeout or None
        self.output_encoding = output_encoding
        self.loop_tasks = set()
        self.processes = set()

    @property
    def running(self) -> int:
        return len(self.processes)

    async def spawn(self, args: list[str], env: dict = None) -> asyncio.subprocess.Process:
        """
        Starts the process and returns as soon as it is running. Raises `OSError` if it can't be
        started at all (e.g. the executable does not exist).
        """
        proc = await asyncio.create_subprocess_exec(
            *args, env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

        logger.debug(f"Process {args[0]} started with pid {proc.pid}.")
        self.processes.add(proc)
        self._add_to_loop(self.watch(proc, args))
        return proc

    async def watch(self, proc: asyncio.subprocess.Process, args: list[str]):
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Process {args[0]} still running after {self.timeout}s. Killing it...")
            self._kill(proc)
            await proc.wait()
            return
        finally:
            if proc.returncode is not None:
                self.processes.discard(proc)

        if proc.returncode != 0:
            stderr_str = stderr.decode(self.output_encoding, errors="replace").strip()
            logger.warning(f"Process '{args[0]}' returned {proc.returncode}: {stderr_str}")
        else:
            logger.debug(f"Process '{args[0]}' finished successfully.")

    def _add_to_loop(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        # Add the coroutine to the set, creating a strong reference and preventing it from being
        # garbage-collected before it's finished
        self.loop_tasks.add(task)
        # But then ensure we clear its reference after it's done
        task.add_done_callback(self.loop_tasks.discard)

    def _kill(self, proc: asyncio.subprocess.Process):
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    async def stop(self):
        """
        Abandons every process still being watched, killing them
        """
        for task in list(self.loop_tasks):
            task.cancel()

        for proc in list(self.processes):
            if proc.returncode is None:
                logger.debug(f"Killing process {proc.pid} on shutdown.")
                self._kill(proc)
                await proc.wait()
        self.processes.clear()

        if self.loop_tasks:
            await asyncio.gather(*self.loop_tasks, return_exceptions=True)
