"""Fastboot transport for the flashing orchestrator.

The orchestrator only depends on the :class:`FastbootDevice` protocol. The
concrete :class:`FastbootCliDevice` drives the platform ``fastboot`` tool with
asyncio subprocesses, so the USB wire protocol stays in that tool.
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional, Protocol
import logging

ProgressCallback = Callable[[float], None]

BOOTLOADER_PREFIX = "(bootloader) "


class FastbootError(RuntimeError):
    """A fastboot command failed or the device went away."""


class FastbootDevice(Protocol):
    """Primitives the orchestrator needs from a fastboot transport."""

    async def connect(self) -> None: ...

    async def wait_for_connect(self) -> None: ...

    async def get_variable(self, name: str) -> str: ...

    async def run_command(self, command: str) -> str: ...

    async def flash_blob(
        self,
        partition: str,
        path: Path,
        on_progress: ProgressCallback,
        slot: Optional[str] = "other",
    ) -> None: ...


class FastbootCliDevice:
    """Fastboot transport backed by the ``fastboot`` command line tool."""

    def __init__(
        self,
        fastboot_path: str = "fastboot",
        serial: Optional[str] = None,
        command_timeout: float = 60.0,
        flash_timeout: float = 600.0,
        poll_interval: float = 1.0,
        connect_timeout: float = 60.0,
    ):
        """Initialize fastboot transport.

        Args:
            fastboot_path: Path to the fastboot binary
            serial: Device serial to pin to (first fastboot device if None)
            command_timeout: Timeout for regular commands in seconds
            flash_timeout: Timeout for a single flash in seconds
            poll_interval: Delay between device scans while connecting
            connect_timeout: Give up connecting after this many seconds
        """
        self.logger = logging.getLogger("flasher.fastboot")
        self.fastboot_path = fastboot_path
        self.serial = serial
        self.command_timeout = command_timeout
        self.flash_timeout = flash_timeout
        self.poll_interval = poll_interval
        self.connect_timeout = connect_timeout
        self._connected = asyncio.Event()

    async def _run(self, *args: str, timeout: Optional[float] = None) -> tuple[str, str]:
        """Run fastboot with ``args`` against the pinned device.

        Returns:
            Decoded (stdout, stderr)

        Raises:
            FastbootError: If the command fails or times out
        """
        cmd = [self.fastboot_path]
        if self.serial:
            cmd.extend(["-s", self.serial])
        cmd.extend(args)
        self.logger.debug(f"Executing: {' '.join(cmd)}")

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout or self.command_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise FastbootError(f"Command timed out: {' '.join(args)}")

        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        if process.returncode != 0:
            raise FastbootError(
                f"Command failed: {' '.join(args)}: "
                f"exit code {process.returncode}, stderr: {err.strip()}"
            )
        return out, err

    async def _list_devices(self) -> list[str]:
        """Serials of devices currently in fastboot mode."""
        process = await asyncio.create_subprocess_exec(
            self.fastboot_path,
            "devices",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
        serials = []
        for line in stdout.decode(errors="replace").splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == "fastboot":
                serials.append(parts[0])
        return serials

    async def connect(self) -> None:
        """Scan for a fastboot device until one appears.

        Raises:
            FastbootError: If no (matching) device shows up in time
        """
        self.logger.info(f"Waiting for device in fastboot mode (timeout: {self.connect_timeout}s)...")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.connect_timeout

        while loop.time() < deadline:
            serials = await self._list_devices()
            if self.serial in serials or (self.serial is None and serials):
                self.serial = self.serial or serials[0]
                self.logger.info(f"Device found in fastboot mode: {self.serial}")
                self._connected.set()
                return
            await asyncio.sleep(self.poll_interval)

        raise FastbootError("No device found in fastboot mode")

    async def wait_for_connect(self) -> None:
        """Suspend until :meth:`connect` finds a device, then check it still answers.

        Raises:
            FastbootError: If the device disappeared in the meantime
        """
        await self._connected.wait()
        if self.serial not in await self._list_devices():
            self._connected.clear()
            raise FastbootError(f"Device {self.serial} disconnected")

    async def get_variable(self, name: str) -> str:
        """Read one variable, or every variable for ``all``.

        For ``all`` the result is newline-delimited ``key:value`` lines.
        """
        out, err = await self._run("getvar", name)
        # fastboot reports variables on stderr
        lines = (err + out).splitlines()

        if name == "all":
            return "\n".join(
                line[len(BOOTLOADER_PREFIX):]
                for line in lines
                if line.startswith(BOOTLOADER_PREFIX)
            )

        for line in lines:
            if line.startswith(BOOTLOADER_PREFIX):
                line = line[len(BOOTLOADER_PREFIX):]
            key, sep, value = line.partition(":")
            if sep and key.strip() == name:
                return value.strip()
        raise FastbootError(f"Variable not reported: {name}")

    async def run_command(self, command: str) -> str:
        """Run a raw ``verb[:argument]`` command (``erase:userdata``, ``continue``)."""
        verb, _, argument = command.partition(":")
        args = [verb] + ([argument] if argument else [])
        self.logger.info(f"Running command: {command}")
        out, err = await self._run(*args)
        return (err + out).strip()

    async def flash_blob(
        self,
        partition: str,
        path: Path,
        on_progress: ProgressCallback,
        slot: Optional[str] = "other",
    ) -> None:
        """Flash an image file to ``partition`` on ``slot``.

        The CLI does not report intermediate progress, so only start and end
        are signalled.
        """
        args = ["--slot", slot] if slot else []
        args.extend(["flash", partition, str(path)])

        self.logger.info(f"Flashing {partition} (slot={slot}) from {path}")
        on_progress(0.0)
        await self._run(*args, timeout=self.flash_timeout)
        on_progress(1.0)
