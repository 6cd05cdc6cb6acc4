"""Flashing orchestrator: the stage-based state machine driving a session.

READY → CONNECTING → DOWNLOADING → UNPACKING → FLASHING → ERASING → DONE

Every transition goes through :meth:`FlashOrchestrator._transition`, which
resets progress and the label, then dispatches exactly one stage task. Each
stage maps its own failures into one :class:`ErrorEnum` kind; once an error
is set, no further stage body runs. Recovery is a full process restart.
"""

import asyncio
import os
import sys
from typing import Awaitable, Callable, Optional
import logging

import httpx

from flasher.config import Settings, get_settings
from flasher.models.manifest import Manifest, create_manifest
from flasher.models.state import SessionState
from flasher.models.status import ErrorEnum, StepEnum
from flasher.services.fastboot import FastbootDevice
from flasher.services.image_worker import ImageWorker
from flasher.services.progress import with_progress
from flasher.services.recognizer import is_recognized_device, parse_device_info
from flasher.services.state_manager import StateManager, Subscriber
from flasher.utils.requirements import probe_requirements
from flasher.utils.verification import is_checksum_mismatch

VALID_SLOTS = ("a", "b")

RestartHook = Callable[[], None]


def restart_process() -> None:
    """Replace the current process with a fresh copy of itself."""
    logging.getLogger("flasher.orchestrator").info("Restarting for a clean session")
    os.execv(sys.executable, [sys.executable] + sys.argv)


class FlashOrchestrator:
    """Sequences a flashing session against one device."""

    def __init__(
        self,
        device: FastbootDevice,
        image_worker: ImageWorker,
        settings: Optional[Settings] = None,
        state_manager: Optional[StateManager] = None,
        restart: Optional[RestartHook] = None,
    ):
        """Initialize orchestrator.

        Args:
            device: Fastboot transport
            image_worker: Image task runner
            settings: Settings (uses get_settings() if None)
            state_manager: StateManager instance (uses singleton if None)
            restart: Hard-reset hook used by on_retry (re-execs the process if None)
        """
        self.logger = logging.getLogger("flasher.orchestrator")
        self.device = device
        self.image_worker = image_worker
        self.settings = settings or get_settings()
        self.state_manager = state_manager or StateManager()
        self._restart = restart or restart_process

        self.manifest: Optional[Manifest] = None
        self._initialized = False
        self._initialize_task: Optional[asyncio.Task] = None
        self._stage_task: Optional[asyncio.Task] = None

        self._stages: dict[StepEnum, Callable[[], Awaitable[None]]] = {
            StepEnum.CONNECTING: self._connect,
            StepEnum.DOWNLOADING: self._download,
            StepEnum.UNPACKING: self._unpack,
            StepEnum.FLASHING: self._flash,
            StepEnum.ERASING: self._erase,
        }

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def snapshot(self) -> SessionState:
        return self.state_manager.get_status()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.state_manager.subscribe(callback)

    async def initialize(self) -> bool:
        """Check preconditions and load the manifest.

        Idempotent. Concurrent callers share one in-flight attempt.

        Returns:
            True once the session is ready to continue
        """
        if self._initialized:
            return True

        if self._initialize_task is None:
            self._initialize_task = asyncio.create_task(self._initialize())
        return await asyncio.shield(self._initialize_task)

    async def on_continue(self) -> None:
        """User go-ahead: start connecting to the device."""
        if not self._initialized:
            await self.initialize()

        status = self.state_manager.get_status()
        if status.error != ErrorEnum.NONE or not self._initialized:
            return
        if status.step != StepEnum.READY:
            self.logger.warning(f"Ignoring continue in step {status.step.name}")
            return

        self._transition(StepEnum.CONNECTING)

    def on_retry(self) -> None:
        """Hard reset after an error.

        Raises:
            RuntimeError: If no error is set
        """
        if not self.state_manager.get_status().can_retry:
            raise RuntimeError("Retry is only available after an error")
        self.logger.debug("on retry")
        self._restart()

    async def join(self) -> None:
        """Wait until no stage task is pending."""
        while self._stage_task is not None and not self._stage_task.done():
            await self._stage_task

    async def close(self) -> None:
        await self.image_worker.stop()

    async def _initialize(self) -> bool:
        try:
            try:
                requirements = await probe_requirements(
                    self.settings.fastboot_path, self.settings.cache_dir
                )
                unmet = requirements.first_unmet()
                if unmet is not None:
                    self.logger.error(f"Requirement not met: {unmet}")
                    self.state_manager.set_error(ErrorEnum.REQUIREMENTS_NOT_MET)
                    return False

                await self.image_worker.init()
                self.manifest = await self._download_manifest()
            except Exception as e:
                self.logger.error(f"Initialization error: {e}", exc_info=True)
                self.state_manager.set_error(ErrorEnum.UNKNOWN)
                return False

            self.logger.debug(
                f"Loaded manifest: {[image.name for image in self.manifest]}"
            )
            self._initialized = True
            return True
        finally:
            self._initialize_task = None

    async def _download_manifest(self) -> Manifest:
        """Fetch and parse the manifest for the configured channel."""
        url = self.settings.manifest_url
        self.logger.info(f"Fetching manifest for channel {self.settings.channel}: {url}")
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout, follow_redirects=True
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
        return create_manifest(response.text)

    def _transition(self, step: StepEnum) -> None:
        """Enter ``step`` and start its stage body, unless an error is set.

        Raises:
            RuntimeError: If another stage's task is still pending
        """
        stage = self._stages.get(step)
        pending = self._stage_task
        if (
            stage is not None
            and pending is not None
            and not pending.done()
            and pending is not asyncio.current_task()
        ):
            raise RuntimeError(f"Cannot start {step.name}: previous stage still running")

        self.state_manager.set_step(step)
        if stage is None or self.state_manager.get_status().error != ErrorEnum.NONE:
            return

        self._stage_task = asyncio.create_task(
            self._run_stage(step, stage), name=f"stage-{step.name.lower()}"
        )

    async def _run_stage(self, step: StepEnum, stage: Callable[[], Awaitable[None]]) -> None:
        try:
            await stage()
        except Exception as e:
            self.logger.error(f"Unhandled error in {step.name} stage: {e}", exc_info=True)
            self._fail(ErrorEnum.UNKNOWN)

    def _fail(self, error: ErrorEnum) -> None:
        self.state_manager.set_error(error)

    def _set_message(self, message: str) -> None:
        self.state_manager.set_message(message)

    def _set_progress(self, progress: float) -> None:
        self.state_manager.set_progress(progress)

    async def _connect(self) -> None:
        waiter = asyncio.create_task(self._wait_for_device())
        try:
            await self.device.connect()
        except Exception as e:
            # Treated as a cancelled device chooser: back to READY, no error
            self.logger.error(f"Connection error: {e}")
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)
            self._transition(StepEnum.READY)
            return

        device_info = await waiter
        if device_info is None:
            return

        recognized = is_recognized_device(device_info)
        self.logger.debug(f"Device info: recognized={recognized}, info={device_info}")
        if not recognized:
            self._fail(ErrorEnum.UNRECOGNIZED_DEVICE)
            return

        self.state_manager.update_status(
            serial=device_info.get("serialno") or "unknown", connected=True
        )
        self._transition(StepEnum.DOWNLOADING)

    async def _wait_for_device(self) -> Optional[dict[str, str]]:
        """Wait for the connect event and read all device variables.

        Returns:
            DeviceInfo, or None once an error has been recorded
        """
        try:
            await self.device.wait_for_connect()
        except Exception as e:
            self.logger.error(f"Connection lost: {e}")
            self.state_manager.update_status(connected=False)
            self._fail(ErrorEnum.LOST_CONNECTION)
            return None

        self.logger.info("Connected")
        try:
            return parse_device_info(await self.device.get_variable("all"))
        except Exception as e:
            self.logger.error(f"Error getting device information: {e}", exc_info=True)
            self._fail(ErrorEnum.UNKNOWN)
            return None

    async def _download(self) -> None:
        self._set_progress(0)
        try:
            for image, on_progress in with_progress(list(self.manifest), self._set_progress):
                self._set_message(f"Downloading {image.name}")
                await self.image_worker.download_image(image, on_progress)
        except Exception as e:
            self.logger.error(f"Download error: {e}", exc_info=True)
            self._fail(ErrorEnum.DOWNLOAD_FAILED)
            return

        self.logger.debug("Downloaded all images")
        self._transition(StepEnum.UNPACKING)

    async def _unpack(self) -> None:
        self._set_progress(0)
        try:
            for image, on_progress in with_progress(list(self.manifest), self._set_progress):
                self._set_message(f"Unpacking {image.name}")
                await self.image_worker.unpack_image(image, on_progress)
        except Exception as e:
            self.logger.error(f"Unpack error: {e}", exc_info=True)
            if is_checksum_mismatch(e):
                self._fail(ErrorEnum.CHECKSUM_MISMATCH)
            else:
                self._fail(ErrorEnum.UNPACK_FAILED)
            return

        self.logger.debug("Unpacked all images")
        self._transition(StepEnum.FLASHING)

    async def _flash(self) -> None:
        self._set_progress(0)
        try:
            await self._flash_device()
        except Exception as e:
            self.logger.error(f"Flashing error: {e}", exc_info=True)
            self._fail(ErrorEnum.FLASH_FAILED)
            return

        self.logger.debug("Flash complete")
        self._transition(StepEnum.ERASING)

    async def _flash_device(self) -> None:
        current_slot = await self.device.get_variable("current-slot")
        if current_slot not in VALID_SLOTS:
            raise ValueError(f"Unknown current slot {current_slot}")

        for image, on_progress in with_progress(list(self.manifest), self._set_progress):
            path = await self.image_worker.get_image(image)

            if image.sparse:
                self._set_message(f"Erasing {image.name}")
                await self.device.run_command(f"erase:{image.name}")
            self._set_message(f"Flashing {image.name}")
            await self.device.flash_blob(image.name, path, on_progress, "other")
        self.logger.debug("Flashed all partitions")

        other_slot = "b" if current_slot == "a" else "a"
        self._set_message(f"Changing slot to {other_slot}")
        await self.device.run_command(f"set_active:{other_slot}")

    async def _erase(self) -> None:
        self._set_progress(0)
        try:
            self._set_message("Erasing userdata")
            await self.device.run_command("erase:userdata")
            self._set_progress(0.9)

            self._set_message("Rebooting")
            await self.device.run_command("continue")
            self._set_progress(1)
            self.state_manager.update_status(connected=False)
        except Exception as e:
            self.logger.error(f"Erase error: {e}", exc_info=True)
            self._fail(ErrorEnum.ERASE_FAILED)
            return

        self.logger.debug("Erase complete")
        self._transition(StepEnum.DONE)
