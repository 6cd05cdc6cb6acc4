"""Capability preconditions checked before a flashing session starts."""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Optional
import logging

from pydantic import BaseModel

logger = logging.getLogger("flasher.requirements")


class Requirements(BaseModel):
    """Result of probing the host, in the order the checks are applied."""

    usb: bool
    worker: bool
    storage: bool

    def first_unmet(self) -> Optional[str]:
        """Name of the first failing requirement, or None when all hold."""
        for name in ("usb", "worker", "storage"):
            if not getattr(self, name):
                return name
        return None


def usb_available(fastboot_path: str) -> bool:
    """The fastboot transport binary is resolvable."""
    return shutil.which(fastboot_path) is not None


async def worker_available() -> bool:
    """The default executor can run a background job."""
    try:
        return await asyncio.get_running_loop().run_in_executor(None, lambda: True)
    except RuntimeError as e:
        logger.error(f"Background executor unavailable: {e}")
        return False


def storage_available(cache_dir: Path) -> bool:
    """The image cache directory exists (or can be created) and is writable."""
    try:
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create cache directory {cache_dir}: {e}")
        return False
    return os.access(cache_dir, os.W_OK)


async def probe_requirements(fastboot_path: str, cache_dir: Path) -> Requirements:
    """Probe all preconditions.

    Checks short-circuit: once one fails the remaining ones are reported as
    unmet without being probed.
    """
    usb = usb_available(fastboot_path)
    worker = usb and await worker_available()
    storage = worker and storage_available(cache_dir)
    return Requirements(usb=usb, worker=worker, storage=storage)
