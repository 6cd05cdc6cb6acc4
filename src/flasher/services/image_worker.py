"""Background image task runner: download, verify and unpack images.

Requests go through an explicit queue and are answered through a future.
Progress is delivered separately and one-way: the worker schedules the
caller's callback on the event loop and never waits for it.
"""

import asyncio
import hashlib
import lzma
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional
import logging

import aiofiles
import httpx

from flasher.models.manifest import Image
from flasher.utils.verification import verify_checksum_or_raise

ProgressCallback = Callable[[float], None]


@dataclass
class WorkerRequest:
    """One request to the worker; the answer arrives on ``future``."""

    op: str
    future: asyncio.Future
    image: Optional[Image] = None
    on_progress: Optional[ProgressCallback] = None


class ImageWorker:
    """Runs image downloads and CPU-heavy unpacking off the control flow."""

    def __init__(
        self,
        cache_dir: Path,
        http_timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
    ):
        """Initialize image worker.

        Args:
            cache_dir: Root directory for archives and unpacked images
            http_timeout: Timeout for HTTP operations in seconds
            chunk_size: Read/write chunk size in bytes
        """
        self.logger = logging.getLogger("flasher.image_worker")
        self.archive_dir = Path(cache_dir) / "archives"
        self.image_dir = Path(cache_dir) / "images"
        self.http_timeout = http_timeout
        self.chunk_size = chunk_size

        self._requests: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handlers = {
            "init": self._handle_init,
            "download": self._handle_download,
            "unpack": self._handle_unpack,
            "get_image": self._handle_get_image,
        }

    def start(self) -> None:
        """Start serving requests on the running loop."""
        if self._task is not None and not self._task.done():
            return
        self._loop = asyncio.get_running_loop()
        self._requests = asyncio.Queue()
        self._task = asyncio.create_task(self._serve(), name="image-worker")
        self.logger.debug("Image worker started")

    async def stop(self) -> None:
        """Stop serving after pending requests are answered."""
        if self._task is None or self._task.done():
            return
        await self._requests.put(None)
        await self._task
        self.logger.debug("Image worker stopped")

    async def _call(
        self,
        op: str,
        image: Optional[Image] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        self.start()
        future = self._loop.create_future()
        await self._requests.put(
            WorkerRequest(op=op, future=future, image=image, on_progress=on_progress)
        )
        return await future

    async def init(self) -> None:
        """Prepare the cache directories."""
        await self._call("init")

    async def download_image(self, image: Image, on_progress: ProgressCallback) -> None:
        """Download the image archive into the cache."""
        await self._call("download", image, on_progress)

    async def unpack_image(self, image: Image, on_progress: ProgressCallback) -> None:
        """Unpack the downloaded archive and verify its checksum.

        Raises:
            ChecksumMismatchError: If the unpacked payload does not match
        """
        await self._call("unpack", image, on_progress)

    async def get_image(self, image: Image) -> Path:
        """Path of the unpacked image file."""
        return await self._call("get_image", image)

    async def _serve(self) -> None:
        while True:
            request = await self._requests.get()
            if request is None:
                break
            if request.future.cancelled():
                continue
            try:
                result = await self._handlers[request.op](request)
            except Exception as e:
                if not request.future.cancelled():
                    request.future.set_exception(e)
            else:
                if not request.future.cancelled():
                    request.future.set_result(result)

    def _progress_sender(self, on_progress: Optional[ProgressCallback]) -> ProgressCallback:
        """Fire-and-forget progress delivery, safe to call from any thread."""

        def send(value: float) -> None:
            if on_progress is not None:
                self._loop.call_soon_threadsafe(on_progress, value)

        return send

    def archive_path(self, image: Image) -> Path:
        return self.archive_dir / image.archive_file_name

    def image_path(self, image: Image) -> Path:
        return self.image_dir / image.file_name

    async def _handle_init(self, request: WorkerRequest) -> None:
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        self.image_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Image cache ready at {self.archive_dir.parent}")

    async def _handle_download(self, request: WorkerRequest) -> None:
        image = request.image
        report = self._progress_sender(request.on_progress)
        target_path = self.archive_path(image)
        part_path = target_path.with_name(target_path.name + ".part")

        self.logger.info(f"Downloading {image.name} from {image.archive_url}")
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout, follow_redirects=True) as client:
                async with client.stream("GET", image.archive_url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("Content-Length") or 0)
                    downloaded = 0

                    async with aiofiles.open(part_path, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            downloaded += len(chunk)
                            if total:
                                report(min(downloaded / total, 1.0))
        except Exception:
            part_path.unlink(missing_ok=True)
            raise

        part_path.replace(target_path)
        report(1.0)
        self.logger.info(f"Downloaded {image.name}: {downloaded} bytes")

    async def _handle_unpack(self, request: WorkerRequest) -> None:
        image = request.image
        archive_path = self.archive_path(image)
        if not archive_path.exists():
            raise FileNotFoundError(f"Archive not downloaded: {archive_path}")

        report = self._progress_sender(request.on_progress)
        await asyncio.to_thread(self._unpack_sync, image, archive_path, report)
        report(1.0)

    def _unpack_sync(self, image: Image, archive_path: Path, report: ProgressCallback) -> None:
        """Decompress (if needed) and hash in one pass. Runs in a worker thread."""
        output_path = self.image_path(image)
        part_path = output_path.with_name(output_path.name + ".part")
        archive_size = archive_path.stat().st_size or 1
        sha256 = hashlib.sha256()

        self.logger.info(f"Unpacking {image.archive_file_name} -> {output_path.name}")
        try:
            with open(archive_path, "rb") as raw, open(part_path, "wb") as out:
                source = lzma.open(raw) if image.compressed else raw
                while chunk := source.read(self.chunk_size):
                    out.write(chunk)
                    sha256.update(chunk)
                    report(min(raw.tell() / archive_size, 1.0))

            verify_checksum_or_raise(sha256.hexdigest(), image.checksum, image.name)
        except Exception:
            part_path.unlink(missing_ok=True)
            raise

        part_path.replace(output_path)

    async def _handle_get_image(self, request: WorkerRequest) -> Path:
        path = self.image_path(request.image)
        if not path.exists():
            raise FileNotFoundError(f"Image not unpacked: {request.image.name}")
        return path
