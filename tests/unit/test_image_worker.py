"""Unit tests for ImageWorker."""

import asyncio
import hashlib
import lzma
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest_asyncio

from flasher.services.image_worker import ImageWorker
from flasher.utils.verification import ChecksumMismatchError


# Helper to create async iterator
async def async_iterator(items):
    """Create an async iterator from a list of items."""
    for item in items:
        yield item


def mock_http_client(chunks, content_length=None, status_error=None):
    """Mock httpx.AsyncClient whose stream() yields ``chunks``."""
    mock_response = AsyncMock()
    mock_response.headers = (
        {"Content-Length": str(content_length)} if content_length is not None else {}
    )
    mock_response.raise_for_status = MagicMock(side_effect=status_error)
    mock_response.aiter_bytes = lambda chunk_size: async_iterator(chunks)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=False)

    mock_client = AsyncMock()
    mock_client.stream = MagicMock(return_value=mock_response)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


@pytest.mark.unit
class TestImageWorker:
    """Test ImageWorker in isolation."""

    @pytest_asyncio.fixture
    async def worker(self, tmp_path):
        """Started worker with initialized cache."""
        worker = ImageWorker(tmp_path / "cache", chunk_size=4)
        await worker.init()
        yield worker
        await worker.stop()

    @pytest.mark.asyncio
    async def test_init_creates_cache_dirs(self, worker, tmp_path):
        assert (tmp_path / "cache" / "archives").is_dir()
        assert (tmp_path / "cache" / "images").is_dir()

    @pytest.mark.asyncio
    async def test_download_image(self, worker, image_factory):
        # Arrange
        content = b"archive-bytes"
        image = image_factory("boot", url="http://example.com/boot-1.img.xz")
        mock_client = mock_http_client([content[:6], content[6:]], content_length=len(content))
        progress = []

        # Act
        with patch("httpx.AsyncClient", return_value=mock_client):
            await worker.download_image(image, progress.append)

        # Assert
        assert worker.archive_path(image).read_bytes() == content
        assert not worker.archive_path(image).with_name("boot-1.img.xz.part").exists()
        mock_client.stream.assert_called_once_with("GET", "http://example.com/boot-1.img.xz")
        assert progress == [pytest.approx(6 / 13), 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_download_without_content_length(self, worker, image_factory):
        image = image_factory("boot")
        progress = []

        with patch("httpx.AsyncClient", return_value=mock_http_client([b"abc"])):
            await worker.download_image(image, progress.append)

        assert progress == [1.0]

    @pytest.mark.asyncio
    async def test_download_http_error_cleans_up(self, worker, image_factory):
        image = image_factory("boot")
        error = httpx.HTTPStatusError("404 Not Found", request=MagicMock(), response=MagicMock())

        with patch("httpx.AsyncClient", return_value=mock_http_client([], status_error=error)):
            with pytest.raises(httpx.HTTPStatusError):
                await worker.download_image(image, lambda p: None)

        assert list(worker.archive_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unpack_compressed_image(self, worker, image_factory):
        # Arrange
        payload = b"raw partition payload" * 10
        image = image_factory("boot", content=payload, url="http://example.com/boot.img.xz")
        worker.archive_path(image).write_bytes(lzma.compress(payload))
        progress = []

        # Act
        await worker.unpack_image(image, progress.append)

        # Assert
        assert worker.image_path(image).read_bytes() == payload
        assert progress[-1] == 1.0
        assert all(0 <= p <= 1 for p in progress)

    @pytest.mark.asyncio
    async def test_unpack_uncompressed_image(self, worker, image_factory):
        payload = b"plain image"
        image = image_factory("splash", content=payload, url="http://example.com/splash.img")
        worker.archive_path(image).write_bytes(payload)

        await worker.unpack_image(image, lambda p: None)

        assert await worker.get_image(image) == worker.image_path(image)
        assert worker.image_path(image).read_bytes() == payload

    @pytest.mark.asyncio
    async def test_unpack_checksum_mismatch(self, worker, image_factory):
        image = image_factory("boot", content=b"expected", url="http://example.com/boot.img.xz")
        worker.archive_path(image).write_bytes(lzma.compress(b"corrupted"))

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await worker.unpack_image(image, lambda p: None)

        assert str(exc_info.value).startswith("Checksum mismatch")
        assert exc_info.value.actual == hashlib.sha256(b"corrupted").hexdigest()
        assert list(worker.image_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unpack_without_download(self, worker, image_factory):
        with pytest.raises(FileNotFoundError, match="Archive not downloaded"):
            await worker.unpack_image(image_factory("boot"), lambda p: None)

    @pytest.mark.asyncio
    async def test_get_image_not_unpacked(self, worker, image_factory):
        with pytest.raises(FileNotFoundError, match="Image not unpacked"):
            await worker.get_image(image_factory("boot"))

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_worker(self, worker, image_factory):
        """A failed request is answered and later requests are still served."""
        image = image_factory("boot", content=b"ok", url="http://example.com/boot.img")

        with pytest.raises(FileNotFoundError):
            await worker.get_image(image)

        worker.archive_path(image).write_bytes(b"ok")
        await worker.unpack_image(image, lambda p: None)
        assert (await worker.get_image(image)).exists()

    @pytest.mark.asyncio
    async def test_requests_served_in_order(self, worker, image_factory):
        images = [
            image_factory(name, content=name.encode(), url=f"http://example.com/{name}.img")
            for name in ("boot", "system", "modem")
        ]
        for image in images:
            worker.archive_path(image).write_bytes(image.name.encode())

        await asyncio.gather(*(worker.unpack_image(image, lambda p: None) for image in images))

        for image in images:
            assert worker.image_path(image).read_bytes() == image.name.encode()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, tmp_path):
        worker = ImageWorker(tmp_path)
        await worker.stop()

        await worker.init()
        await worker.stop()
        await worker.stop()
