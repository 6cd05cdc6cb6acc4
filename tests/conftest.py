"""Global pytest fixtures and configuration."""

import hashlib
import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flasher.config import Settings  # noqa: E402
from flasher.models.manifest import Image  # noqa: E402
from flasher.services.state_manager import StateManager  # noqa: E402


@pytest.fixture(autouse=True)
def reset_state_manager():
    """Reset the StateManager singleton so every test gets a fresh session."""
    StateManager._instance = None
    yield
    StateManager._instance = None


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary cache."""
    return Settings(
        cache_dir=tmp_path / "cache",
        log_file=str(tmp_path / "logs" / "flasher.log"),
        manifests={"release": "http://example.com/all-partitions.json"},
    )


def make_image(name="boot", size=100, sparse=False, content=None, url=None, **kwargs):
    """Build an Image; the checksum matches ``content`` when given."""
    checksum = hashlib.sha256(content if content is not None else name.encode()).hexdigest()
    return Image(
        name=name,
        size=size,
        sparse=sparse,
        checksum=checksum,
        archive_url=url or f"http://example.com/{name}.img.xz",
        **kwargs,
    )


@pytest.fixture
def sample_manifest_json():
    """Sample all-partitions.json document."""
    return json.dumps(
        [
            {
                "name": "xbl",
                "url": "http://example.com/xbl-aaa.img.xz",
                "hash": "b" * 64,
                "hash_raw": "a" * 64,
                "size": 3282256,
                "sparse": False,
                "full_check": True,
                "has_ab": True,
            },
            {
                "name": "system",
                "url": "http://example.com/system-ccc.img.xz",
                "hash": "d" * 64,
                "hash_raw": "C" * 64,
                "size": 10737418240,
                "sparse": True,
                "full_check": False,
                "has_ab": True,
            },
        ]
    )


@pytest.fixture
def recognized_device_info():
    """Variables reported by a supported device."""
    return {
        "kernel": "uefi",
        "max-download-size": "104857600",
        "slot-count": "2",
        "current-slot": "a",
        "serialno": "1a2b3c4d",
        "partition-type:boot_a": "raw",
        "partition-type:boot_b": "raw",
        "partition-type:system_a": "ext4",
        "partition-type:system_b": "ext4",
        "partition-type:userdata": "ext4",
    }


@pytest.fixture
def mock_device(recognized_device_info):
    """Fake fastboot transport for a recognised device on slot a."""

    async def get_variable(name):
        if name == "all":
            return "\n".join(f"{k}:{v}" for k, v in recognized_device_info.items())
        return recognized_device_info[name]

    device = MagicMock()
    device.connect = AsyncMock()
    device.wait_for_connect = AsyncMock()
    device.get_variable = AsyncMock(side_effect=get_variable)
    device.run_command = AsyncMock(return_value="OKAY")

    async def flash_blob(partition, path, on_progress, slot="other"):
        on_progress(0.5)
        on_progress(1.0)

    device.flash_blob = AsyncMock(side_effect=flash_blob)
    return device


@pytest.fixture
def mock_image_worker(tmp_path):
    """Fake image worker that completes every task immediately."""

    async def report_done(image, on_progress):
        on_progress(0.5)
        on_progress(1.0)

    async def get_image(image):
        return tmp_path / image.file_name

    worker = MagicMock()
    worker.init = AsyncMock()
    worker.stop = AsyncMock()
    worker.download_image = AsyncMock(side_effect=report_done)
    worker.unpack_image = AsyncMock(side_effect=report_done)
    worker.get_image = AsyncMock(side_effect=get_image)
    return worker


@pytest.fixture
def image_factory():
    """Factory for Image objects."""
    return make_image
