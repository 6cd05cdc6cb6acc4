"""Unit tests for capability preconditions."""

import pytest
from unittest.mock import AsyncMock, patch

from flasher.utils.requirements import Requirements, probe_requirements, storage_available


@pytest.mark.unit
class TestRequirements:
    """Test precondition probing."""

    def test_first_unmet_in_fixed_order(self):
        assert Requirements(usb=True, worker=True, storage=True).first_unmet() is None
        assert Requirements(usb=False, worker=False, storage=False).first_unmet() == "usb"
        assert Requirements(usb=True, worker=False, storage=False).first_unmet() == "worker"
        assert Requirements(usb=True, worker=True, storage=False).first_unmet() == "storage"

    @pytest.mark.asyncio
    async def test_all_met(self, tmp_path):
        with patch("flasher.utils.requirements.shutil.which", return_value="/usr/bin/fastboot"):
            result = await probe_requirements("fastboot", tmp_path / "cache")

        assert result == Requirements(usb=True, worker=True, storage=True)
        assert (tmp_path / "cache").is_dir()

    @pytest.mark.asyncio
    async def test_missing_fastboot_short_circuits(self, tmp_path):
        worker_probe = AsyncMock(return_value=True)
        with patch("flasher.utils.requirements.shutil.which", return_value=None), \
             patch("flasher.utils.requirements.worker_available", worker_probe):
            result = await probe_requirements("fastboot", tmp_path / "cache")

        assert result.first_unmet() == "usb"
        worker_probe.assert_not_called()
        assert not (tmp_path / "cache").exists()

    @pytest.mark.asyncio
    async def test_worker_unavailable(self, tmp_path):
        with patch("flasher.utils.requirements.shutil.which", return_value="/usr/bin/fastboot"), \
             patch("flasher.utils.requirements.worker_available", AsyncMock(return_value=False)):
            result = await probe_requirements("fastboot", tmp_path / "cache")

        assert result.first_unmet() == "worker"

    def test_storage_unavailable(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        assert storage_available(blocker / "cache") is False
