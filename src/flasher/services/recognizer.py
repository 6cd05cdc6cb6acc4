"""Device recognition for the supported fastboot device family."""

import logging

logger = logging.getLogger("flasher.recognizer")

PARTITION_TYPE_PREFIX = "partition-type:"
SLOT_SUFFIXES = ("_a", "_b")

EXPECTED_KERNEL = "uefi"
EXPECTED_MAX_DOWNLOAD_SIZE = "104857600"
EXPECTED_SLOT_COUNT = "2"

# Partitions reported by a supported device. A device may report fewer.
EXPECTED_PARTITIONS = frozenset(
    [
        "ALIGN_TO_128K_1", "ALIGN_TO_128K_2", "ImageFv", "abl", "aop", "apdp", "bluetooth", "boot",
        "cache", "cdt", "cmnlib", "cmnlib64", "ddr", "devcfg", "devinfo", "dip", "dsp", "fdemeta",
        "frp", "fsc", "fsg", "hyp", "keymaster", "keystore", "limits", "logdump", "logfs", "mdtp",
        "mdtpsecapp", "misc", "modem", "modemst1", "modemst2", "msadp", "persist", "qupfw",
        "rawdump", "sec", "splash", "spunvm", "ssd", "sti", "storsec", "system", "systemrw",
        "toolsfv", "tz", "userdata", "vm-linux", "vm-system", "xbl", "xbl_config",
    ]
)


def parse_device_info(text: str) -> dict[str, str]:
    """Parse a bulk ``getvar all`` response into a variable mapping.

    Each line is ``key:value``. Keys may contain colons themselves
    (``partition-type:boot_a:raw``), so the last segment is the value and
    everything before it is the key.
    """
    info: dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        key, _, value = line.rpartition(":")
        info[key.strip()] = value.strip()
    return info


def partition_names(device_info: dict[str, str]) -> list[str]:
    """Partition names from ``partition-type:`` keys, slot suffix stripped, deduplicated."""
    partitions: list[str] = []
    for key in device_info:
        if not key.startswith(PARTITION_TYPE_PREFIX):
            continue
        partition = key[len(PARTITION_TYPE_PREFIX):]
        if partition.endswith(SLOT_SUFFIXES):
            partition = partition[:-2]
        if partition not in partitions:
            partitions.append(partition)
    return partitions


def is_recognized_device(device_info: dict[str, str]) -> bool:
    """Check the connected device matches the supported hardware profile.

    All checks must pass; values are compared as strings.

    Args:
        device_info: Variables reported by the device

    Returns:
        True if the device is recognised
    """
    kernel = device_info.get("kernel")
    max_download_size = device_info.get("max-download-size")
    slot_count = device_info.get("slot-count")
    if (
        kernel != EXPECTED_KERNEL
        or max_download_size != EXPECTED_MAX_DOWNLOAD_SIZE
        or slot_count != EXPECTED_SLOT_COUNT
    ):
        logger.error(
            f"Unrecognised device (kernel, max-download-size or slot-count): "
            f"kernel={kernel}, max-download-size={max_download_size}, slot-count={slot_count}"
        )
        return False

    partitions = partition_names(device_info)
    unexpected = [p for p in partitions if p not in EXPECTED_PARTITIONS]
    if unexpected:
        logger.error(f"Unrecognised device (partitions): unexpected={unexpected}")
        return False

    # Sanity check, also useful for logging
    if not device_info.get("serialno"):
        logger.error(f"Unrecognised device (missing serialno): {device_info}")
        return False

    return True
