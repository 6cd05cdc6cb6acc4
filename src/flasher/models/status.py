"""Step and error enums for the flashing session."""

from enum import Enum


class StepEnum(int, Enum):
    """Flashing lifecycle steps, in forward order.

    State transitions:
    ready → connecting → downloading → unpacking → flashing → erasing → done
      ↑          │
      └──────────┘ (connect request failed, e.g. device chooser cancelled)
    """

    READY = 0
    CONNECTING = 1
    DOWNLOADING = 2
    UNPACKING = 3
    FLASHING = 4
    ERASING = 5
    DONE = 6


class ErrorEnum(int, Enum):
    """Fixed error taxonomy surfaced to the caller."""

    UNKNOWN = -1
    NONE = 0
    UNRECOGNIZED_DEVICE = 1
    LOST_CONNECTION = 2
    DOWNLOAD_FAILED = 3
    UNPACK_FAILED = 4
    CHECKSUM_MISMATCH = 5
    FLASH_FAILED = 6
    ERASE_FAILED = 7
    REQUIREMENTS_NOT_MET = 8


# Human-readable descriptions for the presentation layer
ERROR_DESCRIPTIONS: dict[ErrorEnum, str] = {
    ErrorEnum.UNKNOWN: "An unknown error has occurred. Unplug your device and wait for 20s.",
    ErrorEnum.UNRECOGNIZED_DEVICE: (
        "The device connected to your computer is not supported. "
        "Try using a different cable, USB port, or computer."
    ),
    ErrorEnum.LOST_CONNECTION: (
        "The connection to your device was lost. Unplug your device and try again."
    ),
    ErrorEnum.DOWNLOAD_FAILED: (
        "The system images could not be downloaded. Check your internet connection and try again."
    ),
    ErrorEnum.UNPACK_FAILED: "The system images could not be unpacked. Try again.",
    ErrorEnum.CHECKSUM_MISMATCH: (
        "The system image downloaded does not match the expected checksum. Try again."
    ),
    ErrorEnum.FLASH_FAILED: (
        "An error occurred while flashing your device. Try using a different cable, "
        "USB port, or computer."
    ),
    ErrorEnum.ERASE_FAILED: "The device could not be erased. Try using a different cable, USB port, or computer.",
    ErrorEnum.REQUIREMENTS_NOT_MET: (
        "Your system does not meet the requirements to flash your device. "
        "Make sure the fastboot tool is installed and the cache directory is writable."
    ),
}
