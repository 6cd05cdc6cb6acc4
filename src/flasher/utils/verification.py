"""SHA-256 checksum comparison and mismatch classification for unpacked images."""

import logging

CHECKSUM_MISMATCH_MARKER = "Checksum mismatch"


class ChecksumMismatchError(ValueError):
    """Unpacked payload does not match the manifest checksum."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"{CHECKSUM_MISMATCH_MARKER}: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


def is_checksum_mismatch(err: BaseException) -> bool:
    """True if the failure carries the checksum-mismatch signature."""
    return isinstance(err, ChecksumMismatchError) or str(err).startswith(
        CHECKSUM_MISMATCH_MARKER
    )


def verify_checksum_or_raise(actual: str, expected: str, name: str = "") -> None:
    """Compare a computed digest with the expected one.

    Raises:
        ChecksumMismatchError: If the digests differ
    """
    logger = logging.getLogger("flasher.verification")
    expected = expected.lower()
    if actual.lower() != expected:
        logger.error(f"Checksum mismatch for {name}: expected {expected}, got {actual}")
        raise ChecksumMismatchError(expected, actual)
    logger.info(f"Checksum verification passed for {name}")
