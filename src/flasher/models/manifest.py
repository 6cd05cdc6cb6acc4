"""Manifest data models for the flashable image list."""

import json
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator


class ManifestEmptyError(ValueError):
    """Raised when a manifest parses to zero images."""


class Image(BaseModel):
    """Image entry in the partition manifest.

    Represents one unit of flashable content. Immutable once loaded.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1, description="Partition identifier (e.g., 'boot')")
    size: int = Field(..., ge=0, description="Unpacked size in bytes, used as progress weight")
    sparse: bool = Field(False, description="Sparse images are erased before flashing")
    checksum: str = Field(
        ...,
        alias="hash_raw",
        pattern=r"^[a-fA-F0-9]{64}$",
        description="Expected SHA-256 of the unpacked payload",
    )
    archive_url: str = Field(
        ...,
        alias="url",
        pattern=r"^https?://.+",
        description="URL of the (possibly xz-compressed) image archive",
    )
    has_ab: bool = Field(True, description="Partition exists once per A/B slot")

    @field_validator("checksum")
    @classmethod
    def lowercase_checksum(cls, v: str) -> str:
        return v.lower()

    @property
    def archive_file_name(self) -> str:
        """Last path segment of the archive URL."""
        return urlparse(self.archive_url).path.rsplit("/", 1)[-1]

    @property
    def compressed(self) -> bool:
        return self.archive_file_name.endswith(".xz")

    @property
    def file_name(self) -> str:
        """Name of the unpacked image file."""
        return f"{self.name}-{self.checksum}.img"


class Manifest(RootModel[list[Image]]):
    """Ordered list of images to flash.

    Order is significant (e.g. boot before userdata) and preserved as loaded.
    """

    def __iter__(self):
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __getitem__(self, idx: int) -> Image:
        return self.root[idx]


def create_manifest(text: str) -> Manifest:
    """Parse manifest JSON text into a Manifest.

    Args:
        text: Raw manifest document (JSON array of image entries)

    Returns:
        Parsed Manifest, in document order

    Raises:
        ValueError: If the text is not valid JSON
        ManifestEmptyError: If the manifest contains no images
        pydantic.ValidationError: If an entry does not match the image schema
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid manifest JSON: {e}")

    manifest = Manifest.model_validate(data)
    if len(manifest) == 0:
        raise ManifestEmptyError("Manifest is empty")
    return manifest
