"""Manifest entities.

The JSON form is consumed by restore tooling, so field names are pinned with
aliases and documents must be dumped with ``by_alias=True``.
"""
from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 1


class ManifestFile(BaseModel):
    """File stored inside a batch archive."""
    model_config = ConfigDict(frozen=True)

    path: str
    size: int
    hash: str
    name: str


class ManifestEntry(BaseModel):
    """Committed batch."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    index: int
    archive_checksum: str = Field(alias="archiveChecksum")
    files: tuple[ManifestFile, ...]


class DayManifest(BaseModel):
    """Append-only record of the batches committed for a day-run."""
    model_config = ConfigDict(populate_by_name=True)

    date: str
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    batches: list[ManifestEntry] = Field(default_factory=list)

    @property
    def next_index(self) -> int:
        return len(self.batches)

    @property
    def file_count(self) -> int:
        return sum(len(entry.files) for entry in self.batches)

    def get_entry(self, batch_index: int) -> ManifestEntry | None:
        """Get entry for a batch index, or None if not committed."""
        for entry in self.batches:
            if entry.index == batch_index:
                return entry
        return None

    def with_entry(self, entry: ManifestEntry) -> "DayManifest":
        """Return a copy with the entry appended."""
        return DayManifest(
            date=self.date,
            schema_version=self.schema_version,
            batches=[*self.batches, entry],
        )

    def to_json(self) -> str:
        """Serialize to the manifest wire format."""
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, body: bytes | str) -> "DayManifest":
        """Parse the manifest wire format."""
        return cls.model_validate_json(body)
