"""Tests for batch archiving."""
import io
import zipfile
import pytest

from backup_batcher.domain.services.batching_service import make_batches
from backup_batcher.infra.common import ArchiveError, compute_bytes_hash
from backup_batcher.use_cases.steps.archive_batch import Archiver, extract_members, member_name, same_members
from backup_batcher.use_cases.steps.enumerate_files import enumerate_files


@pytest.fixture
def tree(tmp_path):
    """Create a tree with duplicate basenames in different directories."""
    root = tmp_path / "docs"
    (root / "2023").mkdir(parents=True)
    (root / "2024").mkdir(parents=True)
    (root / "2023" / "report.txt").write_bytes(b"old report " * 100)
    (root / "2024" / "report.txt").write_bytes(b"new report " * 100)
    (root / "notes.md").write_bytes(b"# notes\n")
    return root


@pytest.fixture
def batch(tree):
    """Single batch holding the whole tree."""
    return next(make_batches(enumerate_files(tree), batch_size=10))


def test_member_name():
    """Test member names are position-prefixed basenames."""
    assert member_name(0, "2023/report.txt") == "0000_report.txt"
    assert member_name(12, "notes.md") == "0012_notes.md"


def test_build_archive_round_trip(tree, batch):
    """Test every file extracts byte-identical under its manifest name."""
    archive = Archiver().build_archive(batch)

    names = [f.name for f in archive.files]
    members = extract_members(archive.blob, names)

    for file in archive.files:
        assert members[file.name] == (tree / file.path).read_bytes()
        assert compute_bytes_hash(members[file.name]) == file.hash
    assert [f.path for f in archive.files] == ["2023/report.txt", "2024/report.txt", "notes.md"]
    assert len(set(names)) == 3


def test_archive_metadata(batch):
    """Test checksum and size describe the compressed blob."""
    archive = Archiver().build_archive(batch)

    assert archive.batch_index == 0
    assert archive.size == len(archive.blob)
    assert archive.checksum == compute_bytes_hash(archive.blob)
    assert archive.size < batch.total_bytes


def test_members_are_deflated_with_path_comment(batch):
    """Test members use DEFLATE and carry their relative path."""
    archive = Archiver().build_archive(batch)

    with zipfile.ZipFile(io.BytesIO(archive.blob)) as zf:
        infos = zf.infolist()
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in infos)
        assert [info.comment.decode() for info in infos] == [
            "2023/report.txt", "2024/report.txt", "notes.md",
        ]


def test_build_archive_is_deterministic(tree, batch):
    """Test rebuilding an unchanged batch gives the same blob."""
    first = Archiver().build_archive(batch)
    (tree / "notes.md").touch()
    second = Archiver().build_archive(batch)

    assert first.checksum == second.checksum


def test_compress_level_zero_stores_uncompressed_size(batch):
    """Test level 0 produces a blob at least as large as the input."""
    archive = Archiver(compress_level=0).build_archive(batch)

    assert archive.size >= batch.total_bytes


def test_changed_file_raises(tree, batch):
    """Test a file modified after enumeration is detected."""
    (tree / "notes.md").write_bytes(b"# edited\n")

    with pytest.raises(ArchiveError, match="notes.md changed"):
        Archiver().build_archive(batch)


def test_vanished_file_raises(tree, batch):
    """Test a file deleted after enumeration is detected."""
    (tree / "notes.md").unlink()

    with pytest.raises(ArchiveError, match="vanished"):
        Archiver().build_archive(batch)


def test_refresh_batch_after_change(tree, batch):
    """Test a refreshed batch keeps its index and membership."""
    (tree / "notes.md").write_bytes(b"# edited notes\n")
    archiver = Archiver()

    refreshed = archiver.refresh_batch(batch)
    archive = archiver.build_archive(refreshed)

    assert refreshed.index == batch.index
    assert [r.relative_path for r in refreshed.files] == [r.relative_path for r in batch.files]
    assert archive.files[2].size == len(b"# edited notes\n")


def test_refresh_batch_vanished_file_raises(tree, batch):
    """Test a batch cannot be refreshed once a member is gone."""
    (tree / "2023" / "report.txt").unlink()

    with pytest.raises(ArchiveError, match="no longer readable"):
        Archiver().refresh_batch(batch)


def test_extract_missing_member_raises(batch):
    """Test asking for an unknown member fails."""
    archive = Archiver().build_archive(batch)

    with pytest.raises(ArchiveError, match="missing members"):
        extract_members(archive.blob, ["9999_nope.txt"])


def test_extract_corrupt_blob_raises():
    """Test a blob that is not a zip fails."""
    with pytest.raises(ArchiveError, match="Corrupt archive"):
        extract_members(b"definitely not a zip", ["0000_a.txt"])


def test_same_members_ignores_compression(batch):
    """Test the same files packed at another compress level still match."""
    packed = Archiver(compress_level=6).build_archive(batch)
    repacked = Archiver(compress_level=0).build_archive(batch)

    assert packed.checksum != repacked.checksum
    assert same_members(packed.blob, repacked.blob) is True


def test_same_members_detects_other_content(tree, batch):
    """Test archives whose files differ do not match."""
    packed = Archiver().build_archive(batch)
    (tree / "notes.md").write_bytes(b"# notes!")
    changed = Archiver().build_archive(next(make_batches(enumerate_files(tree), batch_size=10)))

    assert same_members(packed.blob, changed.blob) is False
    assert same_members(packed.blob, b"not a zip") is False
