import pytest

from domain.models import ErrorKind, LogicalFile, StorageUsage, UploadProgress
from domain.storage import MemoryKeyValueStore, MiB, QuotaExceededError
from domain.upload import UploadPolicy, UploadQuotaManager, create_file_chunks


KiB = 1024
NS = "9x5yvw-uploadfiles"


class RejectingStore(MemoryKeyValueStore):
    """Fails writes to the given keys."""

    def __init__(
        self,
        reject: set[str],
        error: type[Exception] = QuotaExceededError,
        quota: int = 5 * MiB,
    ) -> None:
        super().__init__(quota=quota)
        self.reject = reject
        self.error = error

    def set_item(self, key: str, value: str) -> None:
        if key in self.reject:
            raise self.error(f"Rejected {key}")
        super().set_item(key, value)


def make_files(*sizes: int) -> list[LogicalFile]:
    return [
        LogicalFile(path=f"recipes/{n}.md", content="x", size=size)
        for n, size in enumerate(sizes)
    ]


def upload_keys(store: MemoryKeyValueStore) -> list[str]:
    return [k for k in store.keys() if k.startswith(NS)]


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def manager(store: MemoryKeyValueStore) -> UploadQuotaManager:
    return UploadQuotaManager(store, UploadPolicy(upload_delay=0))


@pytest.mark.parametrize(
    "sizes,expected",
    (
        ((100, 200, 300), [[0, 1, 2]]),
        ((300 * KiB, 800 * KiB), [[0], [1]]),
        ((MiB,), [[0]]),
        ((MiB + 1,), [[0]]),
        ((10, MiB, 10), [[0], [1], [2]]),
        ((MiB + 1, 10), [[0], [1]]),
        ((512 * KiB, 512 * KiB, 1), [[0, 1], [2]]),
        ((0, MiB, 0), [[0, 1, 2]]),
        ((), []),
    ),
)
def test_create_file_chunks(sizes: tuple[int, ...], expected: list[list[int]]) -> None:
    files = make_files(*sizes)
    got = create_file_chunks(files, MiB)
    assert [[files.index(f) for f in chunk.files] for chunk in got] == expected


def test_create_file_chunks_keeps_order_and_sizes() -> None:
    files = make_files(*[(n * 7919) % (700 * KiB) for n in range(50)])
    chunks = create_file_chunks(files, MiB)

    assert [f for chunk in chunks for f in chunk.files] == files
    for chunk in chunks:
        assert chunk.size == sum(f.size for f in chunk.files)
        assert chunk.size <= MiB or len(chunk.files) == 1


def test_validate_files_empty(manager: UploadQuotaManager) -> None:
    got = manager.validate_files([])
    assert not got.valid
    assert got.errors == ["No files to upload"]


def test_validate_files_collects_every_error(manager: UploadQuotaManager) -> None:
    files = [
        LogicalFile(path="ok.md", content="", size=1),
        LogicalFile(path="  ", content="", size=-1),
    ]
    got = manager.validate_files(files)
    assert not got.valid
    assert got.errors == ["File 2 has invalid path", "File    has invalid size"]


def test_validate_files_limits() -> None:
    manager = UploadQuotaManager(None, UploadPolicy(max_files=2, max_total_size=10))
    got = manager.validate_files(make_files(5, 5, 5))
    assert len(got.errors) == 2
    assert got.errors[0].startswith("Too many files")
    assert got.errors[1].startswith("Total file size exceeds")


def test_validate_files_ok(manager: UploadQuotaManager) -> None:
    got = manager.validate_files(make_files(1, 2, 3))
    assert got.valid
    assert got.errors == []


def test_measure_storage_usage_empty(manager: UploadQuotaManager) -> None:
    exp = StorageUsage(used=0, available=5 * 1024 * 1024, percentage=0)
    assert manager.measure_storage_usage() == exp
    assert UploadQuotaManager(None).measure_storage_usage() == exp


def test_measure_storage_usage_counts_keys_and_values(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    store.set_item("ab", "cde")
    got = manager.measure_storage_usage()
    assert got.used == 5
    assert got.available == 5 * MiB - 5


def test_prepare_upload_single_chunk(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    files = make_files(100, 200, 300)
    got = manager.prepare_upload(files)
    assert got.success
    assert got.chunks is not None and len(got.chunks) == 1
    assert list(got.chunks[0].files) == files
    assert len(store) == 0


def test_prepare_upload_storage_nearly_full(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    store.set_item("filler", "x" * int(4.5 * MiB))
    got = manager.prepare_upload(make_files(10))
    assert not got.success
    assert got.error_kind == ErrorKind.quota_preflight
    assert got.error is not None and "90.0% full" in got.error


def test_prepare_upload_too_big(manager: UploadQuotaManager) -> None:
    got = manager.prepare_upload(make_files(4 * MiB))
    assert not got.success
    assert got.error_kind == ErrorKind.quota_preflight
    assert got.error is not None
    assert "6.0MB" in got.error and "5.0MB" in got.error


def test_prepare_upload_probe_rejected() -> None:
    store = RejectingStore({f"{NS}-test"})
    got = UploadQuotaManager(store).prepare_upload(make_files(10))
    assert not got.success
    assert got.error_kind == ErrorKind.quota_preflight
    assert got.error is not None and "quota exceeded" in got.error.lower()
    assert len(store) == 0


def test_prepare_upload_unknown_error() -> None:
    store = RejectingStore({f"{NS}-test"}, error=RuntimeError)
    got = UploadQuotaManager(store).prepare_upload(make_files(10))
    assert not got.success
    assert got.error_kind == ErrorKind.unknown
    assert got.error is not None and got.error.startswith("Failed to prepare upload:")


@pytest.mark.asyncio
async def test_upload_files_round_trip(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    files = make_files(300 * KiB, 800 * KiB)
    progress: list[UploadProgress] = []
    errors: list[str] = []

    got = await manager.upload_files(files, progress.append, errors.append)

    assert got.success
    assert got.uploaded_files == 2
    assert errors == []
    assert [(p.current, p.total, p.percentage) for p in progress] == [
        (1, 2, 50),
        (2, 2, 100),
    ]
    assert sorted(upload_keys(store)) == [
        f"{NS}-chunk-0",
        f"{NS}-chunk-1",
        f"{NS}-metadata",
    ]

    status = manager.get_upload_status()
    assert status.has_data
    assert status.metadata is not None
    assert status.metadata.total_files == 2
    assert status.metadata.total_chunks == 2
    assert status.storage_usage.used > 0

    manager.clear_upload_data()
    assert not manager.get_upload_status().has_data
    assert upload_keys(store) == []


@pytest.mark.asyncio
async def test_upload_files_rolls_back_on_chunk_failure() -> None:
    store = RejectingStore({f"{NS}-chunk-2"})
    manager = UploadQuotaManager(store, UploadPolicy(upload_delay=0))
    files = make_files(600 * KiB, 600 * KiB, 600 * KiB, 600 * KiB)
    assert len(create_file_chunks(files, MiB)) == 4
    progress: list[UploadProgress] = []
    errors: list[str] = []

    got = await manager.upload_files(files, progress.append, errors.append)

    assert not got.success
    assert got.error_kind == ErrorKind.quota_commit
    assert got.is_quota_error
    assert errors == [got.error]
    assert len(progress) == 2
    assert f"{NS}-chunk-0" not in store
    assert f"{NS}-chunk-1" not in store
    assert f"{NS}-metadata" not in store
    assert len(store) == 0


@pytest.mark.asyncio
async def test_upload_files_rolls_back_on_metadata_failure() -> None:
    store = RejectingStore({f"{NS}-metadata"})
    manager = UploadQuotaManager(store, UploadPolicy(upload_delay=0))
    errors: list[str] = []

    got = await manager.upload_files(make_files(600 * KiB, 600 * KiB), on_error=errors.append)

    assert not got.success
    assert got.error_kind == ErrorKind.quota_commit
    assert len(errors) == 1
    assert len(store) == 0


@pytest.mark.asyncio
async def test_upload_files_rolls_back_on_unknown_error() -> None:
    store = RejectingStore({f"{NS}-chunk-1"}, error=RuntimeError)
    manager = UploadQuotaManager(store, UploadPolicy(upload_delay=0))
    errors: list[str] = []

    got = await manager.upload_files(make_files(600 * KiB, 600 * KiB), on_error=errors.append)

    assert not got.success
    assert got.error_kind == ErrorKind.unknown
    assert not got.is_quota_error
    assert got.error is not None and got.error.startswith("Upload failed:")
    assert errors == [got.error]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_upload_files_hits_real_quota() -> None:
    store = MemoryKeyValueStore(quota=1500)
    manager = UploadQuotaManager(store, UploadPolicy(chunk_size=700, upload_delay=0))
    files = [
        LogicalFile(path=f"f{n}", content="y" * 600, size=600) for n in range(3)
    ]

    got = await manager.upload_files(files)

    assert not got.success
    assert got.error_kind == ErrorKind.quota_commit
    assert len(store) == 0


@pytest.mark.asyncio
async def test_upload_files_preflight_failure_reports_once(
    manager: UploadQuotaManager,
) -> None:
    errors: list[str] = []
    got = await manager.upload_files(make_files(4 * MiB), on_error=errors.append)
    assert not got.success
    assert got.is_quota_error
    assert errors == [got.error]


@pytest.mark.asyncio
async def test_upload_files_without_storage() -> None:
    errors: list[str] = []
    got = await UploadQuotaManager(None).upload_files(make_files(1), on_error=errors.append)
    assert not got.success
    assert got.error_kind == ErrorKind.unknown
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_clear_upload_data_is_idempotent(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    store.set_item("other", "1")
    store.set_item(NS, "{}")
    await manager.upload_files(make_files(10, 20))

    manager.clear_upload_data()
    first = sorted(store.keys())
    manager.clear_upload_data()
    second = sorted(store.keys())

    assert first == second == ["other"]


def test_get_upload_status_ignores_corrupt_metadata(
    store: MemoryKeyValueStore,
    manager: UploadQuotaManager,
) -> None:
    store.set_item(f"{NS}-metadata", "not json")
    got = manager.get_upload_status()
    assert not got.has_data
    assert got.metadata is None
