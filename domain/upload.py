"""Upload simulator with storage quota management.

Files are grouped into chunks of roughly `chunk_size` bytes and committed to a
key-value store one chunk at a time. A metadata record is written last and
marks the upload complete. If any write is rejected everything already
written for the upload is removed again.

Keys, for a namespace `ns`:

    ns                 reserved
    ns-test            write probe, removed straight away
    ns-chunk-<index>   one per committed chunk
    ns-metadata        completion marker
"""

import asyncio
import logging
from typing import Callable, Sequence

from pydantic import BaseModel, Field, ValidationError

from domain.models import (
    Bytes,
    Chunk,
    ErrorKind,
    LogicalFile,
    PrepareResult,
    StorageUsage,
    UploadMetadata,
    UploadProgress,
    UploadResult,
    UploadStatus,
    ValidationResult,
)
from domain.storage import (
    DEFAULT_QUOTA,
    MiB,
    KeyValueStore,
    MemoryKeyValueStore,
    measure_storage_usage,
    safe_get,
    safe_remove,
    safe_set,
)


logger = logging.getLogger(__name__)


type ProgressCallback = Callable[[UploadProgress], None]
type ErrorCallback = Callable[[str], None]


class UploadError(Exception):
    kind = ErrorKind.unknown


class QuotaPreflightError(UploadError):
    kind = ErrorKind.quota_preflight


class QuotaCommitError(UploadError):
    kind = ErrorKind.quota_commit


class UploadPolicy(BaseModel):
    namespace: str = "9x5yvw-uploadfiles"
    storage_budget: Bytes = Field(DEFAULT_QUOTA, gt=0)
    chunk_size: Bytes = Field(MiB, gt=0)
    max_usage_percentage: float = 80
    encoding_overhead: float = 1.5
    max_files: int = 1000
    max_total_size: Bytes = 100 * MiB
    max_cleanup_chunks: int = Field(100, ge=0)
    upload_delay: float = Field(0.1, ge=0)


def create_file_chunks(files: Sequence[LogicalFile], chunk_size: Bytes) -> list[Chunk]:
    """Greedily group `files`, in order, into chunks of at most `chunk_size`.

    A file bigger than `chunk_size` ends up alone in its own chunk.
    """
    chunks: list[Chunk] = []
    current: list[LogicalFile] = []
    current_size = 0

    for file in files:
        if current_size + file.size > chunk_size and current:
            chunks.append(Chunk.from_files(current))
            current = []
            current_size = 0
        current.append(file)
        current_size += file.size

    if current:
        chunks.append(Chunk.from_files(current))

    return chunks


def to_mib(size: float) -> str:
    return f"{size / MiB:.1f}MB"


class UploadQuotaManager:
    def __init__(
        self,
        store: KeyValueStore | None,
        policy: UploadPolicy | None = None,
    ) -> None:
        self.store = store
        self.policy = UploadPolicy() if policy is None else policy

    @property
    def base_key(self) -> str:
        return self.policy.namespace

    @property
    def test_key(self) -> str:
        return f"{self.policy.namespace}-test"

    @property
    def metadata_key(self) -> str:
        return f"{self.policy.namespace}-metadata"

    def chunk_key(self, index: int) -> str:
        return f"{self.policy.namespace}-chunk-{index}"

    def validate_files(self, files: Sequence[LogicalFile]) -> ValidationResult:
        errors: list[str] = []

        if not files:
            errors.append("No files to upload")

        if len(files) > self.policy.max_files:
            errors.append(f"Too many files (max {self.policy.max_files})")

        if sum(f.size for f in files) > self.policy.max_total_size:
            errors.append(
                f"Total file size exceeds {to_mib(self.policy.max_total_size)} limit"
            )

        for n, file in enumerate(files, start=1):
            if not file.path.strip():
                errors.append(f"File {n} has invalid path")
            if file.size < 0:
                errors.append(f"File {file.path} has invalid size")

        return ValidationResult(valid=not errors, errors=errors)

    def measure_storage_usage(self) -> StorageUsage:
        return measure_storage_usage(self.store, self.policy.storage_budget)

    def _preflight(self, files: Sequence[LogicalFile]) -> list[Chunk]:
        if self.store is None:
            raise UploadError("Storage is not available.")

        usage = self.measure_storage_usage()
        if usage.percentage > self.policy.max_usage_percentage:
            raise QuotaPreflightError(
                f"Storage is {usage.percentage:.1f}% full. "
                "Please clear storage before uploading."
            )

        needed = sum(f.size for f in files) * self.policy.encoding_overhead
        if needed > usage.available:
            raise QuotaPreflightError(
                f"Upload size ({to_mib(needed)}) exceeds available storage "
                f"({to_mib(usage.available)}). "
                "Please clear storage or upload fewer files."
            )

        chunks = create_file_chunks(files, self.policy.chunk_size)

        if not safe_set(self.store, self.test_key, {"test": True}):
            raise QuotaPreflightError(
                "Storage quota exceeded. Please clear your storage and try again."
            )
        safe_remove(self.store, self.test_key)

        return chunks

    def prepare_upload(self, files: Sequence[LogicalFile]) -> PrepareResult:
        """Check there is room for `files` and split them into chunks.

        Nothing is left in the store whatever the outcome.
        """
        try:
            chunks = self._preflight(files)
        except UploadError as e:
            return PrepareResult(success=False, error=str(e), error_kind=e.kind)
        except Exception as e:
            return PrepareResult(
                success=False,
                error=f"Failed to prepare upload: {e}",
                error_kind=ErrorKind.unknown,
            )
        return PrepareResult(success=True, chunks=tuple(chunks))

    def _rollback(self, committed: int) -> None:
        assert self.store is not None
        logger.warning("Rolling back %s committed chunk(s).", committed)
        for index in range(committed):
            safe_remove(self.store, self.chunk_key(index))
        safe_remove(self.store, self.metadata_key)

    async def _commit(
        self,
        files: Sequence[LogicalFile],
        chunks: Sequence[Chunk],
        on_progress: ProgressCallback | None,
    ) -> int:
        assert self.store is not None
        uploaded = 0
        committed = 0

        try:
            for index, chunk in enumerate(chunks):
                if not safe_set(self.store, self.chunk_key(index), chunk):
                    raise QuotaCommitError(
                        "Storage quota exceeded during upload. "
                        "Please clear storage and try again."
                    )
                committed += 1

                uploaded += len(chunk.files)
                if on_progress is not None:
                    on_progress(
                        UploadProgress(
                            current=uploaded,
                            total=len(files),
                            percentage=uploaded / len(files) * 100,
                        )
                    )

                # Stands in for network transfer.
                await asyncio.sleep(self.policy.upload_delay)

            metadata = UploadMetadata(total_files=len(files), total_chunks=len(chunks))
            if not safe_set(self.store, self.metadata_key, metadata):
                raise QuotaCommitError(
                    "Failed to store upload metadata. Storage quota exceeded."
                )
        except Exception:
            self._rollback(committed)
            raise

        return uploaded

    async def upload_files(
        self,
        files: Sequence[LogicalFile],
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> UploadResult:
        """Commit `files` chunk by chunk, reporting progress after each chunk.

        `on_error` is called at most once, with the same message returned in
        the result.
        """
        preparation = self.prepare_upload(files)
        if not preparation.success:
            error = preparation.error or "Failed to prepare upload"
            if on_error is not None:
                on_error(error)
            return UploadResult(
                success=False, error=error, error_kind=preparation.error_kind
            )

        try:
            uploaded = await self._commit(files, preparation.chunks or (), on_progress)
        except UploadError as e:
            error, kind = str(e), e.kind
        except Exception as e:
            error, kind = f"Upload failed: {e}", ErrorKind.unknown
        else:
            logger.info("Uploaded %s file(s).", uploaded)
            return UploadResult(success=True, uploaded_files=uploaded)

        logger.error(error)
        if on_error is not None:
            on_error(error)
        return UploadResult(success=False, error=error, error_kind=kind)

    def clear_upload_data(self) -> None:
        if self.store is None:
            return

        safe_remove(self.store, self.base_key)
        safe_remove(self.store, self.metadata_key)
        for index in range(self.policy.max_cleanup_chunks):
            safe_remove(self.store, self.chunk_key(index))

    def get_upload_status(self) -> UploadStatus:
        metadata = None
        if self.store is not None:
            data = safe_get(self.store, self.metadata_key)
            if data is not None:
                try:
                    metadata = UploadMetadata.model_validate(data)
                except ValidationError:
                    logger.exception("Unreadable upload metadata.")

        return UploadStatus(
            has_data=metadata is not None,
            metadata=metadata,
            storage_usage=self.measure_storage_usage(),
        )


async def main() -> None:
    """Simulate uploading a batch of generated files."""
    from rich import print

    files = [
        LogicalFile(path=f"recipes/{n}.md", content="x" * size, size=size)
        for n, size in enumerate([300 * 1024, 800 * 1024, 200 * 1024, 1200 * 1024])
    ]
    manager = UploadQuotaManager(MemoryKeyValueStore())

    validation = manager.validate_files(files)
    if not validation.valid:
        print(validation.errors)
        return

    result = await manager.upload_files(
        files,
        on_progress=lambda p: print(f"{p.current}/{p.total} ({p.percentage:.0f}%)"),
        on_error=lambda e: print(f"[red]{e}[/red]"),
    )
    print(result)
    print(manager.get_upload_status())


if __name__ == "__main__":
    asyncio.run(main())
