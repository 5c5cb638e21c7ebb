import pydantic
import pytest

from app.config import Config
from domain.upload import UploadPolicy


def test_upload_policy_defaults() -> None:
    assert Config().upload == UploadPolicy()


def test_upload_policy_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("UPLOAD__STORAGE_BUDGET", "2048")
    monkeypatch.setenv("UPLOAD__MAX_CLEANUP_CHUNKS", "7")
    got = Config().upload
    assert got.storage_budget == 2048
    assert got.max_cleanup_chunks == 7
    assert got.chunk_size == UploadPolicy().chunk_size


@pytest.mark.parametrize("name", ["UPLOAD__STORAGE_BUDGET", "UPLOAD__CHUNK_SIZE"])
def test_zero_sizes_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str) -> None:
    monkeypatch.setenv(name, "0")
    with pytest.raises(pydantic.ValidationError):
        Config()
