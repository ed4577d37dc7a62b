"""Tests for the shared domain models."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from mediarelay.shared.enums import QueuePhase, QueueStatus
from mediarelay.shared.models import Chunk, MediaMetadata, QueueItem, Session, UploadParameters


class TestSession:
    def test_expiry(self) -> None:
        session = Session(account_id="a", email="a@example.com", cookies="x=1", expires_at=100.0)
        assert not session.is_expired(99.9)
        assert session.is_expired(100.0)


class TestChunk:
    def test_inclusive_range(self) -> None:
        chunk = Chunk(index=0, start=0, end=1023)
        assert chunk.length == 1024
        assert chunk.range_header == "bytes=0-1023"


class TestMediaMetadata:
    def test_accepts_wire_aliases(self) -> None:
        meta = MediaMetadata.model_validate({"mp4Url": "https://cdn/x.mp4", "fileSize": 10})
        assert meta.media_url == "https://cdn/x.mp4"
        assert meta.model_dump(by_alias=True) == {"mp4Url": "https://cdn/x.mp4", "fileSize": 10}


class TestUploadParameters:
    def test_params_object_is_serialized(self) -> None:
        params = UploadParameters.model_validate(
            {
                "response": "tok",
                "project": 7,
                "nonce": "n",
                "params": {"folder": 1},
                "signature": "sig",
            }
        )

        assert params.project == "7"
        assert json.loads(params.params) == {"folder": 1}
        assert list(params.form_fields()) == ["response", "project", "nonce", "params", "signature"]
        assert params.upload_url is None

    def test_missing_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            UploadParameters.model_validate({"response": "tok", "project": "p"})


class TestQueueItem:
    def test_defaults(self, sample_item: QueueItem) -> None:
        assert sample_item.status == QueueStatus.PENDING
        assert sample_item.kind == QueuePhase.DOWNLOAD
        assert sample_item.phase is None
        assert sample_item.progress == 0.0

    def test_frozen(self, sample_item: QueueItem) -> None:
        with pytest.raises(ValidationError):
            sample_item.status = QueueStatus.ACTIVE  # type: ignore[misc]

    def test_json_round_trip(self, sample_item: QueueItem) -> None:
        restored = QueueItem.model_validate(sample_item.model_dump(mode="json"))
        assert restored == sample_item
