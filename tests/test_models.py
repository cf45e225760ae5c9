from __future__ import annotations

from pathlib import Path

from vaultingest.models import Credentials, QueueState, TaskMetadata, TaskStatus, UploadTask


def _task(name: str, status: TaskStatus) -> UploadTask:
    task = UploadTask.create(Path(name), TaskMetadata(title=name))
    task.status = status
    return task


def test_queue_state_counts_are_derived() -> None:
    state = QueueState(
        tasks=(
            _task("a.png", TaskStatus.SUCCESS),
            _task("b.png", TaskStatus.ERROR),
            _task("c.png", TaskStatus.UPLOADING),
            _task("d.png", TaskStatus.PENDING),
        ),
        is_uploading=True,
    )

    assert state.total_count == 4
    assert state.completed_count == 1
    assert state.failed_count == 1
    assert state.active_count == 1
    assert state.progress == 0.5
    assert state.as_dict()["tasks"][1]["status"] == "error"


def test_empty_state_has_zero_progress() -> None:
    assert QueueState().progress == 0.0


def test_snapshot_is_independent() -> None:
    task = _task("a.png", TaskStatus.PENDING)
    snapshot = task.snapshot()
    task.status = TaskStatus.SUCCESS

    assert snapshot.status is TaskStatus.PENDING
    assert snapshot.id == task.id


def test_catalog_payload_maps_style_reference() -> None:
    metadata = TaskMetadata(title="t", prompt="p", model_base="SDXL", source="Artist", style="", style_ref="@ref")

    payload = metadata.catalog_payload()

    assert payload == {
        "prompt": "p",
        "model_base": "SDXL",
        "source": "Artist",
        "style": None,
        "imported_at": "@ref",
    }


def test_credentials_freshness_honours_margin() -> None:
    credentials = Credentials("ak", "sk", "token", expires_at=1000.0, bucket="b", region="r")

    assert credentials.is_fresh(800.0, 120)
    assert not credentials.is_fresh(900.0, 120)
