import pytest
import threading
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock
from cti.domain.models import FileKind, FileRecord
from cti.pipeline.reconcile import build_jobs
from cti.pipeline.worker_pool import WorkerPool, resolve_worker_count


def _raw_files(directory: Path, count: int):
    directory.mkdir(parents=True, exist_ok=True)
    records = []
    for i in range(count):
        path = directory / f"P{i:04d}.ORF"
        path.write_bytes(b"raw")
        records.append(FileRecord(
            path=path,
            name=path.name,
            match_key=path.stem,
            size_bytes=3,
            modified_at=datetime(2024, 1, 1),
            kind=FileKind.RAW,
        ))
    return records


@pytest.mark.parametrize("configured, jobs, cpus, expected", [
    (0, 10, 8, 4),   # auto: cpu count capped at 4
    (0, 10, 2, 2),   # auto: fewer cores than the cap
    (0, 3, 16, 3),   # never more workers than jobs
    (8, 20, 2, 8),   # explicit setting overrides the cap
    (8, 5, 2, 5),
    (0, 0, 4, 1),    # at least one
])
def test_resolve_worker_count(configured, jobs, cpus, expected):
    assert resolve_worker_count(configured, jobs, cpu_count=cpus) == expected


def test_pool_processes_every_job_once(tmp_path, fake_converter):
    files = _raw_files(tmp_path / "card", 12)
    pool = WorkerPool(fake_converter, workers=3)

    outcomes = list(pool.run(build_jobs(files)))

    assert len(outcomes) == 12
    assert sorted(o.sequence_index for o in outcomes) == list(range(12))
    assert sorted(fake_converter.calls) == sorted(f.name for f in files)
    assert all(o.ok for o in outcomes)
    assert pool.worker_count == 3


def test_pool_respects_concurrency_bound(tmp_path, make_converter):
    converter = make_converter(delay=0.05)
    files = _raw_files(tmp_path / "card", 10)
    pool = WorkerPool(converter, workers=3)

    outcomes = list(pool.run(build_jobs(files)))

    assert len(outcomes) == 10
    assert 1 <= converter.high_water_mark <= 3


def test_pool_auto_workers_never_exceed_cap(tmp_path, make_converter, monkeypatch):
    monkeypatch.setattr("cti.pipeline.worker_pool.os.cpu_count", lambda: 32)
    converter = make_converter(delay=0.02)
    files = _raw_files(tmp_path / "card", 9)
    pool = WorkerPool(converter, workers=0)

    list(pool.run(build_jobs(files)))

    assert pool.worker_count == 4
    assert converter.high_water_mark <= 4


def test_pool_failure_does_not_stop_other_jobs(tmp_path, make_converter):
    files = _raw_files(tmp_path / "card", 5)
    converter = make_converter(fail_names={"P0002.ORF"})
    pool = WorkerPool(converter, workers=2)

    outcomes = {o.source_file.name: o for o in pool.run(build_jobs(files))}

    assert len(outcomes) == 5
    failed = outcomes["P0002.ORF"]
    assert failed.ok is False
    assert failed.output_path is None
    assert "cannot decode P0002.ORF" in failed.error
    assert all(o.ok for name, o in outcomes.items() if name != "P0002.ORF")


def test_pool_outcome_carries_output_and_timing(tmp_path, fake_converter):
    files = _raw_files(tmp_path / "card", 1)
    outcome = next(iter(WorkerPool(fake_converter).run(build_jobs(files))))

    assert outcome.output_path == fake_converter.output_dir / "P0000.jpg"
    assert outcome.output_path.exists()
    assert outcome.elapsed >= 0
    assert outcome.intermediate_path is None


def test_pool_runs_normalizer_first(tmp_path, fake_converter):
    files = _raw_files(tmp_path / "card", 2)
    dng_dir = tmp_path / "dng"
    dng_dir.mkdir()

    def to_dng(path):
        out = dng_dir / f"{Path(path).stem}.dng"
        out.write_bytes(b"dng")
        return out

    normalizer = MagicMock()
    normalizer.convert.side_effect = to_dng
    pool = WorkerPool(fake_converter, normalizer=normalizer, workers=2)

    outcomes = list(pool.run(build_jobs(files)))

    assert sorted(fake_converter.calls) == ["P0000.dng", "P0001.dng"]
    assert {o.intermediate_path for o in outcomes} == {dng_dir / "P0000.dng", dng_dir / "P0001.dng"}


def test_pool_normalizer_failure_skips_conversion(tmp_path, fake_converter):
    files = _raw_files(tmp_path / "card", 1)
    normalizer = MagicMock()
    normalizer.convert.side_effect = RuntimeError("unsupported camera")
    pool = WorkerPool(fake_converter, normalizer=normalizer)

    outcome = next(iter(pool.run(build_jobs(files))))

    assert outcome.ok is False
    assert outcome.error == "DNG conversion failed: unsupported camera"
    assert fake_converter.calls == []


def test_pool_keeps_intermediate_when_conversion_fails(tmp_path, make_converter):
    files = _raw_files(tmp_path / "card", 1)
    dng = tmp_path / "P0000.dng"
    dng.write_bytes(b"dng")
    normalizer = MagicMock()
    normalizer.convert.return_value = dng
    converter = make_converter(fail_names={"P0000.dng"})

    outcome = next(iter(WorkerPool(converter, normalizer=normalizer).run(build_jobs(files))))

    assert outcome.ok is False
    assert outcome.intermediate_path == dng


def test_pool_no_jobs_yields_nothing(fake_converter):
    pool = WorkerPool(fake_converter)
    assert list(pool.run([])) == []
    assert pool.worker_count == 0


def test_pool_workers_run_on_named_threads(tmp_path):
    files = _raw_files(tmp_path / "card", 3)
    seen = set()
    out_dir = tmp_path / "out"
    out_dir.mkdir()

    class RecordingConverter:
        def convert(self, path):
            seen.add(threading.current_thread().name)
            out = out_dir / f"{Path(path).stem}.jpg"
            out.write_bytes(b"x")
            return out

    list(WorkerPool(RecordingConverter(), workers=2).run(build_jobs(files)))

    assert seen
    assert all(name.startswith("cti-worker") for name in seen)
