"""Tests for the command-line entry point."""

from __future__ import annotations

import json

import pytest

from azsearch_backup.cli import main as cli
from azsearch_backup.services.batches import BatchResult, TransferReport
from azsearch_backup.settings import Settings
from azsearch_backup.storage import StoreUnavailableError
from azsearch_backup.worker.jobs.backup_restore import JobFailedError, RunReport

_ENV_NAMES = (
    "SourceSearchServiceName",
    "SOURCE_SERVICE_NAME",
    "SourceAPIKey",
    "SOURCE_API_KEY",
    "SourceIndexName",
    "SOURCE_INDEX_NAME",
    "TargetSearchServiceName",
    "TARGET_SERVICE_NAME",
    "TargetAPIKey",
    "TARGET_API_KEY",
    "TargetIndexName",
    "TARGET_INDEX_NAME",
    "STORAGE_BACKEND",
    "TRANSFER_PAGE_SIZE",
)

_FULL_ARGS = [
    "--source-service",
    "contoso",
    "--source-key",
    "src-key",
    "--source-index",
    "hotels",
    "--target-service",
    "https://dr.search.windows.net",
    "--target-key",
    "dst-key",
    "--target-index",
    "hotels-copy",
]


@pytest.fixture
def local_settings(monkeypatch, tmp_path):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    settings = Settings(storage={"backend": "local", "local_dir": tmp_path / "copies"})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def _stub_job(monkeypatch, outcome):
    class _Job:
        def __init__(self) -> None:
            self.modes = []

        def run(self, mode):
            self.modes.append(mode)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    job = _Job()
    monkeypatch.setattr(cli, "build_job", lambda settings, mode: job)
    return job


def _backup_report(failed: bool = False) -> RunReport:
    export = TransferReport(stage="export", index_name="hotels")
    export.results = [BatchResult(name="hotels1.json", sequence=1, documents=3)]
    if failed:
        export.results.append(BatchResult(name="hotels2.json", sequence=2, error="boom"))
    return RunReport(mode="backup", source_index="hotels", source_count=3, export=export)


def test_apply_overrides_maps_flags_onto_sections(local_settings):
    args = cli.build_parser().parse_args(_FULL_ARGS + ["--page-size", "250", "--parallelism", "4"])

    settings = cli.apply_overrides(local_settings, args)

    assert settings.source.endpoint == "https://contoso.search.windows.net"
    assert settings.target.endpoint == "https://dr.search.windows.net"
    assert settings.source.index_name == "hotels"
    assert settings.transfer.page_size == 250
    assert settings.transfer.parallelism == 4
    assert local_settings.transfer.page_size == 500


def test_missing_configuration_exits_with_config_code(local_settings):
    assert cli.main([]) == cli.EXIT_CONFIG


def test_invalid_page_size_exits_with_config_code(local_settings):
    assert cli.main(_FULL_ARGS + ["--page-size", "5000"]) == cli.EXIT_CONFIG


def test_successful_run_exits_zero_and_writes_report(local_settings, monkeypatch, tmp_path, capsys):
    job = _stub_job(monkeypatch, _backup_report())
    report_path = tmp_path / "out" / "report.json"

    exit_code = cli.main(_FULL_ARGS + ["--mode", "backup", "--report", str(report_path)])

    assert exit_code == cli.EXIT_OK
    assert job.modes == ["backup"]
    assert json.loads(report_path.read_text())["succeeded"] is True
    assert "Result: SUCCESS" in capsys.readouterr().out


def test_incomplete_run_exits_one(local_settings, monkeypatch, capsys):
    _stub_job(monkeypatch, _backup_report(failed=True))

    assert cli.main(_FULL_ARGS) == cli.EXIT_INCOMPLETE
    assert "1 of 2 batches succeeded (failed: hotels2.json)" in capsys.readouterr().out


def test_fatal_step_exits_three(local_settings, monkeypatch):
    _stub_job(monkeypatch, JobFailedError("Deleting target index", RuntimeError("forbidden")))

    assert cli.main(_FULL_ARGS) == cli.EXIT_FATAL


def test_relative_local_dir_flag_is_anchored_at_project_root(local_settings):
    args = cli.build_parser().parse_args(_FULL_ARGS + ["--local-dir", "data/other"])

    settings = cli.apply_overrides(local_settings, args)

    assert settings.storage.local_dir == (local_settings.project_root / "data" / "other").resolve()
    assert settings.storage.local_dir.is_absolute()


def test_unavailable_store_exits_three(local_settings, monkeypatch):
    def _broken_store(*, settings=None):
        raise StoreUnavailableError("Cannot create local store directory /readonly")

    monkeypatch.setattr(cli, "build_blob_store", _broken_store)

    assert cli.main(_FULL_ARGS) == cli.EXIT_FATAL
