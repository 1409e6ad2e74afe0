import subprocess
from datetime import date
from unittest import mock

import pytest
import semver

from kamu_node import release

ORIG_TEXT = (
    "...\n"
    "Licensed Work:             Kamu Platform Version 0.63.0\n"
    "...\n"
    "Change Date:               2025-01-01\n"
    "...\n"
)


def test_update_license_patch():
    new_text = release.update_license_text(
        ORIG_TEXT,
        semver.Version(0, 63, 0),
        semver.Version(0, 63, 1),
        date(2021, 9, 1),
    )
    assert new_text == (
        "...\n"
        "Licensed Work:             Kamu Platform Version 0.63.1\n"
        "...\n"
        "Change Date:               2025-01-01\n"
        "...\n"
    )


def test_update_license_minor():
    new_text = release.update_license_text(
        ORIG_TEXT,
        semver.Version(0, 63, 0),
        semver.Version(0, 64, 0),
        date(2021, 9, 1),
    )
    assert new_text == (
        "...\n"
        "Licensed Work:             Kamu Platform Version 0.64.0\n"
        "...\n"
        "Change Date:               2025-09-01\n"
        "...\n"
    )


def test_update_license_major_changes_date():
    new_text = release.update_license_text(
        ORIG_TEXT,
        semver.Version(0, 63, 0),
        semver.Version(1, 0, 0),
        date(2022, 3, 15),
    )
    assert "Kamu Platform Version 1.0.0" in new_text
    assert "Change Date:               2026-03-15" in new_text


def test_add_years_regular():
    assert release.add_years(date(2021, 9, 1), 4) == date(2025, 9, 1)


def test_add_years_leap_day_to_leap_year():
    assert release.add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


def test_add_years_leap_day_rolls_forward():
    assert release.add_years(date(2024, 2, 29), 1) == date(2025, 3, 1)


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"version": "v1.2.3"}, semver.Version(1, 2, 3)),
        ({"version": "2.0.0"}, semver.Version(2, 0, 0)),
        ({"minor": True}, semver.Version(0, 64, 0)),
        ({"patch": True}, semver.Version(0, 63, 6)),
        ({"version": "9.9.9", "minor": True}, semver.Version(9, 9, 9)),
        ({"minor": True, "patch": True}, semver.Version(0, 64, 0)),
    ],
)
def test_next_version(kwargs, expected):
    assert release.next_version(semver.Version(0, 63, 5), **kwargs) == expected


def test_next_version_requires_flag():
    with pytest.raises(ValueError):
        release.next_version(semver.Version(0, 63, 5))


def test_next_version_invalid_string():
    with pytest.raises(ValueError):
        release.next_version(semver.Version(0, 63, 5), version="not-a-version")


def test_get_current_version(tmp_path):
    cargo = tmp_path / "Cargo.toml"
    cargo.write_text('[workspace]\nmembers = []\n\n[workspace.package]\nversion = "0.63.2"\n')
    assert release.get_current_version(cargo) == semver.Version(0, 63, 2)


def test_get_current_version_missing_key(tmp_path):
    cargo = tmp_path / "Cargo.toml"
    cargo.write_text("[workspace]\nmembers = []\n")
    with pytest.raises(RuntimeError):
        release.get_current_version(cargo)


def test_update_openapi_schema(tmp_path):
    schema = tmp_path / "openapi.json"
    schema.write_text('{\n  "info": {\n    "version": "0.1.0"\n  },\n  "x": {"version": "0.1.0"}\n}\n')
    release.update_openapi_schema(schema, semver.Version(0, 2, 0))
    assert schema.read_text() == (
        '{\n  "info": {\n    "version": "0.2.0"\n  },\n  "x": {"version": "0.1.0"}\n}\n'
    )


def test_update_openapi_schema_unchanged_raises(tmp_path):
    schema = tmp_path / "openapi.json"
    schema.write_text('{"info": {"title": "none"}}')
    with pytest.raises(RuntimeError):
        release.update_openapi_schema(schema, semver.Version(0, 2, 0))


def test_update_license_writes_file(tmp_path):
    license_path = tmp_path / "LICENSE.txt"
    license_path.write_text(ORIG_TEXT)
    release.update_license(
        license_path, semver.Version(0, 63, 0), semver.Version(0, 64, 0), date(2021, 9, 1)
    )
    text = license_path.read_text()
    assert "Kamu Platform Version 0.64.0" in text
    assert "Change Date:               2025-09-01" in text


def test_update_license_unchanged_raises(tmp_path):
    license_path = tmp_path / "LICENSE.txt"
    license_path.write_text("no version here\n")
    with pytest.raises(RuntimeError):
        release.update_license(
            license_path, semver.Version(0, 63, 0), semver.Version(0, 63, 1), date(2021, 9, 1)
        )


def test_update_crates_runs_cargo():
    with mock.patch("kamu_node.release.subprocess.run") as run:
        run.return_value = subprocess.CompletedProcess(args=[], returncode=0)
        result = release.update_crates(semver.Version(1, 2, 3))
    assert result is None
    assert run.call_count == 1
    assert run.call_args.args[0] == ["cargo", "set-version", "--workspace", "1.2.3"]


def test_update_crates_nonzero_exit():
    with mock.patch("kamu_node.release.subprocess.run") as run:
        run.return_value = subprocess.CompletedProcess(args=[], returncode=2)
        with pytest.raises(RuntimeError):
            release.update_crates(semver.Version(1, 2, 3))


def test_update_crates_missing_cargo():
    with mock.patch("kamu_node.release.subprocess.run", side_effect=FileNotFoundError):
        with pytest.raises(RuntimeError):
            release.update_crates(semver.Version(1, 2, 3))


def test_main_minor_release(tmp_path, monkeypatch):
    (tmp_path / "Cargo.toml").write_text('[workspace.package]\nversion = "0.63.0"\n')
    (tmp_path / "LICENSE.txt").write_text(ORIG_TEXT)
    resources = tmp_path / "resources"
    resources.mkdir()
    for name in ("openapi.json", "openapi-mt.json"):
        (resources / name).write_text('{"info": {"version": "0.63.0"}}')
    monkeypatch.chdir(tmp_path)

    with mock.patch("kamu_node.release.subprocess.run") as run:
        run.return_value = subprocess.CompletedProcess(args=[], returncode=0)
        assert release.main(["--minor"]) == 0

    assert run.call_args.args[0] == ["cargo", "set-version", "--workspace", "0.64.0"]
    text = (tmp_path / "LICENSE.txt").read_text()
    assert "Kamu Platform Version 0.64.0" in text
    assert "Change Date:               2025-01-01" not in text
    for name in ("openapi.json", "openapi-mt.json"):
        assert (resources / name).read_text() == '{"info": {"version": "0.64.0"}}'


def test_main_without_flags_fails(tmp_path, monkeypatch):
    (tmp_path / "Cargo.toml").write_text('[workspace.package]\nversion = "0.63.0"\n')
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc_info:
        release.main([])
    assert exc_info.value.code == 2