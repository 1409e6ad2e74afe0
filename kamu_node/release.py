"""Release helper: bumps the workspace version, licence and API schemas."""

from __future__ import annotations

import argparse
import re
import subprocess
import sys
import tomllib
from datetime import date, datetime, timezone
from pathlib import Path

import semver

CHANGE_DATE_YEARS = 4

_LICENSED_WORK_RE = re.compile(r"(Licensed Work:[ ]+Kamu Platform Version )(\d+\.\d+\.\d+)")
_CHANGE_DATE_RE = re.compile(r"(Change Date:[ ]+)(\d+-\d+-\d+)")
_OPENAPI_VERSION_RE = re.compile(r'"version": "\d+\.\d+\.\d+"')


def _say(message: str) -> None:
    print(message, file=sys.stderr)


def get_current_version(cargo_toml_path: str | Path = "Cargo.toml") -> semver.Version:
    """Read the workspace package version from the root Cargo.toml."""
    path = Path(cargo_toml_path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(f"Could not read root Cargo.toml file: {path}") from exc
    try:
        manifest = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise RuntimeError(f"Failed to parse {path}: {exc}") from exc
    try:
        version = manifest["workspace"]["package"]["version"]
    except (KeyError, TypeError) as exc:
        raise RuntimeError(f"{path} does not define workspace.package.version") from exc
    if not isinstance(version, str):
        raise RuntimeError(f"workspace.package.version in {path} is not a string")
    return semver.Version.parse(version)


def next_version(
    current: semver.Version,
    version: str | None = None,
    minor: bool = False,
    patch: bool = False,
) -> semver.Version:
    """Determine the release version; an explicit version takes precedence."""
    if version is not None:
        return semver.Version.parse(version.removeprefix("v"))
    if minor:
        return current.replace(minor=current.minor + 1, patch=0)
    if patch:
        return current.replace(patch=current.patch + 1)
    raise ValueError("Specify a --version, --minor or --patch flag")


def update_crates(new_version: semver.Version) -> None:
    """Set the version of every crate in the workspace via cargo-edit."""
    command = ["cargo", "set-version", "--workspace", str(new_version)]
    try:
        completed = subprocess.run(command)
    except OSError as exc:
        raise RuntimeError(
            "Failed to execute `cargo set-version` - make sure `cargo-edit` is installed "
            "(`cargo install cargo-edit`)"
        ) from exc
    if completed.returncode != 0:
        raise RuntimeError(
            f"`cargo set-version` returned non-zero exit code {completed.returncode}"
        )


def add_years(d: date, years: int) -> date:
    """Shift a date by whole years; a day missing in the target year rolls forward."""
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        return d + (date(d.year + years, 1, 1) - date(d.year, 1, 1))


def update_license_text(
    text: str,
    current_version: semver.Version,
    new_version: semver.Version,
    current_date: date,
) -> str:
    """Update the licensed version and, for major or minor releases, the change date."""
    significant = (
        new_version.major != current_version.major
        or new_version.minor != current_version.minor
    )

    _say(f"Updating license version: {new_version}")
    text = _LICENSED_WORK_RE.sub(lambda m: f"{m.group(1)}{new_version}", text, count=1)

    if significant:
        change_date = add_years(current_date, CHANGE_DATE_YEARS)
        _say(f"Updating license change date: {change_date.isoformat()}")
        text = _CHANGE_DATE_RE.sub(
            lambda m: f"{m.group(1)}{change_date.isoformat()}", text, count=1
        )
    return text


def update_license(
    license_path: str | Path,
    current_version: semver.Version,
    new_version: semver.Version,
    today: date | None = None,
) -> None:
    """Rewrite the licence file for the new version."""
    path = Path(license_path)
    text = path.read_text(encoding="utf-8")
    if today is None:
        today = datetime.now(timezone.utc).date()
    new_text = update_license_text(text, current_version, new_version, today)
    if new_text == text:
        raise RuntimeError(f"License file {path} was not changed")
    path.write_text(new_text, encoding="utf-8")


def update_openapi_schema(path: str | Path, new_version: semver.Version) -> None:
    """Replace the first version field of an OpenAPI schema file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    new_text = _OPENAPI_VERSION_RE.sub(
        lambda _: f'"version": "{new_version}"', text, count=1
    )
    if new_text == text:
        raise RuntimeError(f"Schema file {path} was not changed")
    path.write_text(new_text, encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="release")
    parser.add_argument("-v", "--version", dest="version")
    parser.add_argument("--minor", dest="next_minor", action="store_true")
    parser.add_argument("--patch", dest="next_patch", action="store_true")
    args = parser.parse_args(argv)

    current = get_current_version(Path("Cargo.toml"))
    _say(f"Current version: {current}")

    try:
        new = next_version(current, args.version, args.next_minor, args.next_patch)
    except ValueError as exc:
        parser.error(str(exc))
    _say(f"New version: {new}")

    update_crates(new)
    update_license(Path("LICENSE.txt"), current, new)
    update_openapi_schema(Path("resources/openapi.json"), new)
    update_openapi_schema(Path("resources/openapi-mt.json"), new)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())