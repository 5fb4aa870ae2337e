#!/usr/bin/env python3
"""
Check upstream release feeds and bump tracked LTS versions.

Outputs:
- versions.json (only when a newer release line is detected)
- .github/lts-report.md (always regenerated)
"""

from __future__ import annotations

import argparse
import datetime as dt
import http.client
import json
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Any


UTC = dt.timezone.utc

DOTNET_INDEX_URL = "https://builds.dotnet.microsoft.com/dotnet/release-metadata/releases-index.json"
PYTHON_EOL_URLS = (
    "https://endoflife.date/api/python.json",
    "https://endoflife.date/api/v1/python.json",
    "https://endoflife.date/api/v1/products/python",
)

REPORT_TITLE = "# LTS bump report"
NO_CHANGES_LINE = "No changes (already latest LTS)."


class LtsCheckError(Exception):
    pass


class FetchError(LtsCheckError):
    pass


class ParseError(LtsCheckError):
    pass


class LogicError(LtsCheckError):
    pass


@dataclass
class CheckerConfig:
    versions_path: Path = Path("versions.json")
    report_path: Path = Path(".github/lts-report.md")
    dotnet_index_url: str = DOTNET_INDEX_URL
    python_eol_urls: tuple[str, ...] = PYTHON_EOL_URLS
    timeout: int = 30
    user_agent: str = "lts-updater"


@dataclass
class PythonCycle:
    cycle: str
    eol: dt.datetime | None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bump tracked .NET and Python LTS versions.")
    parser.add_argument(
        "--versions",
        type=Path,
        default=Path("versions.json"),
        help="Path to the version record JSON.",
    )
    parser.add_argument(
        "--report",
        type=Path,
        default=Path(".github/lts-report.md"),
        help="Path to the markdown bump report.",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=30,
        help="HTTP timeout in seconds for each feed request.",
    )
    parser.add_argument(
        "--user-agent",
        default="lts-updater",
        help="User-Agent header sent to upstream feeds.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve versions and print the report without writing files.",
    )
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> CheckerConfig:
    return CheckerConfig(
        versions_path=args.versions,
        report_path=args.report,
        timeout=args.timeout,
        user_agent=args.user_agent,
    )


# --- record store ---


def load_record(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError as exc:
        raise ParseError(f"Version record not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ParseError(f"Version record is not valid JSON: {path} ({exc})") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"Version record must be a JSON object: {path}")
    return payload


def save_record(path: Path, record: dict[str, Any]) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(record, handle, indent=2, ensure_ascii=False)
        handle.write("\n")


# --- http ---


def fetch_json(url: str, timeout: int, user_agent: str) -> Any:
    request = urllib.request.Request(
        url,
        headers={"User-Agent": user_agent, "Accept": "application/json"},
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise FetchError(f"GET {url} -> {exc.code}") from exc
    except OSError as exc:
        reason = getattr(exc, "reason", exc)
        raise FetchError(f"GET {url} -> {reason}") from exc
    except http.client.HTTPException as exc:
        # e.g. IncompleteRead when the body is cut off
        raise FetchError(f"GET {url} -> {exc!r}") from exc

    text = body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"GET {url} returned non-JSON (len={len(text)})") from exc


# --- version helpers ---


def parse_cycle(value: Any) -> tuple[int, int]:
    parts = str(value).strip().split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError as exc:
        raise ParseError(f"Invalid version cycle: {value!r}") from exc
    return major, minor


def parse_eol(value: Any) -> dt.datetime | None:
    # endoflife.date reports `false` for cycles without an announced EOL
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# --- .NET ---


def select_dotnet_lts_major(index: Any) -> int:
    entries = index.get("releases-index") if isinstance(index, dict) else None
    if not isinstance(entries, list):
        raise ParseError("Unexpected .NET release index shape: missing 'releases-index' list")

    stable_lts: list[tuple[tuple[int, int], dict[str, Any]]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if entry.get("release-type") != "lts":
            continue
        # preview and rc builds carry a suffix such as 10.0.0-rc.1
        if "-" in str(entry.get("latest-release") or ""):
            continue
        stable_lts.append((parse_cycle(entry.get("channel-version")), entry))

    if not stable_lts:
        raise LogicError("No stable .NET LTS channels found")

    version, _ = max(stable_lts, key=lambda item: item[0])
    return version[0]


def resolve_dotnet_lts_major(config: CheckerConfig) -> int:
    index = fetch_json(config.dotnet_index_url, timeout=config.timeout, user_agent=config.user_agent)
    return select_dotnet_lts_major(index)


# --- Python ---


def _rows_from_list(rows: list[Any]) -> list[PythonCycle]:
    cycles: list[PythonCycle] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        cycle = row.get("cycle", row.get("name"))
        if not cycle:
            continue
        eol = row["eol"] if "eol" in row else row.get("eolFrom")
        cycles.append(PythonCycle(cycle=str(cycle), eol=parse_eol(eol)))
    return cycles


def _match_list(payload: Any) -> list[Any] | None:
    return payload if isinstance(payload, list) else None


def _match_cycles(payload: Any) -> list[Any] | None:
    rows = payload.get("cycles") if isinstance(payload, dict) else None
    return rows if isinstance(rows, list) else None


def _match_releases(payload: Any) -> list[Any] | None:
    rows = payload.get("releases") if isinstance(payload, dict) else None
    return rows if isinstance(rows, list) else None


def _match_product_result(payload: Any) -> list[Any] | None:
    result = payload.get("result") if isinstance(payload, dict) else None
    return _match_releases(result)


def _match_any_list_key(payload: Any) -> list[Any] | None:
    if not isinstance(payload, dict):
        return None
    for value in payload.values():
        if isinstance(value, list):
            return value
    return None


# Checked in order; the first matcher that returns a list wins.
PYTHON_FEED_SHAPES = (
    ("list", _match_list),
    ("cycles", _match_cycles),
    ("releases", _match_releases),
    ("result.releases", _match_product_result),
    ("first-list-key", _match_any_list_key),
)


def normalize_python_cycles(payload: Any) -> list[PythonCycle]:
    for _name, matcher in PYTHON_FEED_SHAPES:
        rows = matcher(payload)
        if rows is not None:
            return _rows_from_list(rows)
    keys = list(payload.keys()) if isinstance(payload, dict) else []
    raise ParseError(f"Unexpected Python API shape. Keys: [{', '.join(map(str, keys))}]")


def select_python_supported_minor(cycles: list[PythonCycle], now: dt.datetime) -> str:
    active: list[tuple[tuple[int, int], str]] = []
    for item in cycles:
        if not item.cycle.startswith("3.") or item.eol is None or item.eol <= now:
            continue
        try:
            version = parse_cycle(item.cycle)
        except ParseError:
            # labels such as "3.13t" are not release lines
            continue
        active.append((version, item.cycle))
    if not active:
        raise LogicError("No supported Python 3.x cycles")
    _, cycle = max(active, key=lambda item: item[0])
    return cycle


def fetch_python_cycles(config: CheckerConfig) -> list[PythonCycle]:
    last_error: LtsCheckError | None = None
    for url in config.python_eol_urls:
        try:
            payload = fetch_json(url, timeout=config.timeout, user_agent=config.user_agent)
            return normalize_python_cycles(payload)
        except (FetchError, ParseError) as exc:
            print(f"Skipping {url}: {exc}", file=sys.stderr)
            last_error = exc
    raise last_error or FetchError("Cannot fetch Python EOL data")


def resolve_python_supported_minor(config: CheckerConfig, now: dt.datetime | None = None) -> str:
    cycles = fetch_python_cycles(config)
    return select_python_supported_minor(cycles, now or dt.datetime.now(UTC))


# --- change detection ---


def is_python_upgrade(current: Any, new: str) -> bool:
    """Return True only when `new` is a strictly newer (major, minor) than `current`.

    A missing or unreadable recorded value means nothing is tracked yet, so any
    resolved cycle counts as an upgrade.
    """
    if current is None:
        return True
    try:
        current_version = parse_cycle(current)
    except ParseError:
        return True
    return parse_cycle(new) > current_version


def format_value(value: Any) -> str:
    return "unset" if value is None else str(value)


def apply_changes(
    current: dict[str, Any],
    dotnet_major: int,
    python_minor: str,
) -> tuple[dict[str, Any], list[str]]:
    record = dict(current)
    changes: list[str] = []

    recorded_dotnet = current.get("dotnetLtsMajor")
    if recorded_dotnet != dotnet_major:
        changes.append(f".NET LTS: {format_value(recorded_dotnet)} → {dotnet_major}")
        record["dotnetLtsMajor"] = dotnet_major

    recorded_python = current.get("pythonSupportedMinor")
    if recorded_python != python_minor and is_python_upgrade(recorded_python, python_minor):
        changes.append(f"Python 3.x: {format_value(recorded_python)} → {python_minor}")
        record["pythonSupportedMinor"] = python_minor

    return record, changes


# --- report ---


def build_report(changes: list[str]) -> str:
    lines: list[str] = [REPORT_TITLE, ""]
    if changes:
        lines.extend(f"- {change}" for change in changes)
    else:
        lines.append(NO_CHANGES_LINE)
    return "\n".join(lines) + "\n"


def write_report(path: Path, changes: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_report(changes), encoding="utf-8")


def run(config: CheckerConfig, now: dt.datetime | None = None, dry_run: bool = False) -> list[str]:
    current = load_record(config.versions_path)

    dotnet_major = resolve_dotnet_lts_major(config)
    python_minor = resolve_python_supported_minor(config, now=now)
    print(f"Resolved .NET LTS={dotnet_major} | Python 3.x={python_minor}")

    record, changes = apply_changes(current, dotnet_major, python_minor)

    if dry_run:
        print(build_report(changes), end="")
        return changes

    if changes:
        save_record(config.versions_path, record)
    write_report(config.report_path, changes)

    if changes:
        print(f"Updated {config.versions_path} | changes={len(changes)} | report={config.report_path}")
    else:
        print(f"No changes | report={config.report_path}")
    return changes


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    config = config_from_args(args)
    try:
        run(config, dry_run=args.dry_run)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
