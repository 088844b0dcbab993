#!/usr/bin/env python3
"""Refresh the static ARC Raiders data files from the MetaForge API.

What this script does:
- Pulls the paginated `items`, `arcs` and `quests` collections page by page.
- Drops `Misc` items (unless `--keep-misc`) before saving the items file.
- Builds weapon upgrade chains from the items (see process_weapons.py).
- Pulls per-map location data for each known map.
- Writes `<name>.json` and `<name>.min.json` for every collection plus a
  `manifest.json` describing the run.

Pagination stops at the first empty page or the first page shorter than
PAGE_SIZE. HTTP 429 waits and retries the same page. Any other failure keeps
whatever was already fetched for that collection, or waits and retries the
page while nothing has been fetched yet.

This is intended for manual or scheduled CI runs; it holds no state between
runs.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from process_weapons import normalize_weapons, write_json_pair

METAFORGE_BASE_URL = "https://metaforge.app/api/arc-raiders"
MAP_DATA_URL = "https://metaforge.app/api/game-map-data"
MAP_TABLE_ID = "arc-raiders"
ENDPOINTS = ("items", "arcs", "quests")
MAPS = ("Dam", "Spaceport", "Buried City", "Blue Gate")
PAGE_SIZE = 50
MANIFEST_VERSION = "1.0.0"
EXCLUDED_ITEM_TYPES = frozenset({"Misc"})
REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json,text/plain,*/*",
    "Accept-Language": "en-GB,en;q=0.9",
    "Cache-Control": "no-cache",
}


@dataclass
class FetchConfig:
    timeout_seconds: float
    retries: int
    page_delay_seconds: float
    rate_limit_delay_seconds: float
    error_delay_seconds: float
    max_rate_limit_retries: Optional[int]
    verbose: bool


@dataclass
class FetchStats:
    pages_fetched: int = 0
    records_fetched: int = 0
    records_kept: int = 0
    rate_limited: int = 0
    errors: int = 0
    partial: bool = False
    failed: bool = False


def log(msg: str, *, enabled: bool) -> None:
    if enabled:
        print(msg, flush=True)


def pause(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


def is_status_ok(status_code: int) -> bool:
    return 200 <= status_code < 300


def keep_item(row: Any) -> bool:
    if not isinstance(row, dict):
        return True
    return row.get("item_type") not in EXCLUDED_ITEM_TYPES


def extract_records(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise ValueError("response was neither an array nor an object with a data array")


def extract_map_locations(payload: Any) -> Any:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and payload.get("data"):
        return payload["data"]
    return payload


def fetch_page(
    session: requests.Session,
    cfg: FetchConfig,
    url: str,
    *,
    source: str,
    stats: FetchStats,
) -> List[Any]:
    """Fetch one page of records, waiting out HTTP 429 responses.

    Any other failure raises RuntimeError; the caller decides whether to retry.
    """
    rate_limited = 0
    while True:
        try:
            response = session.get(url, headers=REQUEST_HEADERS, timeout=cfg.timeout_seconds)
        except requests.RequestException as exc:
            raise RuntimeError(f"{source}: request failed for {url}: {exc}") from exc

        if response.status_code == 429:
            rate_limited += 1
            stats.rate_limited += 1
            if cfg.max_rate_limit_retries is not None and rate_limited > cfg.max_rate_limit_retries:
                raise RuntimeError(f"{source}: HTTP 429 for {url} after {cfg.max_rate_limit_retries} retries")
            log(
                f"[{source}] HTTP 429 for {url}; waiting {cfg.rate_limit_delay_seconds:.0f}s then retrying",
                enabled=True,
            )
            pause(cfg.rate_limit_delay_seconds)
            continue

        if not is_status_ok(response.status_code):
            raise RuntimeError(f"{source}: HTTP {response.status_code} for {url}")

        try:
            return extract_records(response.json())
        except ValueError as exc:
            raise RuntimeError(f"{source}: invalid JSON payload for {url}: {exc}") from exc


def fetch_collection(
    session: requests.Session,
    cfg: FetchConfig,
    endpoint: str,
    *,
    base_url: str = METAFORGE_BASE_URL,
    record_filter: Optional[Callable[[Any], bool]] = None,
    output_dir: Optional[Path] = None,
) -> Tuple[List[Any], FetchStats]:
    """Fetch every page of `endpoint` and return the records in page order.

    Errors stay inside this function: with records already in hand the partial
    result is kept, otherwise the page is retried up to `cfg.retries` times
    before giving up with an empty list and `stats.failed` set. When
    `output_dir` is given the collection is written there once, after the
    last page; a failed collection is not written, so the previous files stay.
    """
    stats = FetchStats()
    records: List[Any] = []
    base = base_url.rstrip("/")
    page = 1
    failed_attempts = 0

    while True:
        url = f"{base}/{endpoint}?page={page}"
        log(f"[Fetch] {url}", enabled=cfg.verbose)
        try:
            page_records = fetch_page(session, cfg, url, source=endpoint, stats=stats)
        except RuntimeError as exc:
            stats.errors += 1
            log(f"[Fetch] {endpoint} page {page} failed: {exc}", enabled=True)
            if records:
                stats.partial = True
                log(f"[Fetch] WARNING keeping partial {endpoint} data ({len(records)} records)", enabled=True)
                break
            failed_attempts += 1
            if failed_attempts > cfg.retries:
                stats.failed = True
                log(f"[Fetch] {endpoint}: giving up after {cfg.retries} retries", enabled=True)
                break
            pause(cfg.error_delay_seconds)
            continue

        failed_attempts = 0
        stats.pages_fetched += 1
        if not page_records:
            break

        kept = page_records if record_filter is None else [row for row in page_records if record_filter(row)]
        records.extend(kept)
        stats.records_fetched += len(page_records)
        stats.records_kept += len(kept)
        log(
            f"[Fetch] {endpoint} page {page}: records={len(page_records)} kept={len(kept)} total={len(records)}",
            enabled=cfg.verbose,
        )

        if len(page_records) < PAGE_SIZE:
            break

        page += 1
        pause(cfg.page_delay_seconds)

    if stats.failed:
        log(f"[Fetch] WARNING {endpoint} not written; keeping previous files", enabled=True)
    elif output_dir is not None:
        write_collection(output_dir, endpoint, records, verbose=cfg.verbose)
    return records, stats


def fetch_map_data(
    session: requests.Session,
    cfg: FetchConfig,
    maps: Sequence[str],
    *,
    map_data_url: str = MAP_DATA_URL,
) -> Dict[str, Any]:
    all_maps: Dict[str, Any] = {}
    for map_name in maps:
        params = {"tableID": MAP_TABLE_ID, "mapID": map_name}
        log(f"[Maps] fetching {map_name}", enabled=cfg.verbose)
        try:
            response = session.get(map_data_url, params=params, headers=REQUEST_HEADERS, timeout=cfg.timeout_seconds)
            if response.status_code == 429:
                log(
                    f"[Maps] HTTP 429 for {map_name}; waiting {cfg.rate_limit_delay_seconds:.0f}s then retrying once",
                    enabled=True,
                )
                pause(cfg.rate_limit_delay_seconds)
                response = session.get(
                    map_data_url, params=params, headers=REQUEST_HEADERS, timeout=cfg.timeout_seconds
                )

            if is_status_ok(response.status_code):
                all_maps[map_name] = extract_map_locations(response.json())
                count = len(all_maps[map_name]) if isinstance(all_maps[map_name], (list, dict)) else 0
                log(f"[Maps] {map_name}: locations={count}", enabled=True)
            else:
                log(f"[Maps] {map_name} failed: HTTP {response.status_code}", enabled=True)
                all_maps[map_name] = []
            pause(cfg.page_delay_seconds)
        except (requests.RequestException, ValueError) as exc:
            log(f"[Maps] {map_name} failed: {exc}", enabled=True)
            all_maps[map_name] = []
    return all_maps


def write_collection(output_dir: Path, name: str, payload: Any, *, verbose: bool = False) -> Tuple[Path, Path]:
    pretty_path, min_path = write_json_pair(output_dir, name, payload)
    count = len(payload) if isinstance(payload, (list, dict)) else 0
    log(f"[Write] {pretty_path.as_posix()} ({count} records)", enabled=True)
    log(f"[Write] {min_path.as_posix()}", enabled=verbose)
    return pretty_path, min_path


def build_manifest(
    endpoints: Sequence[str],
    maps: Sequence[str],
    weapon_count: int,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    generated = now or datetime.now(timezone.utc)
    return {
        "lastUpdated": generated.isoformat(),
        "endpoints": list(endpoints),
        "maps": list(maps),
        "weaponCount": weapon_count,
        "version": MANIFEST_VERSION,
    }


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch MetaForge ARC Raiders data into static JSON files.")
    parser.add_argument("--output-dir", type=Path, default=Path("public/data"), help="Directory for JSON output.")
    parser.add_argument(
        "--base-url",
        default=None,
        help="MetaForge collection API base URL. Falls back to METAFORGE_BASE_URL env var.",
    )
    parser.add_argument(
        "--endpoints",
        nargs="+",
        default=list(ENDPOINTS),
        help="Paginated collections to fetch (default: items arcs quests).",
    )
    parser.add_argument("--maps", nargs="+", default=list(MAPS), help="Maps to fetch location data for.")
    parser.add_argument("--skip-maps", action="store_true", help="Skip the per-map location fetch.")
    parser.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout in seconds.")
    parser.add_argument(
        "--retries",
        type=int,
        default=4,
        help="Retries for a failing page before any records were fetched for the collection.",
    )
    parser.add_argument("--page-delay", type=float, default=1.5, help="Delay between successful page requests.")
    parser.add_argument("--rate-limit-delay", type=float, default=10.0, help="Wait after an HTTP 429 response.")
    parser.add_argument("--error-delay", type=float, default=5.0, help="Wait after a failed page request.")
    parser.add_argument(
        "--max-rate-limit-retries",
        type=int,
        default=None,
        help="Optional cap on consecutive HTTP 429 retries per page. Default: retry until the API answers.",
    )
    parser.add_argument("--keep-misc", action="store_true", help="Keep Misc items in items.json.")
    parser.add_argument("--dry-run", action="store_true", help="Do not write files.")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> int:
    args = parse_args(argv)

    base_url = str(args.base_url or os.getenv("METAFORGE_BASE_URL") or METAFORGE_BASE_URL).strip()
    if not base_url:
        print("Missing MetaForge base URL. Provide --base-url or set METAFORGE_BASE_URL.", file=sys.stderr)
        return 1
    endpoints = [endpoint.strip() for endpoint in args.endpoints if endpoint.strip()]
    if not endpoints:
        print("No endpoints to fetch.", file=sys.stderr)
        return 1

    cfg = FetchConfig(
        timeout_seconds=max(5.0, args.timeout),
        retries=max(0, args.retries),
        page_delay_seconds=max(0.0, args.page_delay),
        rate_limit_delay_seconds=max(0.0, args.rate_limit_delay),
        error_delay_seconds=max(0.0, args.error_delay),
        max_rate_limit_retries=max(0, args.max_rate_limit_retries) if args.max_rate_limit_retries is not None else None,
        verbose=bool(args.verbose),
    )
    output_dir: Optional[Path] = None if args.dry_run else args.output_dir
    maps = [] if args.skip_maps else list(args.maps)

    print(f"[Start] base_url={base_url} output_dir={args.output_dir.as_posix()}", flush=True)

    session = requests.Session()
    items: List[Any] = []
    failed_endpoints: List[str] = []
    for endpoint in endpoints:
        record_filter = keep_item if endpoint == "items" and not args.keep_misc else None
        records, stats = fetch_collection(
            session,
            cfg,
            endpoint,
            base_url=base_url,
            record_filter=record_filter,
            output_dir=output_dir,
        )
        print(
            (
                f"[Fetch] {endpoint}: pages={stats.pages_fetched} fetched={stats.records_fetched} "
                f"kept={stats.records_kept} rate_limited={stats.rate_limited} errors={stats.errors} "
                f"partial={stats.partial} failed={stats.failed}"
            ),
            flush=True,
        )
        if stats.failed:
            failed_endpoints.append(endpoint)
        if endpoint == "items":
            items = records

    weapons: List[Dict[str, Any]] = []
    if "items" in failed_endpoints:
        log("[Weapons] items fetch failed; keeping previous weapons files.", enabled=True)
    elif "items" in endpoints:
        weapons = normalize_weapons(items)
        level_count = sum(len(group["levels"]) for group in weapons)
        print(f"[Weapons] groups={len(weapons)} levels={level_count}", flush=True)
        if output_dir is not None:
            write_collection(output_dir, "weapons", weapons, verbose=cfg.verbose)
    else:
        log("[Weapons] items not fetched; skipping weapon processing.", enabled=True)

    if maps:
        map_data = fetch_map_data(session, cfg, maps)
        if output_dir is not None:
            write_collection(output_dir, "maps", map_data, verbose=cfg.verbose)

    if failed_endpoints:
        print(
            f"[Done] failed collections: {', '.join(failed_endpoints)}; manifest not updated.",
            file=sys.stderr,
            flush=True,
        )
        return 1

    manifest = build_manifest(endpoints, maps, len(weapons))
    if output_dir is None:
        print("[Dry run] No files written.", flush=True)
    else:
        manifest_path = output_dir / "manifest.json"
        manifest_path.write_text(json.dumps(manifest, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        print(f"[Done] manifest={manifest_path.as_posix()} weapons={len(weapons)}", flush=True)

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
