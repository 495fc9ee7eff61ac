# /// script
# dependencies = ["pillow"]
# ///
"""
Build the portfolio catalog (data/portfolio.json) from the photos on disk.

Usage:
    uv run --script process_photos.py

Run from the site root. Scans ./public/photos/, reads dimensions and EXIF
from every image and writes ./data/portfolio.json, newest photo first.

Titles, descriptions, categories and seasons are edited by hand in the JSON
file; rerunning the script keeps them. Files whose modification time has not
moved since the last run are not decoded again.
"""

import concurrent.futures
import json
import math
import os
import re
import shutil
import sys
import tempfile
import threading
import time
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

PHOTOS_DIR = Path("public") / "photos"
OUTPUT_FILE = Path("data") / "portfolio.json"
URL_PREFIX = "/photos/"

SUPPORTED_FORMATS = {".jpg", ".jpeg", ".png", ".webp", ".avif", ".tiff", ".tif"}

# Vocabularies understood by the gallery filters
CATEGORIES = ("best", "street", "concept", "monochrome", "experiments", "architecture")
SEASONS = ("SS 25", "FW 24")

MAX_WORKERS = min(8, os.cpu_count() or 1)
FILE_TIMEOUT = 60    # seconds per file (decode + EXIF)

# Fields a human edits in portfolio.json; everything else is re-derived
CURATED_FIELDS = ("id", "title", "description", "categories", "season")

FIELD_ORDER = (
    "id", "title", "description", "categories", "season",
    "filename", "url", "width", "height",
    "dateCreated", "dateTaken", "camera", "lens", "settings",
    "fileSize", "format",
)

FILE_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")

# Pillow names some camera JPEGs after their multi-picture container
FORMAT_ALIASES = {"mpo": "jpeg"}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
OLDEST = datetime.min.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class CatalogError(Exception):
    """Base class for catalog build failures."""


class DirectoryUnavailable(CatalogError):
    """The photo or output directory cannot be created or read."""


class FileDecodeFailure(CatalogError):
    """A single image cannot be decoded; the file is left out of the catalog."""


class MetadataExtractionFailure(CatalogError):
    """Embedded metadata is unreadable; the file is kept without EXIF fields."""


class CatalogWriteFailure(CatalogError):
    """The catalog cannot be written; the previous file is left in place."""


@dataclass
class BuildReport:
    """Counters for one run, plus the catalog that was written."""

    catalog: dict = field(default_factory=dict)
    reused: int = 0
    refreshed: int = 0
    added: int = 0
    dropped: int = 0
    errors: int = 0
    warnings: int = 0

    def error(self, message: str):
        self.errors += 1
        print(f"  ERROR {message}", file=sys.stderr)

    def warn(self, message: str):
        self.warnings += 1
        print(f"  WARNING {message}", file=sys.stderr)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def iso_timestamp(millis: int) -> str:
    """Format epoch milliseconds as e.g. 2024-02-01T09:30:00.000Z (UTC)."""
    moment = EPOCH + timedelta(milliseconds=millis)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def to_millis(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Step 1: Scan the photo directory
# ---------------------------------------------------------------------------

def ensure_directory(path: Path):
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryUnavailable(f"cannot create {path}: {e}") from e


def scan_photos(photos_dir: Path) -> list[str]:
    """Return the names of supported image files in photos_dir, sorted."""
    ensure_directory(photos_dir)
    try:
        entries = list(photos_dir.iterdir())
    except OSError as e:
        raise DirectoryUnavailable(f"cannot read {photos_dir}: {e}") from e
    return sorted(
        f.name for f in entries
        if f.suffix.lower() in SUPPORTED_FORMATS and f.is_file()
    )


# ---------------------------------------------------------------------------
# Step 2: Load the existing catalog
# ---------------------------------------------------------------------------

def backup_file(path: Path) -> Path:
    stamp = time.strftime("%Y%m%d_%H%M%S")
    backup = path.with_name(f"{path.name}.bak.{stamp}")
    shutil.copy2(path, backup)
    return backup


def load_catalog(path: Path, report: BuildReport) -> dict:
    """Read the previous catalog, or start an empty one.

    An unparseable file is copied aside before being replaced, so hand-edited
    titles and categories in it can still be recovered.
    """
    if not path.exists():
        print(f"  No catalog at {path}, creating a new one")
        return {"photos": []}

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise DirectoryUnavailable(f"cannot read {path}: {e}") from e
    except ValueError:
        data = None

    if not isinstance(data, dict) or not isinstance(data.get("photos"), list):
        try:
            backup = backup_file(path)
        except OSError as e:
            raise DirectoryUnavailable(f"cannot back up unreadable {path}: {e}") from e
        report.warn(f"{path} is not a valid catalog, saved a copy to {backup.name} and starting fresh")
        return {"photos": []}

    print(f"  Loaded {len(data['photos'])} existing records")
    return data


def index_catalog(catalog: dict) -> dict[str, dict]:
    """Map filename -> record; the first record wins for duplicated filenames."""
    index: dict[str, dict] = {}
    for record in catalog.get("photos", []):
        if isinstance(record, dict) and isinstance(record.get("filename"), str):
            index.setdefault(record["filename"], record)
    return index


# ---------------------------------------------------------------------------
# Step 3: Extract metadata
# ---------------------------------------------------------------------------

def photo_id(filename: str) -> str:
    """Morning_Walk-02.JPG -> morning-walk-02"""
    stem = re.sub(r"\.[^/.]+$", "", filename)
    return re.sub(r"[^a-z0-9]+", "-", stem.lower()).strip("-")


def photo_title(filename: str) -> str:
    """Morning_Walk-02.JPG -> Morning Walk 02"""
    stem = re.sub(r"\.[^/.]+$", "", filename)
    words = re.sub(r"[-_]", " ", stem)
    return re.sub(r"(^|\s)(\S)", lambda m: m.group(1) + m.group(2).upper(), words)


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(FILE_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {FILE_SIZE_UNITS[unit]}"


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).replace("\x00", "").strip()
    return text or None


def _number(value: Any) -> float | None:
    # Rationals arrive as IFDRational, or as (num, den) from older encoders
    if isinstance(value, tuple) and len(value) == 2:
        num, den = value
        value = num / den if den else None
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return number if math.isfinite(number) else None


def _short(number: float) -> str:
    return f"{round(number, 1):g}"


def _shutter(value: Any) -> str | None:
    seconds = _number(value)
    if seconds is None or seconds <= 0:
        return None
    if seconds >= 1:
        return f"{_short(seconds)}s"
    return f"1/{round(1 / seconds)}s"


def _exif_date(value: Any) -> str | None:
    """2024:01:15 10:30:00 -> 2024-01-15T10:30:00.000Z"""
    text = _text(value)
    if not text:
        return None
    try:
        taken = datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None
    return taken.strftime("%Y-%m-%dT%H:%M:%S") + ".000Z"


def parse_exif(base: Mapping, exif_ifd: Mapping) -> dict:
    """Turn raw EXIF tags into catalog fields.

    base is IFD0 (Make, Model, DateTime), exif_ifd the Exif sub-IFD with the
    exposure tags. Fields missing from the file are left out of the result.
    """
    Tag = ExifTags.Base
    out: dict[str, Any] = {}

    taken = _exif_date(exif_ifd.get(Tag.DateTimeOriginal)) or _exif_date(base.get(Tag.DateTime))
    if taken:
        out["dateTaken"] = taken

    make = _text(base.get(Tag.Make))
    model = _text(base.get(Tag.Model))
    if make and model:
        out["camera"] = f"{make} {model}"

    lens = _text(exif_ifd.get(Tag.LensModel))
    if lens:
        out["lens"] = lens

    settings = {}
    aperture = _number(exif_ifd.get(Tag.FNumber))
    if aperture:
        settings["aperture"] = f"f/{_short(aperture)}"
    shutter = _shutter(exif_ifd.get(Tag.ExposureTime))
    if shutter:
        settings["shutter"] = shutter
    iso = exif_ifd.get(Tag.ISOSpeedRatings)
    if isinstance(iso, (list, tuple)):
        iso = iso[0] if iso else None
    iso = _text(iso)
    if iso:
        settings["iso"] = iso
    focal = _number(exif_ifd.get(Tag.FocalLength))
    if focal:
        settings["focalLength"] = f"{_short(focal)}mm"
    if settings:
        out["settings"] = settings

    return out


_warnings_lock = threading.Lock()


def read_embedded(img: Image.Image) -> tuple[dict, int | None]:
    """Return (EXIF fields, orientation) for an open image.

    Pillow reports corrupt EXIF through warnings.warn, or swallows the error
    while opening a JPEG, so the raw block is loaded again here and any
    warning it raises counts as a failure.
    """
    # catch_warnings is process-wide; one worker at a time
    with _warnings_lock, warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            raw = img.info.get("exif")
            if raw:
                exif = Image.Exif()
                exif.load(raw)
            else:
                exif = img.getexif()
            fields = parse_exif(exif, exif.get_ifd(ExifTags.IFD.Exif))
            orientation = exif.get(ExifTags.Base.Orientation)
        except Exception as e:
            raise MetadataExtractionFailure(f"unreadable EXIF: {e}") from e
    problems = [w for w in caught if issubclass(w.category, UserWarning)]
    if problems:
        raise MetadataExtractionFailure(f"corrupt EXIF: {problems[0].message}")
    return fields, orientation


def extract_metadata(path: Path) -> tuple[dict, str | None]:
    """Decode one image; returns (fields, warning).

    Raises FileDecodeFailure when the file cannot be identified as an image.
    EXIF problems only produce a warning.
    """
    warning = None
    try:
        with Image.open(path) as img:
            width, height = img.size
            fmt = (img.format or path.suffix.lstrip(".")).lower()
            try:
                embedded, orientation = read_embedded(img)
            except MetadataExtractionFailure as e:
                embedded, orientation, warning = {}, None, str(e)
    except Exception as e:
        raise FileDecodeFailure(f"cannot decode {path.name}: {e}") from e

    # Orientations 5-8 are rotated a quarter turn; report display dimensions
    if orientation in (5, 6, 7, 8):
        width, height = height, width

    fields = {"width": width, "height": height, "format": FORMAT_ALIASES.get(fmt, fmt)}
    fields.update(embedded)
    return fields, warning


@dataclass
class Extraction:
    """Outcome of decoding one file on the worker pool."""

    filename: str
    fields: dict | None = None
    warning: str | None = None
    error: str | None = None


def extract_all(paths: list[Path]) -> list[Extraction]:
    """Decode paths on a thread pool; results come back in input order.

    Each file gets FILE_TIMEOUT seconds from the moment a worker picks it up.
    Once every worker is stuck past its deadline, files still queued are
    reported as not attempted. A stuck decode thread cannot be killed: the
    catalog is still written, but the interpreter waits for that thread
    before the command exits.
    """
    if not paths:
        return []

    started: dict[Path, float] = {}

    def run(path: Path):
        started[path] = time.monotonic()
        return extract_metadata(path)

    def stuck_workers() -> int:
        now = time.monotonic()
        return sum(
            1 for p, f in zip(paths, futures)
            if p in started and not f.done() and now - started[p] >= FILE_TIMEOUT
        )

    results = []
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=MAX_WORKERS)
    try:
        futures = [pool.submit(run, p) for p in paths]
        for path, future in zip(paths, futures):
            while True:
                begun = started.get(path)
                if begun is None:
                    if stuck_workers() >= MAX_WORKERS and future.cancel():
                        results.append(Extraction(path.name, error="not attempted, all workers are stuck"))
                        break
                    wait = min(0.1, FILE_TIMEOUT)
                else:
                    wait = max(0.0, begun + FILE_TIMEOUT - time.monotonic())
                try:
                    fields, warning = future.result(timeout=wait)
                    results.append(Extraction(path.name, fields=fields, warning=warning))
                except FileDecodeFailure as e:
                    results.append(Extraction(path.name, error=str(e)))
                except concurrent.futures.TimeoutError:
                    if begun is None:
                        continue
                    results.append(Extraction(path.name, error=f"timed out after {FILE_TIMEOUT}s"))
                break
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return results


# ---------------------------------------------------------------------------
# Step 4: Merge with the existing catalog
# ---------------------------------------------------------------------------

def is_unchanged(existing: dict, mtime_ns: int) -> bool:
    """True if the file has not been modified since the record was made."""
    created = parse_timestamp(existing.get("dateCreated"))
    return created is not None and mtime_ns // 1_000_000 <= to_millis(created)


def derive_record(filename: str, fields: dict, stat: os.stat_result) -> dict:
    """Build a record purely from the file, with empty curated fields."""
    record = {
        "id": photo_id(filename),
        "title": photo_title(filename),
        "description": "",
        "categories": [],
        "season": None,
        "filename": filename,
        "url": URL_PREFIX + filename,
        "dateCreated": iso_timestamp(stat.st_mtime_ns // 1_000_000),
        "fileSize": format_file_size(stat.st_size),
    }
    record.update(fields)
    return record


def merge_record(existing: dict | None, derived: dict) -> dict:
    """Curated fields from existing (when set), everything else from derived.

    Keys the catalog format doesn't know about are hand additions and are
    carried over from existing as well.
    """
    merged = dict(derived)
    if existing:
        for key in CURATED_FIELDS:
            value = existing.get(key)
            if value is not None and value != "":
                merged[key] = value

    record = {key: merged[key] for key in FIELD_ORDER if key in merged}
    if existing:
        for key, value in existing.items():
            if key not in FIELD_ORDER:
                record[key] = value
    return record


def check_vocabulary(record: dict, report: BuildReport):
    """Warn about curated values the gallery filters won't recognise."""
    name = record.get("filename")
    categories = record.get("categories") or []
    if not isinstance(categories, list):
        report.warn(f"{name}: categories should be a list, got {categories!r}")
        return
    unknown = [c for c in categories if c not in CATEGORIES]
    if unknown:
        report.warn(f"{name}: unknown categories {', '.join(map(str, unknown))}")
    season = record.get("season")
    if season and season not in SEASONS:
        report.warn(f"{name}: unknown season {season!r}")


# ---------------------------------------------------------------------------
# Step 5: Sort and write
# ---------------------------------------------------------------------------

def effective_date(record: dict) -> datetime:
    return (
        parse_timestamp(record.get("dateTaken"))
        or parse_timestamp(record.get("dateCreated"))
        or OLDEST
    )


def sort_photos(records: list[dict]) -> list[dict]:
    """Newest first by dateTaken (else dateCreated); ties by filename."""
    ordered = sorted(records, key=lambda r: str(r.get("filename", "")))
    ordered.sort(key=effective_date, reverse=True)
    return ordered


def write_catalog(path: Path, catalog: dict):
    """Write catalog to path via a temporary file and an atomic rename."""
    tmp = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent,
            prefix=f".{path.name}.", suffix=".tmp", delete=False,
        ) as f:
            tmp = Path(f.name)
            json.dump(catalog, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as e:
        if tmp is not None:
            tmp.unlink(missing_ok=True)
        raise CatalogWriteFailure(f"cannot write {path}: {e}") from e


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def build_catalog(photos_dir: Path, output_file: Path, now: datetime | None = None) -> BuildReport:
    """Rebuild output_file from the images in photos_dir.

    Raises DirectoryUnavailable or CatalogWriteFailure; per-file problems are
    counted on the returned report instead.
    """
    report = BuildReport()
    ensure_directory(output_file.parent)

    print("Step 1: Scanning photos...")
    filenames = scan_photos(photos_dir)
    print(f"  Found {len(filenames)} image files")

    print("Step 2: Loading existing catalog...")
    existing = index_catalog(load_catalog(output_file, report))

    print("Step 3: Extracting metadata...")
    stats: dict[str, os.stat_result] = {}
    for name in filenames:
        try:
            stats[name] = (photos_dir / name).stat()
        except OSError as e:
            report.error(f"{name}: cannot stat: {e}")

    pending = [
        name for name in stats
        if name not in existing or not is_unchanged(existing[name], stats[name].st_mtime_ns)
    ]
    extracted = {r.filename: r for r in extract_all([photos_dir / n for n in pending])}

    records = []
    total = len(stats)
    for i, name in enumerate(stats, 1):
        prefix = f"[{i}/{total}]"
        previous = existing.get(name)
        result = extracted.get(name)

        if result is None:
            print(f"  {prefix} Using existing metadata for {name}")
            records.append(previous)
            report.reused += 1
            continue

        if result.error:
            report.error(f"{prefix} {name}: {result.error}")
            continue
        if result.warning:
            report.warn(f"{prefix} {name}: {result.warning}")

        record = merge_record(previous, derive_record(name, result.fields, stats[name]))
        records.append(record)
        if previous is None:
            report.added += 1
        else:
            report.refreshed += 1
        print(f"  {prefix} Processed {name} ({record['width']}x{record['height']}, {record['fileSize']})")

    report.dropped = len(set(existing) - set(filenames))

    seen_ids: dict[str, str] = {}
    for record in records:
        check_vocabulary(record, report)
        rid = record.get("id")
        if not isinstance(rid, str):
            report.warn(f"{record.get('filename')}: id should be a string, got {rid!r}")
        elif rid in seen_ids:
            report.warn(f"{record.get('filename')}: id {rid!r} already used by {seen_ids[rid]}")
        else:
            seen_ids[rid] = record.get("filename")

    print("Step 4: Writing catalog...")
    now = now or datetime.now(timezone.utc)
    report.catalog = {
        "photos": sort_photos(records),
        "lastUpdated": iso_timestamp(to_millis(now)),
    }
    write_catalog(output_file, report.catalog)
    return report


def print_summary(report: BuildReport, output_file: Path):
    photos = report.catalog["photos"]
    print(f"\nDone! {len(photos)} photos written to {output_file}")
    print(f"  {report.added} added, {report.refreshed} refreshed, "
          f"{report.reused} unchanged, {report.dropped} removed")
    if report.errors or report.warnings:
        print(f"  {report.errors} errors, {report.warnings} warnings")
    print(f"  Last updated: {report.catalog['lastUpdated']}")

    # Hand-edited values can be any JSON; only strings are listed
    categories = dict.fromkeys(
        c for p in photos if isinstance(p.get("categories"), list)
        for c in p["categories"] if isinstance(c, str)
    )
    seasons = dict.fromkeys(p["season"] for p in photos if isinstance(p.get("season"), str) and p["season"])
    if categories:
        print(f"  Categories: {', '.join(categories)}")
    if seasons:
        print(f"  Seasons: {', '.join(seasons)}")


def main() -> int:
    try:
        report = build_catalog(PHOTOS_DIR, OUTPUT_FILE)
    except CatalogError as e:
        print(f"ERROR {e}", file=sys.stderr)
        return 1
    print_summary(report, OUTPUT_FILE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
