"""
CLI utility for memory backups.

Usage:
    python scripts/memory_backup.py stats --storage-dir ~/.memory_engine/memory
    python scripts/memory_backup.py --config settings.json stats
    python scripts/memory_backup.py export backup.memory-backup.json --compress
    python scripts/memory_backup.py validate backup.memory-backup.json
    python scripts/memory_backup.py import backup.memory-backup.json --mode merge --conflict keep_newer
    python scripts/memory_backup.py jobs --limit 5
"""

import argparse
import asyncio
import sys
from datetime import datetime
from functools import partial
from pathlib import Path

from memory_engine.backup import MemoryExporter, MemoryImporter, get_export_file_info
from memory_engine.config.settings import ExportOptions, ImportOptions, MemoryConfig, load_settings
from memory_engine.index.vector_store import InMemoryVectorStore
from memory_engine.memory.store import MemoryManager
from memory_engine.ops.import_worker import run_import
from memory_engine.ops.jobs import JobManager
from memory_engine.telemetry import configure_logging

VECTORS_FILE = "vectors.json"
JOBS_FILE = "jobs.jsonl"


def format_bytes(bytes_val: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024:
            return f"{bytes_val:.1f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.1f} TB"


def format_time(ts_ms: int) -> str:
    """Format epoch milliseconds as human-readable string."""
    if not ts_ms:
        return "never"
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def open_storage(config: MemoryConfig):
    """Memory manager and vector store backed by ``config.storage_dir``."""
    manager = MemoryManager(config)
    store = InMemoryVectorStore(path=Path(config.storage_dir) / VECTORS_FILE)
    store.load()
    return manager, store


async def show_stats(config: MemoryConfig) -> int:
    manager, store = open_storage(config)
    await manager.load()

    stats = manager.get_stats()
    vector_stats = await store.get_stats()
    documents = await store.all_documents()
    summaries = sum(1 for d in documents if d.metadata.is_summary)

    print(f"📊 Memory Statistics: {config.storage_dir}\n")
    print(f"{'Kind':<15} {'Count':>10}")
    print("=" * 26)
    print(f"{'entries':<15} {stats['total_entries']:>10,}")
    print(f"{'conversations':<15} {stats['total_conversations']:>10,}")
    print(f"{'vectors':<15} {vector_stats.total_vectors - summaries:>10,}")
    print(f"{'summaries':<15} {summaries:>10,}")
    print("=" * 26)
    print(f"Average importance: {vector_stats.average_importance:.2f}")
    return 0


async def run_validate(path: Path) -> int:
    importer = MemoryImporter(MemoryManager(MemoryConfig(enable_persistence=False)))
    result = await importer.validate_file(path)

    info = get_export_file_info(path)
    if info is not None:
        print(f"📦 {path}: version {info.version}, exported {format_time(info.exported_at)}")

    s = result.stats
    print(
        f"   {s.total_entries:,} entries, {s.total_conversations:,} conversations, "
        f"{s.total_vectors:,} vectors, {s.total_summaries:,} summaries "
        f"({format_bytes(s.file_size_bytes)}{', gzip' if s.compressed else ''})"
    )
    for warning in result.warnings:
        print(f"⚠️  {warning}")
    for error in result.errors:
        print(f"❌ [{error.code}] {error.message}")

    if not result.valid:
        return 1
    print("✅ Backup is valid")
    return 0


async def import_backup(path: Path, config: MemoryConfig, options: ImportOptions) -> int:
    manager, store = open_storage(config)
    await manager.load()
    importer = MemoryImporter(manager, store)

    def on_event(event, payload):
        if event == "progress":
            print(f"   {payload['phase']:<14} {payload['overallProgress']:>3}%", end="\r")
        elif event == "conflict":
            print(f"   conflict {payload['type']} {payload['id']} -> {payload['resolution']}")

    importer.add_listener(on_event)
    jobs = JobManager(state_file=Path(config.storage_dir) / JOBS_FILE)
    worker = partial(run_import, importer=importer, path=path, options=options)
    job = await jobs.wait(jobs.submit_job("import", worker))
    print()

    if job.state != "succeeded":
        print(f"❌ Import failed: {job.payload.get('error', job.message)}")
        return 1

    if not options.dry_run:
        store.save()

    s = job.payload["stats"]
    label = "Dry run" if job.payload["dry_run"] else "Import"
    print(f"✅ {label} complete in {job.payload['duration_ms']} ms (job {job.id})")
    for kind in ("entries", "conversations", "vectors", "summaries"):
        print(f"   {kind:<14} {s[kind + '_imported']:>8,} imported {s[kind + '_skipped']:>8,} skipped")
    print(f"   conflicts      {s['conflicts_resolved']:>8,}")
    for warning in job.payload.get("warnings", []):
        print(f"⚠️  {warning}")
    return 0


def show_jobs(config: MemoryConfig, limit: int) -> int:
    jobs = JobManager(state_file=Path(config.storage_dir) / JOBS_FILE)
    history = jobs.list()[:limit]
    if not history:
        print("No import jobs recorded")
        return 0

    print(f"{'Job':<38} {'State':<10} {'Started':<26} Path")
    print("=" * 90)
    for job in history:
        print(f"{job.id:<38} {job.state:<10} {job.started_at or '-':<26} {job.payload.get('path', '')}")
    return 0


async def run_export(path: Path, config: MemoryConfig, compress: bool) -> int:
    manager, store = open_storage(config)
    await manager.load()
    exporter = MemoryExporter(manager, store)

    result = await exporter.export_to_file(path, ExportOptions(compress=compress))
    print(f"✅ Exported to {result.path} ({format_bytes(result.bytes_written)})")
    for kind, count in result.counts.items():
        print(f"   {kind:<15} {count:>10,}")
    print(f"   checksum       {result.checksum}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export, validate and import memory backups")
    parser.add_argument("--config", type=Path, default=None, help="Settings JSON file")
    parser.add_argument(
        "--storage-dir",
        type=Path,
        default=None,
        help="Memory storage directory (default: from settings, ~/.memory_engine/memory)",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: from settings)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("stats", help="Show memory statistics")

    validate = sub.add_parser("validate", help="Validate a backup file")
    validate.add_argument("path", type=Path)

    export = sub.add_parser("export", help="Write a backup file")
    export.add_argument("path", type=Path)
    export.add_argument("--compress", action="store_true", help="gzip the backup")

    imp = sub.add_parser("import", help="Import a backup file")
    imp.add_argument("path", type=Path)
    imp.add_argument("--mode", choices=["merge", "replace"], default="merge")
    imp.add_argument(
        "--conflict",
        choices=["keep_existing", "use_imported", "keep_newer", "keep_higher_importance"],
        default="keep_newer",
    )
    imp.add_argument("--keep-ids", action="store_true", help="Do not suffix imported IDs")
    imp.add_argument("--min-importance", type=float, default=None)
    imp.add_argument("--dry-run", action="store_true", help="Report counts without writing")
    imp.add_argument("--skip-validation", action="store_true")

    jobs = sub.add_parser("jobs", help="Show recent import jobs")
    jobs.add_argument("--limit", type=int, default=10)
    return parser


def main():
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        print("\n❌ Error: Must specify a command")
        sys.exit(1)

    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level)

    config = settings.memory
    if args.storage_dir is not None:
        config = config.model_copy(update={"storage_dir": str(args.storage_dir)})

    if args.command == "stats":
        exit_code = asyncio.run(show_stats(config))
    elif args.command == "validate":
        exit_code = asyncio.run(run_validate(args.path))
    elif args.command == "jobs":
        exit_code = show_jobs(config, args.limit)
    elif args.command == "export":
        exit_code = asyncio.run(run_export(args.path, config, args.compress))
    else:
        options = ImportOptions(
            mode=args.mode,
            conflict_resolution=args.conflict,
            transform_ids=not args.keep_ids,
            min_importance=args.min_importance,
            dry_run=args.dry_run,
            skip_validation=args.skip_validation,
        )
        exit_code = asyncio.run(import_backup(args.path, config, options))

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
