#!/usr/bin/env python3
"""
Command-line interface for the timetable core.
Works against a JSON file store so it can be used without a server.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from werkzeug.utils import secure_filename

from .config import generate_time_slots, load_config
from .data.converter import DataConverter
from .data.loader import SnapshotLoader, validate_relationships
from .errors import TimetableError
from .service import ScheduleService
from .store.json_file import JsonFileDocumentStore


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Timetable conflict checking and schedule synchronization',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        '--store',
        type=str,
        default=None,
        help='JSON store file (defaults to TIMETABLE_STORE_PATH)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Logging level (defaults to TIMETABLE_LOG_LEVEL)'
    )

    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output results as JSON'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    check = commands.add_parser('check', help='Report conflicts in the stored schedule or a snapshot')
    check.add_argument('--input', type=str, help='Snapshot (JSON file or CSV directory) to check instead')
    check.add_argument('--batch', type=str, help='Only report conflicts for this batch')

    import_cmd = commands.add_parser('import', help='Canonicalize a snapshot and replace the store with it')
    import_cmd.add_argument('input', type=str, help='Snapshot JSON file or CSV directory')

    save = commands.add_parser('save', help='Replace the stored schedule from a JSON list of assignments')
    save.add_argument('input', type=str, help='JSON file holding a list of assignments')
    save.add_argument('--batch', type=str, help='Only replace this batch')

    reset = commands.add_parser('reset', help='Delete every assignment')
    reset.add_argument('--yes', action='store_true', help='Confirm without prompting')

    commands.add_parser('slots', help='Print the teaching slots of a day')

    export = commands.add_parser('export', help='Write conflict and timetable reports as CSV')
    export.add_argument('--output-dir', type=str, default='output', help='Directory for CSV files')

    return parser.parse_args(argv)


def setup_logging(log_level):
    """Configure logging."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _print(args, payload, lines):
    if args.json_output:
        print(json.dumps(payload, indent=2))
    else:
        for line in lines:
            print(line)


def _conflict_payload(conflict_map):
    return {aid: [c.to_dict() for c in conflicts] for aid, conflicts in conflict_map.items()}


def run_check(args, service):
    if args.input:
        snapshot = SnapshotLoader(args.input).load()
        service.load_snapshot(snapshot)
        issues = validate_relationships(snapshot)
    else:
        issues = validate_relationships(service.snapshot())

    draft = service.assignments
    if args.batch:
        draft = service.assignments_for_batch(args.batch)
    draft_ids = {a.id for a in draft}
    external = [a for a in service.assignments if a.id not in draft_ids] + service.external
    conflicts = service.check_conflicts(draft, external)

    lines = [f"\nChecked {len(draft)} assignments: {len(conflicts)} with conflicts"]
    for assignment_id, found in conflicts.items():
        for conflict in found:
            lines.append(f"  {assignment_id}: [{conflict.kind.value}] {conflict.message}")
    if issues:
        lines.append(f"\n{len(issues)} reference issues:")
        lines.extend(f"  {issue}" for issue in issues)
    _print(args, {'conflicts': _conflict_payload(conflicts), 'issues': issues}, lines)
    return 0


def run_import(args, service):
    raw = SnapshotLoader(args.input).load_raw()
    result = service.import_snapshot(raw)
    report = result.report

    lines = [
        "\nImport Results:",
        f"  Records: {result.snapshot.counts()}",
        f"  New ids issued: {report.remap_count}",
        f"  Dangling references: {len(report.dangling)}",
        f"  Ambiguous references: {len(report.ambiguous)}",
        f"  Documents written: {result.sync.written} in {result.sync.transactions} transactions",
    ]
    lines.extend(f"    {d}" for d in report.dangling)
    if not result.success:
        lines.append(f"  Error: {result.sync.error}")
    _print(args, {'report': report.to_dict(), 'sync': result.sync.to_dict()}, lines)
    return 0 if result.success else 1


def run_save(args, service):
    with open(args.input, 'r') as f:
        records = json.load(f)
    assignments = DataConverter.parse_many(records, DataConverter.assignment_from_doc, 'assignments')
    result = service.save_schedule(assignments, args.batch)

    lines = [f"\nSaved {result.written} assignments in {result.write_transactions} write transactions"
             f" ({result.deleted} replaced)"]
    if not result.success:
        lines = [f"\nError: {result.error}"]
        if result.partial:
            lines.append(f"  {result.transactions} transactions were committed before the failure")
    _print(args, result.to_dict(), lines)
    return 0 if result.success else 1


def run_reset(args, service):
    def ask():
        answer = input("Reset all schedule data? This clears the timetable but keeps resources. [y/N] ")
        return answer.strip().lower() in ('y', 'yes')

    result = service.reset_schedule(True if args.yes else ask)
    if result.cancelled:
        lines = ["Reset cancelled"]
    elif result.success:
        lines = [f"Removed {result.deleted} assignments"]
    else:
        lines = [f"Error: {result.error}"]
    _print(args, result.to_dict(), lines)
    return 0 if result.success or result.cancelled else 1


def run_slots(args, service):
    slots = generate_time_slots(service.settings)
    _print(args, {'slots': slots}, [f"  {i}: {label}" for i, label in enumerate(slots)])
    return 0


def run_export(args, service):
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    conflicts = service.check_conflicts(service.assignments)
    output_files = {'conflicts': str(output_dir / 'Conflicts.csv')}
    DataConverter.convert_conflicts_to_df(conflicts).to_csv(output_files['conflicts'], index=False)

    slot_labels = generate_time_slots(service.settings)
    for batch in service.batches.values():
        grid = DataConverter.convert_to_batch_grid_df(
            service.assignments, batch.id, service.subjects, service.rooms,
            service.settings.working_days, slot_labels
        )
        # Batch ids come from imported data and may contain path separators
        filename = secure_filename(f"Timetable_{batch.id}.csv")
        output_files[batch.id] = str(output_dir / filename)
        grid.to_csv(output_files[batch.id])

    lines = ["\nOutput files:"] + [f"  {name}: {path}" for name, path in output_files.items()]
    _print(args, {'output_files': output_files}, lines)
    return 0


COMMANDS = {
    'check': run_check,
    'import': run_import,
    'save': run_save,
    'reset': run_reset,
    'slots': run_slots,
    'export': run_export,
}


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        config = load_config()
        setup_logging(args.log_level or config.log_level)

        store = JsonFileDocumentStore(args.store or config.store_path,
                                      max_batch_operations=config.max_batch_operations)
        service = ScheduleService(store, chunk_size=config.chunk_size)
        service.refresh()

        sys.exit(COMMANDS[args.command](args, service))

    except (TimetableError, FileNotFoundError, ValueError) as e:
        print(f"Error: {str(e)}")
        sys.exit(1)


if __name__ == '__main__':
    main()
