from __future__ import annotations

import argparse


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete a student's form entries (with dry-run).")
    parser.add_argument("--student-id", required=True, help="Student whose entries should be deleted")
    parser.add_argument("--template-id", default=None, help="Only delete entries for this form template")
    parser.add_argument("--dry-run", action="store_true", help="Print what would be deleted, without deleting")
    args = parser.parse_args()

    if not args.student_id.strip():
        raise SystemExit("--student-id must not be empty")

    # NOTE: This script is intended to be run inside the API container/runtime where
    # the app modules (`core`, `services`) are available on PYTHONPATH.
    from core.config import settings
    from core.container import build_container
    from core.logging import setup_logging

    setup_logging(settings)
    container = build_container(settings)

    print("Form entry cleanup")
    print(f"- store: {settings.STORE_BACKEND}")
    print(f"- student: {args.student_id}")
    print(f"- template: {args.template_id or '(all)'}")
    print(f"- batch limit: {settings.STORE_BATCH_LIMIT}")

    count = container.entries.delete_entries_for_student(
        args.student_id,
        template_id=args.template_id,
        dry_run=args.dry_run,
    )

    if args.dry_run:
        print(f"- matches: {count}")
        print("Dry run: no deletions performed.")
        return 0

    print(f"Deleted {count} form entr{'y' if count == 1 else 'ies'}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
