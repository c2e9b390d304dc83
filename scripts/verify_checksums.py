#!/usr/bin/env python3
"""Re-hash stored files and compare against their recorded checksum.

Usage:
  .venv/bin/python scripts/verify_checksums.py s3://bucket/path/
  .venv/bin/python scripts/verify_checksums.py s3://bucket/ --fail-on-missing

Exits with status 1 when any file's content no longer matches its checksum.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field

from cloudfiles.app.services.file_metadata import compute_checksum
from cloudfiles.app.services.file_storage_service import CloudFileStorageService


@dataclass
class VerificationReport:
    checked: int = 0
    mismatched: list[str] = field(default_factory=list)
    missing_checksum: list[str] = field(default_factory=list)

    def is_clean(self, *, fail_on_missing: bool = False) -> bool:
        if self.mismatched:
            return False
        return not (fail_on_missing and self.missing_checksum)


def verify_checksums(
    service: CloudFileStorageService, prefix: str
) -> VerificationReport:
    report = VerificationReport()
    for cloud_file in service.list_files(prefix):
        report.checked += 1
        if not cloud_file.checksum:
            report.missing_checksum.append(cloud_file.id)
            continue
        with service.get_input_stream(cloud_file.id) as stream:
            actual = compute_checksum(stream.read())
        if actual != cloud_file.checksum:
            report.mismatched.append(cloud_file.id)
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify stored file checksums")
    parser.add_argument("prefix", help="Identifier prefix, e.g. s3://bucket/path/")
    parser.add_argument(
        "--fail-on-missing",
        action="store_true",
        help="Also fail when a file carries no checksum",
    )
    args = parser.parse_args()

    report = verify_checksums(CloudFileStorageService(), args.prefix)
    for file_id in report.mismatched:
        print(f"MISMATCH {file_id}")
    for file_id in report.missing_checksum:
        print(f"NO-CHECKSUM {file_id}")
    print(
        f"Checked {report.checked} files: {len(report.mismatched)} mismatched, "
        f"{len(report.missing_checksum)} without checksum"
    )
    if not report.is_clean(fail_on_missing=args.fail_on_missing):
        sys.exit(1)


if __name__ == "__main__":
    main()
