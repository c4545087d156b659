#!/usr/bin/env python3
"""
Tenant scoping lint check.

Scans business code for data access that would bypass the tenancy
interceptor:
1. SQLAlchemy statements built directly (select/insert/update/delete/text)
2. Direct engine or session usage
3. Escape-hatch calls without a reason
4. Hardcoded tenant ids

USAGE:
    serviceos-check-scoping
    serviceos-check-scoping -v --strict --path Backend/serviceos

EXIT CODES:
    0 - No critical/high issues found (or not running with --strict)
    1 - Critical/high issues found with --strict
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent

# Files/directories allowed to talk to the engine directly
EXCLUDE_PATTERNS = [
    "__pycache__",
    "tenancy/",
    "core/db.py",
    "models.py",
    "scoping_check.py",
]

BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"\b(select|insert|update|delete)\(\s*[A-Z]\w*\s*[\),]",
        "CRITICAL",
        "SQLAlchemy statement on a model - use TenantClient.model(...) instead",
    ),
    (
        r"\btext\(",
        "HIGH",
        "Raw SQL - use TenantClient.execute_raw so :tenant_id is bound",
    ),
    (
        r"\bengine\.(begin|connect)\(|\bAsyncSession\(",
        "HIGH",
        "Direct engine/session usage bypasses tenant scoping",
    ),
    (
        r"\b(a?run_as_system|with_system_context)\((?![^)]*reason=)",
        "MEDIUM",
        "System override without reason=",
    ),
    (
        r"id_doanh_nghiep[\"']?\s*[=:]\s*[\"'][0-9a-f-]{8,}[\"']",
        "WARNING",
        "Hardcoded tenant id - take it from the execution context",
    ),
]

IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"noqa:\s*tenant-scoping",  # Explicit suppression
]


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def call_text(lines: List[str], index: int, pattern: str) -> str:
    """Text of the call starting at lines[index], up to its closing paren."""
    match = re.search(pattern, lines[index])
    parts, depth = [], 0
    for offset, line in enumerate(lines[index:]):
        chunk = line[match.end() - 1:] if offset == 0 else line
        parts.append(chunk)
        depth += chunk.count("(") - chunk.count(")")
        if depth <= 0:
            break
    return "\n".join(parts)


def scan_file(file_path: Path) -> List[Finding]:
    """Scan a single file for tenant scoping issues."""
    findings = []
    lines = file_path.read_text(encoding="utf-8").split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue
        for pattern, severity, description in BAD_PATTERNS:
            if re.search(pattern, line):
                if severity == "MEDIUM" and "reason=" in call_text(lines, line_num - 1, pattern):
                    continue
                findings.append(Finding(
                    file=file_path,
                    line_num=line_num,
                    line_text=line,
                    severity=severity,
                    description=description,
                ))

    return findings


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path.relative_to(root)):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "MEDIUM", "WARNING"]


def print_report(findings: List[Finding], verbose: bool = False):
    if not findings:
        print("No tenant scoping issues found!")
        return

    by_severity = {}
    for f in findings:
        by_severity.setdefault(f.severity, []).append(f)

    print("\n" + "=" * 60)
    print("TENANT SCOPING CHECK REPORT")
    print("=" * 60)

    print("\nSUMMARY:")
    for sev in SEVERITY_ORDER:
        count = len(by_severity.get(sev, []))
        if count > 0:
            print(f"  {sev}: {count}")
    print(f"\nTOTAL: {len(findings)} issues")

    if verbose:
        print("\n" + "-" * 60)
        for sev in SEVERITY_ORDER:
            for f in by_severity.get(sev, []):
                print(f)
    else:
        print("\nRun with -v for detailed findings.")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Check business code for data access that bypasses tenant scoping"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed findings")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with code 1 if critical/high issues are found (for CI)",
    )
    parser.add_argument("--path", type=Path, default=SCAN_ROOT, help=f"Path to scan (default: {SCAN_ROOT})")
    args = parser.parse_args(argv)

    if not args.path.exists():
        print(f"Error: Path {args.path} does not exist", file=sys.stderr)
        return 1

    print(f"Scanning {args.path}...")
    findings = scan_directory(args.path)
    print_report(findings, verbose=args.verbose)

    if args.strict:
        critical_count = sum(1 for f in findings if f.severity in ("CRITICAL", "HIGH"))
        if critical_count > 0:
            print(f"\n{critical_count} critical/high issues found. Failing.")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
