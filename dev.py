#!/usr/bin/env python3
"""
Developer tasks for pyiscsiadmin.

Usage:
    python dev.py test                    # Whole suite
    python dev.py test -f sessions        # tests/test_sessions.py only
    python dev.py test -k login --cov     # Filter by keyword, with coverage
    python dev.py lint
    python dev.py clean
"""

import argparse
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parent
PACKAGE = "iscsiadmin"
CACHE_DIRS = ("__pycache__", ".pytest_cache")
CACHE_ITEMS = ("htmlcov", ".coverage")


def run(cmd):
    print(f"$ {' '.join(cmd)}")
    returncode = subprocess.run(cmd, cwd=ROOT).returncode
    if returncode != 0:
        print(f"failed with exit code {returncode}")
    return returncode == 0


def cmd_test(args):
    cmd = [sys.executable, "-m", "pytest"]
    if args.file:
        cmd.append(f"tests/test_{args.file}.py")
    if args.keyword:
        cmd += ["-k", args.keyword]
    if args.cov:
        cmd += [f"--cov={PACKAGE}", "--cov-report=term-missing"]
    if args.verbose:
        cmd.append("-v")
    return run(cmd)


def cmd_lint(args):
    return run([sys.executable, "-m", "flake8", "--max-line-length=120", PACKAGE, "tests"])


def cmd_clean(args):
    removed = 0
    for name in CACHE_DIRS:
        for path in ROOT.rglob(name):
            shutil.rmtree(path, ignore_errors=True)
            removed += 1
    for path in ROOT.rglob("*.pyc"):
        path.unlink()
        removed += 1
    for name in CACHE_ITEMS:
        path = ROOT / name
        if path.is_dir():
            shutil.rmtree(path)
            removed += 1
        elif path.exists():
            path.unlink()
            removed += 1
    print(f"removed {removed} cache entries")
    return True


def main():
    parser = argparse.ArgumentParser(description="pyiscsiadmin developer tasks")
    sub = parser.add_subparsers(dest="command")

    test = sub.add_parser("test", help="Run the test suite")
    test.add_argument("-f", "--file", help="Test module suffix, e.g. 'agent' for test_agent.py")
    test.add_argument("-k", "--keyword", help="pytest -k expression")
    test.add_argument("--cov", action="store_true", help="Report coverage of the package")
    test.add_argument("-v", "--verbose", action="store_true")

    sub.add_parser("lint", help="Run flake8 over the package and tests")
    sub.add_parser("clean", help="Remove caches and coverage output")

    args = parser.parse_args()
    handlers = {"test": cmd_test, "lint": cmd_lint, "clean": cmd_clean}
    if args.command not in handlers:
        parser.print_help()
        return 1
    return 0 if handlers[args.command](args) else 1


if __name__ == "__main__":
    sys.exit(main())
