#!/usr/bin/env python3
"""
Test runner for the Todo List notification service.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py engine scheduler          # Run tests/test_notification_engine.py etc.
    python run_tests.py -k dedup                  # Run specific test pattern
    python run_tests.py --cov                     # Run with coverage
"""

import sys
import subprocess
from pathlib import Path

ROOT = Path(__file__).parent


def _test_file(name: str) -> str:
    for candidate in (f"tests/test_{name}.py", f"tests/test_notification_{name}.py"):
        if (ROOT / candidate).exists():
            return candidate
    return name


def run_tests(targets=None, args=None):
    """Run tests with pytest."""
    cmd = [sys.executable, "-m", "pytest"]
    cmd.extend([_test_file(t) for t in targets] if targets else ["tests"])
    cmd.extend(["-v", "--tb=short"])
    cmd.extend(args or [])

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=ROOT)
    return result.returncode


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the notification service")
    parser.add_argument("targets", nargs="*", help="Test modules, e.g. engine, api, task_source")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    pytest_args = []

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend([
            "--cov=app",
            "--cov-report=html",
            "--cov-report=term-missing"
        ])

    if args.verbose:
        pytest_args.append("-vv")

    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(args.targets, pytest_args)


if __name__ == "__main__":
    sys.exit(main())
