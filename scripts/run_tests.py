#!/usr/bin/env python
"""
Test runner for the VCCE daemon.

Usage:
    python scripts/run_tests.py                      # whole suite
    python scripts/run_tests.py protocol dispatcher  # tests/test_protocol.py + tests/test_dispatcher.py
    python scripts/run_tests.py server -k invalid    # pytest -k filter
    python scripts/run_tests.py --quick              # skip tests that spawn processes or sockets
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Modules that start shells or bind a TCP port
SLOW_MODULES = {"test_exec_shell.py", "test_dispatcher.py", "test_server.py"}


def module_path(name: str) -> str:
    """'protocol' -> 'tests/test_protocol.py'"""
    if not name.startswith("test_"):
        name = f"test_{name}"
    if not name.endswith(".py"):
        name = f"{name}.py"
    return f"tests/{name}"


def build_command(modules, keyword=None, quiet=False, quick=False):
    targets = [module_path(m) for m in modules]
    if quick and not targets:
        targets = sorted(
            f"tests/{p.name}"
            for p in (PROJECT_ROOT / "tests").glob("test_*.py")
            if p.name not in SLOW_MODULES
        )

    cmd = [sys.executable, "-m", "pytest", *(targets or ["tests/"])]
    cmd.append("-q" if quiet else "-v")
    cmd.append("--tb=short")
    if keyword:
        cmd.extend(["-k", keyword])
    return cmd


def main():
    parser = argparse.ArgumentParser(description="Run the VCCE test suite")
    parser.add_argument("modules", nargs="*", help="Test modules, with or without the test_ prefix")
    parser.add_argument("-k", dest="keyword", help="Only run tests matching this pytest expression")
    parser.add_argument("-q", "--quiet", action="store_true", help="Less verbose pytest output")
    parser.add_argument("--quick", action="store_true", help="Skip process and socket tests")
    args = parser.parse_args()

    cmd = build_command(args.modules, args.keyword, args.quiet, args.quick)
    os.chdir(PROJECT_ROOT)
    print(f"Running: {' '.join(cmd)}")
    print("=" * 60)

    try:
        returncode = subprocess.run(cmd, check=False).returncode
    except FileNotFoundError:
        print("Error: pytest not found. Install with: pip install -e .[test]")
        sys.exit(1)

    if returncode == 0:
        print("\n✅ All tests passed!")
    else:
        print("\n❌ Some tests failed!")
    sys.exit(returncode)


if __name__ == "__main__":
    main()
