#!/usr/bin/env python3
"""
LadderStream Test Runner

Usage:
    python test.py           # Run all tests
    python test.py quick     # Skip slow and real-FFmpeg tests
    python test.py verbose   # Run with verbose output
    python test.py <name>    # tests/test_<name>.py, or a -k filter
"""

import os
import subprocess
import sys


def main():
    os.chdir(os.path.dirname(os.path.abspath(__file__)))

    cmd = [sys.executable, "-m", "pytest", "tests/"]
    args = sys.argv[1:]

    if not args:
        cmd.extend(["-v", "--tb=short"])
    elif args[0] == "quick":
        cmd.extend(["-v", "--tb=short", "-m", "not slow and not integration"])
    elif args[0] == "verbose":
        cmd.extend(["-v", "-s", "--tb=long"])
    else:
        test_file = f"tests/test_{args[0]}.py"
        if os.path.exists(test_file):
            cmd = [sys.executable, "-m", "pytest", test_file, "-v", "--tb=short"]
        else:
            cmd.extend(["-v", "--tb=short", "-k", args[0]])

    try:
        return subprocess.run(cmd).returncode
    except KeyboardInterrupt:
        print("\n[ABORT] Tests interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
