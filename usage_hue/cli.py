"""usage-hue command line.

Usage:
    usage-hue start     # run the daemon in the foreground
    usage-hue stop      # signal a running daemon
    usage-hue status    # daemon state and current usage
"""

from __future__ import annotations

import argparse
import sys

from .core.config import settings
from .main import current_status, start, stop
from .services.lifecycle import StopOutcome


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="usage-hue", description="Show usage limits on a Hue light")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("start", help="Run the daemon until interrupted")
    sub.add_parser("stop", help="Stop a running daemon")
    sub.add_parser("status", help="Show daemon status and current usage")
    args = parser.parse_args(argv)

    if args.command == "start":
        return start(settings)

    if args.command == "stop":
        report = stop(settings)
        return 1 if report.outcome is StopOutcome.NOT_PERMITTED else 0

    st = current_status(settings)
    print("usage-hue status\n")
    print(f"  Daemon:  {'running (PID %s)' % st.pid if st.running else 'stopped'}")
    if st.percentage is not None:
        print(f"  Source:  {st.source}")
        print(f"  Usage:   {round(st.percentage * 100)}% ({st.details})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
