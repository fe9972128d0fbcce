#!/usr/bin/env python3
"""
Launcher for running Referral Intake from a source checkout.

    python run.py api [port]    serve the Slack endpoints (reloads when DEBUG=true)
    python run.py cli ...       any referral-intake CLI command
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

DEFAULT_PORT = 8000


def launch_cli(args: list[str]) -> None:
    from referral_intake.cli import app

    app(args=args, prog_name="referral-intake")


def launch_api(args: list[str]) -> None:
    import uvicorn

    from referral_intake.config import get_settings
    from referral_intake.logging_config import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level)
    port = int(args[0]) if args else DEFAULT_PORT
    uvicorn.run(
        "referral_intake.api:app",
        host="0.0.0.0",
        port=port,
        reload=settings.debug,
        log_config=None,
    )


LAUNCHERS = {"api": launch_api, "cli": launch_cli}


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] not in LAUNCHERS:
        print(__doc__.strip())
        sys.exit(1)

    LAUNCHERS[sys.argv[1]](sys.argv[2:])
