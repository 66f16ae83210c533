# main.py
"""CLI entry point for the game-master narrator."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and run the narrator."""
    parser = argparse.ArgumentParser(description="AI game-master narrator")
    parser.add_argument(
        "--health", action="store_true", help="Check the inference backend"
    )
    parser.add_argument(
        "--preload", action="store_true", help="Warm every configured model"
    )
    parser.add_argument("--scene", default=None, help="Describe the named location")
    parser.add_argument(
        "--action", default=None, help="Narrate the outcome of a player action"
    )
    parser.add_argument("--session", default="cli-session", help="Session id to use")
    parser.add_argument(
        "--language", default="en", choices=["en", "ru"], help="Narration language"
    )
    args = parser.parse_args(argv)
    return run(
        health=args.health,
        preload=args.preload,
        scene=args.scene,
        action=args.action,
        session_id=args.session,
        language=args.language,
    )


if __name__ == "__main__":
    sys.exit(main())
