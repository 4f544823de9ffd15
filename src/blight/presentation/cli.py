from __future__ import annotations

import argparse
import logging
from typing import Callable, List, Sequence

from rich.console import Console

from blight.bootstrap import BlightServices, create_blight_services
from blight.application.dtos import FailureReason
from blight.presentation import messages


logger = logging.getLogger(__name__)
_CONSOLE = Console()


def _resolve_character_id(services: BlightServices, reference: str) -> int | None:
    raw = str(reference or "").strip()
    if raw.isdigit():
        return int(raw)
    character = services.character_repo.get_by_name(raw)
    return int(character.id) if character is not None and character.id is not None else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blight", description="Blight affliction and healing tools")
    sub = parser.add_subparsers(dest="command", required=True)

    roll = sub.add_parser("roll", help="Roll for a blighted character")
    roll.add_argument("character")
    roll.add_argument("--user", required=True)

    heal = sub.add_parser("heal", help="Ask a healer for a healing task")
    heal.add_argument("character")
    heal.add_argument("healer")
    heal.add_argument("--user", required=True)

    submit = sub.add_parser("submit", help="Fulfil a pending healing request")
    submit.add_argument("submission_id")
    submit.add_argument("method", choices=["tokens", "item", "link"])
    submit.add_argument("payload", nargs="?", default="", help="'Item Name xN' for items, a URL for links")
    submit.add_argument("--user", required=True)

    cancel = sub.add_parser("cancel", help="Cancel a pending healing request")
    cancel.add_argument("submission_id")
    cancel.add_argument("--user", required=True)

    status = sub.add_parser("status", help="Show blight status")
    status.add_argument("character")

    history = sub.add_parser("history", help="Show blight history")
    history.add_argument("character")
    history.add_argument("--limit", type=int, default=10)

    roster = sub.add_parser("roster", help="List pending healing requests")
    roster.add_argument("--show-expired", action="store_true")

    sub.add_parser("sweep", help="Run the missed-roll sweep once")
    sub.add_parser("roll-call", help="Post the daily roll reminder")
    sub.add_parser("expiry", help="Warn about and clean up expiring requests")

    infect = sub.add_parser("infect", help="Infect a character with blight")
    infect.add_argument("character")
    infect.add_argument("--source", default="moderator")
    infect.add_argument("--actor", required=True)

    pause = sub.add_parser("pause", help="Pause blight progression")
    pause.add_argument("character")
    pause.add_argument("--reason", default="")
    pause.add_argument("--actor", required=True)

    unpause = sub.add_parser("unpause", help="Resume blight progression")
    unpause.add_argument("character")
    unpause.add_argument("--actor", required=True)

    override = sub.add_parser("override", help="Set blight stage for a character, a village or everyone")
    override.add_argument("scope", choices=["character", "village", "all"])
    override.add_argument("level", type=int)
    override.add_argument("--target", default=None)
    override.add_argument("--reason", default="moderator override")
    override.add_argument("--actor", required=True)

    init_db = sub.add_parser("init-db", help="Apply the database schema")
    init_db.add_argument("--database-url", default=None)
    init_db.add_argument("--dry-run", action="store_true")
    return parser


def _character_command(
    services: BlightServices,
    reference: str,
    action: Callable[[int], List[str]],
) -> tuple[int, List[str]]:
    character_id = _resolve_character_id(services, reference)
    if character_id is None:
        return 1, [messages.failure(FailureReason.CHARACTER_NOT_FOUND)]
    return 0, action(character_id)


def run_command(args: argparse.Namespace, services: BlightServices) -> tuple[int, List[str]]:
    command = args.command
    if command == "roll":
        def _roll(character_id: int) -> List[str]:
            return messages.roll_lines(services.rolls.roll(character_id, args.user))
        return _character_command(services, args.character, _roll)
    if command == "heal":
        def _heal(character_id: int) -> List[str]:
            return messages.create_request_lines(services.healing.create_request(character_id, args.healer, args.user))
        return _character_command(services, args.character, _heal)
    if command == "submit":
        outcome = services.healing.fulfill_request(args.submission_id, args.method, args.payload, args.user)
        return (0 if outcome.ok else 1), messages.fulfill_lines(outcome)
    if command == "cancel":
        outcome = services.healing.cancel_request(args.submission_id, acting_user_id=args.user)
        return (0 if outcome.ok else 1), messages.cancel_lines(outcome)
    if command == "status":
        return _character_command(services, args.character, lambda cid: messages.status_lines(services.status.status(cid)))
    if command == "history":
        return _character_command(
            services,
            args.character,
            lambda cid: messages.history_lines(services.status.history(cid, limit=args.limit)),
        )
    if command == "roster":
        return 0, messages.roster_lines(services.status.roster(show_expired=args.show_expired))
    if command == "sweep":
        return 0, messages.sweep_lines(services.sweeper.run())
    if command == "roll-call":
        outcome = services.roll_call.post_roll_call()
        return (0 if outcome.ok else 1), messages.roll_call_lines(outcome)
    if command == "expiry":
        warned = services.expiry.warn_expiring()
        cleaned = services.expiry.cleanup_expired()
        return 0, messages.expiry_lines(warned, cleaned)
    if command == "infect":
        def _infect(character_id: int) -> List[str]:
            outcome = services.moderation.infect(character_id, source=args.source, actor_user_id=args.actor)
            return messages.moderation_lines(outcome, "Infected")
        return _character_command(services, args.character, _infect)
    if command == "pause":
        def _pause(character_id: int) -> List[str]:
            outcome = services.moderation.pause(character_id, reason=args.reason, actor_user_id=args.actor)
            return messages.moderation_lines(outcome, "Paused")
        return _character_command(services, args.character, _pause)
    if command == "unpause":
        def _unpause(character_id: int) -> List[str]:
            return messages.moderation_lines(services.moderation.unpause(character_id, actor_user_id=args.actor), "Unpaused")
        return _character_command(services, args.character, _unpause)
    if command == "override":
        outcome = services.moderation.override_stage(
            args.scope,
            args.target,
            args.level,
            reason=args.reason,
            actor_user_id=args.actor,
        )
        return (0 if outcome.ok else 1), messages.moderation_lines(outcome, f"Set to stage {args.level}")
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None, services: BlightServices | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "init-db":
        from blight.infrastructure.db.sql import migrate

        migrate_args = ["--dry-run"] if args.dry_run else []
        if args.database_url:
            migrate_args += ["--database-url", args.database_url]
        migrate.main(migrate_args)
        return 0

    services = services or create_blight_services()
    code, lines = run_command(args, services)
    _emit(lines, failed=code != 0)
    return code


def _emit(lines: List[str], *, failed: bool) -> None:
    # Output carries literal "[reason-code]" tags, so rich markup stays off.
    style = "bold red" if failed else None
    for line in lines:
        _CONSOLE.print(line, style=style, markup=False, highlight=False, soft_wrap=True)
