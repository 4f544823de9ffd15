from __future__ import annotations

from datetime import datetime
from typing import List

from blight.application.dtos import (
    CancelOutcome,
    CreateRequestOutcome,
    ExpiryReport,
    FailureReason,
    FulfillOutcome,
    HistoryView,
    ModerationOutcome,
    RollCallOutcome,
    RollOutcome,
    RosterEntry,
    StatusView,
    SweepReport,
)
from blight.application.services.blight_messages import describe_stage


FAILURE_TEXT: dict[FailureReason, str] = {
    FailureReason.CHARACTER_NOT_FOUND: "No character by that name or id.",
    FailureReason.NOT_OWNER: "You can only act for your own characters.",
    FailureReason.NOT_AFFLICTED: "That character is not blighted.",
    FailureReason.ALREADY_AFFLICTED: "That character is already blighted.",
    FailureReason.PAUSED: "Blight progression for that character is paused.",
    FailureReason.NOT_PAUSED: "Blight progression for that character is not paused.",
    FailureReason.DUPLICATE_PENDING: "There is already a pending healing request for that character.",
    FailureReason.HEALER_NOT_FOUND: "No healer by that name.",
    FailureReason.VILLAGE_MISMATCH: "The healer lives in another village; travel there first.",
    FailureReason.STAGE_FORBIDDEN: "That healer cannot treat blight at this stage.",
    FailureReason.REQUEST_NOT_FOUND: "No healing request with that submission id.",
    FailureReason.REQUEST_NOT_PENDING: "That healing request is no longer pending.",
    FailureReason.EXPIRED: "That healing request has expired.",
    FailureReason.METHOD_MISMATCH: "That method does not match the requested task.",
    FailureReason.INVALID_PAYLOAD: "The submission could not be read.",
    FailureReason.ITEM_NOT_ACCEPTED: "The healer did not ask for that item and quantity.",
    FailureReason.INSUFFICIENT_QUANTITY: "Not enough of that item in the inventory.",
    FailureReason.NO_BALANCE: "There are no tokens to forfeit.",
    FailureReason.TRACKER_NOT_CONFIGURED: "A token tracker must be set up before forfeiting tokens.",
    FailureReason.ALREADY_ROLLED: "This character has already rolled in the current window.",
    FailureReason.TERMINAL_STAGE: "Stage 5 blight cannot be rolled; only healing remains.",
    FailureReason.BUSY: "That character is being updated; try again shortly.",
    FailureReason.CONFLICT: "The character changed while this was processed; try again.",
    FailureReason.DEPENDENCY_FAILED: "An external service failed; nothing was changed.",
    FailureReason.INVALID_STAGE: "Blight stages run from 0 to 5.",
    FailureReason.INVALID_INPUT: "The command input was not understood.",
    FailureReason.CHANNEL_NOT_CONFIGURED: "No notification channel is configured.",
}


def _when(moment: datetime | None) -> str:
    if moment is None:
        return "never"
    return moment.strftime("%Y-%m-%d %H:%M %Z").strip()


def failure(reason: FailureReason | None, detail: str = "") -> str:
    text = FAILURE_TEXT.get(reason, "The action failed.") if reason is not None else "The action failed."
    code = f" [{reason.value}]" if reason is not None else ""
    return f"{text}{code}" + (f" ({detail})" if detail else "")


def roll_lines(outcome: RollOutcome) -> List[str]:
    if not outcome.ok:
        lines = [failure(outcome.reason)]
        if outcome.reason == FailureReason.ALREADY_ROLLED and outcome.next_window_start is not None:
            lines.append(f"Next roll opens at {_when(outcome.next_window_start)}.")
        return lines
    name = outcome.character.name if outcome.character else "The character"
    lines = [f"{name} rolled {outcome.roll_value}."]
    if outcome.stage_changed:
        lines.append(f"The blight moved from stage {outcome.previous_stage} to stage {outcome.new_stage}.")
    else:
        lines.append(f"The blight holds at stage {outcome.new_stage}.")
    lines.append(f"{name} is {describe_stage(int(outcome.new_stage or 0))}.")
    if outcome.death_deadline is not None:
        lines.append(f"Death comes at {_when(outcome.death_deadline)} unless a Dragon intervenes.")
    return lines


def create_request_lines(outcome: CreateRequestOutcome) -> List[str]:
    if not outcome.ok:
        lines = [failure(outcome.reason)]
        if outcome.existing_submission_id:
            lines.append(f"Pending submission: {outcome.existing_submission_id}")
        return lines
    request = outcome.request
    assert request is not None
    lines = []
    if outcome.narration:
        lines.append(outcome.narration)
    if outcome.replaced_submission_id:
        lines.append(f"Previous request {outcome.replaced_submission_id} was cancelled; that healer can no longer help.")
    lines.append(f"Submission id: {request.submission_id}")
    lines.append(f"Task ({request.task_type.value}): {request.task_description}")
    for item in request.items:
        lines.append(f"  - {item.label()}")
    lines.append(f"Expires: {_when(request.expires_at)}")
    return lines


def fulfill_lines(outcome: FulfillOutcome) -> List[str]:
    if not outcome.ok:
        return [failure(outcome.reason, outcome.detail)]
    lines = []
    if outcome.narration:
        lines.append(outcome.narration)
    name = outcome.character.name if outcome.character else "The character"
    lines.append(f"{name} is cured of stage {outcome.previous_stage} blight.")
    if outcome.tokens_forfeited:
        lines.append(f"{outcome.tokens_forfeited} tokens were forfeited.")
    return lines


def cancel_lines(outcome: CancelOutcome) -> List[str]:
    if not outcome.ok:
        return [failure(outcome.reason)]
    assert outcome.request is not None
    return [f"Healing request {outcome.request.submission_id} cancelled."]


def status_lines(view: StatusView | None) -> List[str]:
    if view is None:
        return [failure(FailureReason.CHARACTER_NOT_FOUND)]
    lines = [f"{view.name}: stage {view.stage}, {describe_stage(view.stage)}."]
    if view.died_at is not None and not view.blighted:
        lines.append(f"Died of blight at {_when(view.died_at)}.")
    effects = view.effects
    lines.append(
        f"Effects: roll x{effects.roll_multiplier:g}, "
        f"monsters {'blocked' if effects.no_monsters else 'allowed'}, "
        f"gathering {'blocked' if effects.no_gathering else 'allowed'}."
    )
    if view.paused:
        lines.append(f"Paused by {view.paused_by or 'a moderator'}: {view.pause_reason or 'no reason given'}.")
    if view.death_deadline is not None:
        lines.append(f"Death deadline: {_when(view.death_deadline)}.")
    lines.append(f"Last roll: {_when(view.last_roll_date)}.")
    lines.append("Roll available now." if view.can_roll else f"Next roll window: {_when(view.next_window_start)}.")
    if view.pending_request is not None:
        request = view.pending_request
        lines.append(
            f"Pending request {request.submission_id} with {request.healer_name} "
            f"({request.task_type.value}), expires {_when(request.expires_at)}."
        )
    return lines


def history_lines(view: HistoryView | None) -> List[str]:
    if view is None:
        return [failure(FailureReason.CHARACTER_NOT_FOUND)]
    if not view.events:
        return [f"No blight history for {view.name}."]
    lines = [f"Blight history for {view.name}:"]
    for event in view.events:
        stages = ""
        if event.previous_stage is not None and event.new_stage is not None:
            stages = f" {event.previous_stage}->{event.new_stage}"
        roll = f" roll {event.roll_value}" if event.roll_value is not None else ""
        notes = f" - {event.notes}" if event.notes else ""
        lines.append(f"  {_when(event.created_at)} {event.event_type.value}{stages}{roll}{notes}")
    return lines


def roster_lines(entries: List[RosterEntry]) -> List[str]:
    if not entries:
        return ["No pending healing requests."]
    lines = ["Pending healing requests:"]
    for entry in entries:
        state = "EXPIRED" if entry.expired else f"{entry.hours_remaining:g}h left"
        lines.append(
            f"  {entry.submission_id} {entry.character_name} -> {entry.healer_name} "
            f"({entry.task_type}, stage {entry.stage_at_creation}) {state}"
        )
    return lines


def sweep_lines(report: SweepReport) -> List[str]:
    if report.skipped:
        return ["Sweep skipped; another sweep is running."]
    return [
        f"Examined {report.examined} blighted character(s).",
        f"Advanced: {', '.join(report.advanced) or 'none'}.",
        f"Deaths: {', '.join(report.deaths) or 'none'}.",
        f"Warnings: {', '.join(report.warnings) or 'none'}.",
        f"Invariant violations: {report.violations}; failures: {report.failures}.",
    ]


def roll_call_lines(outcome: RollCallOutcome) -> List[str]:
    if not outcome.ok:
        return [failure(outcome.reason)]
    return [f"Roll call posted to {outcome.channel_id}: {outcome.message}"]


def expiry_lines(warned: ExpiryReport, cleaned: ExpiryReport) -> List[str]:
    return [
        f"Expiry warnings sent: {len(warned.warned)}.",
        f"Expired requests removed: {', '.join(cleaned.expired) or 'none'}.",
        f"Other expired records purged: {cleaned.purged_records}.",
    ]


def moderation_lines(outcome: ModerationOutcome, action: str) -> List[str]:
    if not outcome.ok:
        return [failure(outcome.reason)]
    names = ", ".join(f"{row.name} (stage {row.blight_stage})" for row in outcome.characters) or "no characters"
    lines = [f"{action}: {names}."]
    if outcome.cancelled_submissions:
        lines.append(f"Cancelled requests: {', '.join(outcome.cancelled_submissions)}.")
    if outcome.failures:
        lines.append(f"Skipped after concurrent changes: {', '.join(outcome.failures)}.")
    return lines
