"""Player-facing notification text for blight events."""

from __future__ import annotations

from datetime import datetime

from blight.domain import events


STAGE_DESCRIPTIONS: dict[int, str] = {
    0: "free of the blight",
    1: "showing the first faint marks of blight",
    2: "feverish, though the sickness sharpens their rolls",
    3: "too weak to face monsters",
    4: "unable to fight or gather",
    5: "at death's door",
}

DEATH_WARNING_TEXT: dict[str, str] = {
    "5_day": "has five days left before the blight claims them.",
    "3_day": "has three days left before the blight claims them.",
    "24_hour": "has less than a day left. Seek a Dragon now.",
    "final_6_hour": "has only hours left. This is the final warning.",
}

REQUEST_WARNING_TEXT: dict[str, str] = {
    "24_hour": "expires within a day.",
    "12_hour": "expires within twelve hours.",
    "final_6_hour": "expires within six hours. This is the last reminder.",
}


def _when(moment: datetime | None) -> str:
    if moment is None:
        return "unknown"
    return moment.strftime("%Y-%m-%d %H:%M %Z").strip()


def describe_stage(stage: int) -> str:
    return STAGE_DESCRIPTIONS.get(int(stage), "in an unknown state")


def stage_advanced(event: events.StageAdvanced) -> str:
    text = f"{event.character_name} has worsened to blight stage {event.new_stage} and is {describe_stage(event.new_stage)}."
    if event.reason == "missed-roll":
        text = f"No roll was made for {event.character_name}. " + text
    if event.death_deadline is not None and event.new_stage == 5:
        text += f" Without healing they die at {_when(event.death_deadline)}."
    return text


def death_warning(event: events.DeathWarningIssued) -> str:
    tail = DEATH_WARNING_TEXT.get(event.tier, "is running out of time.")
    return f"{event.character_name} {tail} Deadline: {_when(event.death_deadline)}."


def character_died(event: events.CharacterDied) -> str:
    return f"{event.character_name} of {event.village or 'no village'} has succumbed to the blight."


def healing_requested(event: events.HealingRequested) -> str:
    return (
        f"Healing request {event.submission_id} for {event.character_name} with {event.healer_name}: "
        f"{event.task_description} (task: {event.task_type}, expires {_when(event.expires_at)})."
    )


def healing_completed(event: events.HealingCompleted) -> str:
    return f"{event.character_name} was healed of stage {event.previous_stage} blight by {event.healer_name}."


def request_expiring(event: events.RequestExpiring) -> str:
    tail = REQUEST_WARNING_TEXT.get(event.tier, "expires soon.")
    return f"Healing request {event.submission_id} for {event.character_name} with {event.healer_name} {tail}"


def request_expired(event: events.RequestExpired) -> str:
    return (
        f"Healing request {event.submission_id} for {event.character_name} with {event.healer_name} has expired. "
        "Ask a healer again if the blight still lingers."
    )


def request_cancelled(event: events.RequestCancelled) -> str:
    return f"Healing request {event.submission_id} for {event.character_name} was cancelled ({event.reason})."


def pause_changed(event: events.BlightPauseChanged) -> str:
    if event.paused:
        return f"Blight progression for {event.character_name} is paused: {event.reason or 'no reason given'}."
    return f"Blight progression for {event.character_name} has resumed."


def character_infected(event: events.CharacterInfected) -> str:
    return (
        f"{event.character_name} has contracted the blight ({event.source}). "
        "Roll each day and find a healer before it spreads."
    )
