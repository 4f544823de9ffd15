import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def disable_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("time.sleep", lambda *_args, **_kwargs: None)


@pytest.fixture(autouse=True)
def isolated_blight_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BLIGHT_DATABASE_URL",
        "BLIGHT_WEBHOOK_URL",
        "BLIGHT_NOTIFICATIONS_CHANNEL_ID",
        "BLIGHT_REMINDER_ROLE_ID",
        "BLIGHT_MOD_QUEUE_CHANNEL_ID",
        "BLIGHT_HEALERS_PATH",
        "BLIGHT_ROLL_BAND_MODE",
        "BLIGHT_WEBHOOK_ENABLED",
        "BLIGHT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
