# pyright: standard
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from chat_transfer.config import DEFAULT_BUSY_TIMEOUT, DEFAULT_MAX_STORE_BYTES, Settings
from tests.helpers import Stores, composer, make_state_db, seed_bubble, seed_index, seed_payload

ENV_VARS = (
    "CHAT_TRANSFER_BUSY_TIMEOUT",
    "CHAT_TRANSFER_MAX_STORE_BYTES",
    "CHAT_TRANSFER_BACKUP_DIR",
    "CURSOR_USER_DIR",
    "WORKSPACE_PATH",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keeps the user's config file, environment and CLI logging setup out of every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    yield
    logger = logging.getLogger("chat_transfer")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return {
        "busy_timeout": DEFAULT_BUSY_TIMEOUT,
        "max_store_bytes": DEFAULT_MAX_STORE_BYTES,
        "backup_dir": tmp_path / "backups",
        "cursor_user_dir": None,
        "workspace_storage_dir": None,
    }


@pytest.fixture
def stores(tmp_path: Path) -> Stores:
    """
    A source workspace with two composers, an empty target workspace and a shared global store.

    - c-alpha has a payload referencing its two bubbles.
    - c-beta is in the index but has no payload.
    """
    source = make_state_db(tmp_path / "ws-source" / "state.vscdb")
    target = make_state_db(tmp_path / "ws-target" / "state.vscdb")
    payload = make_state_db(tmp_path / "global" / "state.vscdb")

    seed_index(source, [composer("c-alpha", "Alpha"), composer("c-beta", "Beta")], selectedComposerId="c-alpha")
    seed_payload(
        payload,
        "c-alpha",
        {
            "_v": 3,
            "composerId": "c-alpha",
            "text": "",
            "fullConversationHeadersOnly": [{"bubbleId": "b-one"}, {"bubbleId": "b-two"}],
        },
    )
    seed_bubble(payload, "c-alpha", "b-one", {"bubbleId": "b-one", "type": 1, "text": "How do I sort a list?"})
    seed_bubble(payload, "c-alpha", "b-two", {"bubbleId": "b-two", "type": 2, "text": "Use sorted()."})

    return Stores(source=source, target=target, payload=payload, backups=tmp_path / "backups")
