# pyright: standard
import json
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from chat_transfer.exceptions import (
    BackupError,
    PostconditionFailedError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from chat_transfer.models import FragmentEntry, MergeReport, MergeState, Snapshot
from chat_transfer.store import BackupHandle, StateStore, create_backup
from chat_transfer.transfer import merge, payload_pairs, remove_records
from tests.helpers import (
    Stores,
    backups_in,
    composer,
    get,
    index_ids,
    make_state_db,
    payload_keys,
    put,
    read_index,
    seed_index,
    seed_payload,
)


def _snapshot() -> Snapshot:
    return Snapshot(
        records=[composer("n1", "New one"), composer("n2")],
        payloads={"n1": '{"composerId":"n1"}', "n2": '{"composerId":"n2"}'},
        fragments={"n1": [FragmentEntry(key="bubbleId:n1:b1", value='{"text":"hi"}', fragment_id="b1")]},
    )


def _merge(stores: Stores, snapshot: Snapshot):
    with (
        StateStore.open(stores.target, role="index") as index_store,
        StateStore.open(stores.payload, role="payload") as payload_store,
    ):
        return merge(snapshot, index_store, payload_store, backup_dir=stores.backups)


def test_merge_inserts_payloads_then_index(stores: Stores) -> None:
    # GIVEN a target workspace that already lists one composer
    seed_index(stores.target, [composer("existing")], selectedComposerId="existing")

    # WHEN a snapshot is merged into it
    report = _merge(stores, _snapshot())

    # THEN payloads and bubbles are in the global store
    assert {"composerData:n1", "composerData:n2", "bubbleId:n1:b1"} <= set(payload_keys(stores.payload))
    assert report.inserted_count == 3
    assert report.already_present == 0

    # AND the new entries are appended after the existing ones, other index keys kept
    index = read_index(stores.target)
    assert index is not None
    assert [r["composerId"] for r in index["allComposers"]] == ["existing", "n1", "n2"]
    assert index["selectedComposerId"] == "existing"
    assert report.records_added == 2
    assert report.final_record_ids == ["existing", "n1", "n2"]

    # AND the merge committed and cleaned up its backups
    assert report.state is MergeState.COMMITTED
    assert report.backups == []
    assert backups_in(stores.backups) == []


def test_merge_into_store_without_index_creates_it(stores: Stores) -> None:
    report = _merge(stores, _snapshot())

    assert index_ids(stores.target) == ["n1", "n2"]
    assert report.final_record_ids == ["n1", "n2"]


def test_merge_twice_is_idempotent(stores: Stores) -> None:
    # GIVEN a snapshot merged once
    _merge(stores, _snapshot())
    keys_after_first = payload_keys(stores.payload)

    # WHEN the same snapshot is merged again
    report = _merge(stores, _snapshot())

    # THEN nothing new is written
    assert report.inserted_count == 0
    assert report.already_present == 3
    assert report.records_added == 0
    assert payload_keys(stores.payload) == keys_after_first
    assert index_ids(stores.target) == ["n1", "n2"]


def test_merge_never_overwrites_existing_payloads(stores: Stores) -> None:
    # GIVEN a payload that already exists with different content
    seed_payload(stores.payload, "n1", {"composerId": "n1", "text": "local edits"})

    # WHEN merging a snapshot carrying the same key
    report = _merge(stores, _snapshot())

    # THEN the existing value wins
    assert json.loads(get(stores.payload, "cursorDiskKV", "composerData:n1") or "") == {
        "composerId": "n1",
        "text": "local edits",
    }
    assert report.already_present == 1
    assert report.inserted_count == 2


def test_payload_pairs_skip_misfiled_bubbles() -> None:
    snapshot = Snapshot(
        records=[composer("a")],
        payloads={"a": "{}"},
        fragments={
            "a": [
                FragmentEntry(key="bubbleId:a:1", value="{}"),
                FragmentEntry(key="bubbleId:other:2", value="{}"),
                FragmentEntry(key="garbage", value="{}"),
            ]
        },
    )

    pairs, warnings = payload_pairs(snapshot)

    assert pairs == [("composerData:a", "{}"), ("bubbleId:a:1", "{}")]
    assert len(warnings) == 2


def test_payload_pairs_skip_incomplete_bubbles() -> None:
    snapshot = Snapshot(
        records=[composer("a")],
        payloads={"a": "{}"},
        fragments={
            "a": [
                FragmentEntry(key="bubbleId:a:1", fragment_id="1"),
                FragmentEntry(value="{}", fragment_id="2"),
                FragmentEntry(key="bubbleId:a:3", value=""),
            ]
        },
    )

    pairs, warnings = payload_pairs(snapshot)

    # An empty value is still a value; a missing one is not
    assert pairs == [("composerData:a", "{}"), ("bubbleId:a:3", "")]
    assert len(warnings) == 2
    assert "2 bubbles have no key or value and will be skipped." in snapshot.consistency_warnings()


def test_precondition_failure_changes_nothing(stores: Stores, mocker: MockerFixture) -> None:
    # GIVEN a target whose integrity check fails before the merge
    seed_index(stores.target, [composer("existing")])
    mocker.patch.object(StateStore, "check_integrity", side_effect=[False, True])
    keys_before = payload_keys(stores.payload)

    # WHEN merging
    with pytest.raises(PreconditionFailedError, match="Nothing was changed"):
        _merge(stores, _snapshot())

    # THEN neither store was touched and the backups are kept
    assert payload_keys(stores.payload) == keys_before
    assert index_ids(stores.target) == ["existing"]
    assert len(backups_in(stores.backups)) == 2


def test_postcondition_failure_keeps_backups(stores: Stores, mocker: MockerFixture) -> None:
    # GIVEN a target index that fails its integrity check after the merge
    seed_index(stores.target, [composer("existing")])
    mocker.patch.object(StateStore, "check_integrity", side_effect=[True, True, False, True])

    # WHEN merging
    with pytest.raises(PostconditionFailedError) as exc_info:
        _merge(stores, _snapshot())

    # THEN the error points at both retained backups and exits with code 2
    error = exc_info.value
    assert error.exit_code == 2
    assert sorted(error.backups) == backups_in(stores.backups)
    assert len(error.backups) == 2
    for backup in error.backups:
        assert str(backup) in error.message

    # AND the backup of the target index still holds the pre-merge state
    assert ["existing"] in [index_ids(b) for b in error.backups]


def test_malformed_target_index_aborts_before_any_change(stores: Stores) -> None:
    # GIVEN a target whose index document was cut off mid-write
    broken = '{"allComposers":[{"composerId":"keep-me"'
    put(stores.target, "ItemTable", {"composer.composerData": broken})
    keys_before = payload_keys(stores.payload)
    report = MergeReport()

    # WHEN merging into it
    with pytest.raises(PreconditionFailedError, match="cannot be parsed") as exc_info:
        with (
            StateStore.open(stores.target, role="index") as index_store,
            StateStore.open(stores.payload, role="payload") as payload_store,
        ):
            merge(_snapshot(), index_store, payload_store, backup_dir=stores.backups, report=report)

    # THEN the index is left as it was instead of being replaced
    assert str(stores.target) in exc_info.value.message
    assert get(stores.target, "ItemTable", "composer.composerData") == broken
    assert payload_keys(stores.payload) == keys_before
    assert report.state is MergeState.ABORTED
    assert len(backups_in(stores.backups)) == 2


def test_target_index_with_non_list_entries_is_rejected(stores: Stores) -> None:
    put(stores.target, "ItemTable", {"composer.composerData": json.dumps({"allComposers": {"composerId": "x"}})})

    with pytest.raises(PreconditionFailedError, match="expected an array"):
        _merge(stores, _snapshot())

    assert "composerData:n1" not in payload_keys(stores.payload)


def test_index_write_failure_after_payloads_keeps_backups(stores: Stores, mocker: MockerFixture) -> None:
    # GIVEN a target index whose write fails once the payloads are committed
    seed_index(stores.target, [composer("existing")])
    mocker.patch.object(StateStore, "write_index", side_effect=StoreUnavailableError("disk full"))
    report = MergeReport()

    # WHEN merging
    with pytest.raises(PostconditionFailedError, match="disk full") as exc_info:
        with (
            StateStore.open(stores.target, role="index") as index_store,
            StateStore.open(stores.payload, role="payload") as payload_store,
        ):
            merge(_snapshot(), index_store, payload_store, backup_dir=stores.backups, report=report)

    # THEN the merge is FAILED with both backups retained and exit code 2
    assert report.state is MergeState.FAILED
    assert exc_info.value.exit_code == 2
    assert sorted(exc_info.value.backups) == backups_in(stores.backups)
    assert len(report.backups) == 2

    # AND the payloads are committed while the index is unchanged
    assert "composerData:n1" in payload_keys(stores.payload)
    assert index_ids(stores.target) == ["existing"]


def test_backup_failure_aborts_before_any_change(stores: Stores, mocker: MockerFixture) -> None:
    mocker.patch(
        "chat_transfer.transfer.merge.create_backup",
        side_effect=BackupError("Could not back up: disk full"),
    )

    with pytest.raises(BackupError):
        _merge(stores, _snapshot())

    assert read_index(stores.target) is None
    assert "composerData:n1" not in payload_keys(stores.payload)


def test_partial_backups_are_discarded_when_a_later_backup_fails(stores: Stores, mocker: MockerFixture) -> None:
    # GIVEN the index backup succeeds and the payload backup fails
    def back_up_index_only(store: StateStore, backup_dir: Path | None = None) -> BackupHandle:
        if store.role == "payload":
            raise BackupError("Could not back up: disk full")
        return create_backup(store, backup_dir)

    mocker.patch("chat_transfer.transfer.merge.create_backup", side_effect=back_up_index_only)
    report = MergeReport()

    # WHEN merging
    with pytest.raises(BackupError):
        with (
            StateStore.open(stores.target, role="index") as index_store,
            StateStore.open(stores.payload, role="payload") as payload_store,
        ):
            merge(_snapshot(), index_store, payload_store, backup_dir=stores.backups, report=report)

    # THEN the index backup already written is removed again
    assert report.state is MergeState.ABORTED
    assert backups_in(stores.backups) == []


def test_remove_records_rejects_malformed_index(tmp_path: Path) -> None:
    db = make_state_db(tmp_path / "state.vscdb")
    put(db, "ItemTable", {"composer.composerData": "not json"})

    with StateStore.open(db, role="index") as index_store:
        with pytest.raises(PreconditionFailedError, match="cannot be parsed"):
            remove_records(index_store, ["a"], backup_dir=tmp_path / "backups")

    assert get(db, "ItemTable", "composer.composerData") == "not json"


def test_remove_records_detaches_from_index_only(stores: Stores) -> None:
    # GIVEN the source workspace with two composers and their payloads
    keys_before = payload_keys(stores.payload)

    # WHEN one of them is removed
    with StateStore.open(stores.source, role="index") as index_store:
        report = remove_records(index_store, ["c-alpha", "unknown"], backup_dir=stores.backups)

    # THEN only the index changed
    assert report.removed == 1
    assert report.remaining == 1
    assert report.state is MergeState.COMMITTED
    assert index_ids(stores.source) == ["c-beta"]
    assert payload_keys(stores.payload) == keys_before
    assert backups_in(stores.backups) == []


def test_remove_records_with_nothing_to_remove(tmp_path: Path) -> None:
    db = make_state_db(tmp_path / "state.vscdb")
    seed_index(db, [composer("a")])

    with StateStore.open(db, role="index") as index_store:
        assert remove_records(index_store, []).state is MergeState.IDLE
        report = remove_records(index_store, ["zzz"], backup_dir=tmp_path / "backups")

    assert report.removed == 0
    assert index_ids(db) == ["a"]
