"""
Tests for the state store — checksummed file, backup slot, recovery.
"""

from pathlib import Path

import pytest

from envforge.core.models.state import ExecutionState
from envforge.core.persistence.state_file import (
    CHECKSUM_PREFIX,
    StateCorruptError,
    StateStore,
    compute_checksum,
    decode_state_file,
    default_state_path,
    parse_body,
    serialize_body,
)


def _state(*keys: str, failure: str | None = None) -> ExecutionState:
    state = ExecutionState()
    for key in keys:
        state.mark_done(key)
    state.last_failure = failure
    return state


class TestFormat:
    def test_body_is_sorted_key_value_lines(self):
        body = serialize_body(_state("zeta", "alpha")).decode()
        lines = body.splitlines()
        assert [line.split("=", 1)[0] for line in lines] == ["step.alpha", "step.zeta"]

    def test_header_checksum_matches_body(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("toolchain"))

        raw = store.path.read_bytes()
        header, _, body = raw.partition(b"\n")
        assert header.decode().startswith(CHECKSUM_PREFIX)
        assert header.decode()[len(CHECKSUM_PREFIX):] == compute_checksum(body)

    def test_multiline_failure_round_trips(self):
        state = _state(failure="2024-01-01T00:00:00 Lint: line one\nline two = x")
        parsed = parse_body(serialize_body(state).decode())
        assert parsed.last_failure == state.last_failure

    def test_headerless_file_is_accepted(self):
        state = decode_state_file(b"step.toolchain=2024-01-01T00:00:00\n")
        assert state.is_done("toolchain")

    def test_malformed_line_is_corrupt(self):
        with pytest.raises(StateCorruptError):
            parse_body("step.toolchain\n")

    def test_unknown_keys_are_ignored(self):
        state = parse_body("future_key=1\nstep.a=ts\n")
        assert list(state.completed) == ["a"]

    def test_default_paths(self, tmp_path: Path):
        assert default_state_path(tmp_path) == tmp_path / ".state" / "setup.state"
        assert default_state_path(tmp_path, "teardown") == tmp_path / ".state" / "teardown.state"


class TestSaveLoad:
    def test_missing_file_is_empty_state(self, tmp_path: Path):
        state = StateStore(tmp_path / "setup.state").load()
        assert state.is_empty

    def test_round_trip(self, tmp_path: Path):
        store = StateStore(tmp_path / "nested" / "setup.state")
        original = _state("toolchain", "onboarding", failure="boom")
        store.save(original)

        loaded = store.load()
        assert set(loaded.completed) == {"toolchain", "onboarding"}
        assert loaded.completed["toolchain"].timestamp == original.completed["toolchain"].timestamp
        assert loaded.last_failure == "boom"

    def test_save_refreshes_backup(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        store.save(_state("a", "b"))
        assert store.backup_path.read_bytes() == store.path.read_bytes()

    def test_no_temp_files_left_behind(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        leftovers = [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_reset_removes_both_files(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        store.reset()
        assert not store.path.exists()
        assert not store.backup_path.exists()
        assert store.load().is_empty


class TestCorruptionRecovery:
    def _corrupt_body(self, path: Path) -> None:
        header, _, body = path.read_bytes().partition(b"\n")
        path.write_bytes(header + b"\n" + body + b"step.injected=oops\n")

    def test_corrupt_primary_falls_back_to_backup(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("toolchain", "onboarding"))
        self._corrupt_body(store.path)

        loaded = store.load()
        assert set(loaded.completed) == {"toolchain", "onboarding"}
        assert not store.path.exists()  # corrupt primary discarded

    def test_backup_contents_are_used_exactly(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a", failure="old failure"))
        backup_bytes = store.backup_path.read_bytes()
        self._corrupt_body(store.path)

        loaded = store.load()
        assert loaded == decode_state_file(backup_bytes)

    def test_corrupt_primary_without_backup_is_empty(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        store.backup_path.unlink()
        self._corrupt_body(store.path)

        assert store.load().is_empty

    def test_corrupt_backup_is_not_chained(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        self._corrupt_body(store.path)
        self._corrupt_body(store.backup_path)

        assert store.load().is_empty

    def test_missing_primary_with_backup_recovers(self, tmp_path: Path):
        store = StateStore(tmp_path / "setup.state")
        store.save(_state("a"))
        store.path.unlink()

        assert store.load().is_done("a")
