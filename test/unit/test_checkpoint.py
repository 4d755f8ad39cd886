"""Unit tests for writing and reading checkpoints."""

__all__ = ["TestCheckpointManager"]


import logging
import types

import numpy as np
import pytest

from testutils import fast

from xalheart.checkpoint import CheckpointManager
from xalheart.exceptions import CheckpointError
from xalheart.parameters import RunContext
from xalheart.utils import SimulationClock


class TestCheckpointManager:

    def setup_method(self):
        self.context = RunContext(121.0, 150.0)
        self.fields = {
            "V": -83.0 + 100.0*np.random.rand(7),
            "W": np.zeros(0),
            "m_gate": np.random.rand(7),
            "h_gate": np.random.rand(7),
        }

    @fast
    def test_round_trip_is_exact(self, tmp_path):
        manager = CheckpointManager(tmp_path / "checkpoints")
        assert not manager.exists()
        manager.save(0.1*3, self.context, self.fields)
        assert manager.exists()

        record = manager.load(list(self.fields), sizes={"V": 7, "W": 0})
        assert record.time == 0.1*3
        assert record.context == self.context
        for name, values in self.fields.items():
            assert np.array_equal(record.fields[name], values), name

    @fast
    def test_overwrite_leaves_no_temporary_files(self, tmp_path):
        manager = CheckpointManager(tmp_path / "checkpoints")
        manager.save(1.0, self.context, self.fields)
        self.fields["V"][:] = 0.0
        manager.save(2.0, self.context, self.fields)

        record = manager.load(["V"])
        assert record.time == 2.0
        assert np.all(record.fields["V"] == 0.0)
        assert [path.name for path in tmp_path.iterdir()] == ["checkpoints"]
        names = sorted(path.name for path in (tmp_path / "checkpoints").iterdir())
        assert names == ["V.txt", "W.txt", "checkpoint.txt", "h_gate.txt", "m_gate.txt"]

    @fast
    def test_swept_S1_magnitude(self, tmp_path):
        manager = CheckpointManager(tmp_path / "checkpoints")
        context = RunContext(121.0, 150.0, S1_magnitude=80.0)
        manager.save(1.0, context, self.fields)
        record = manager.load(["V"])
        assert record.S1_magnitude == 80.0
        assert record.context == context

        manager.save(2.0, self.context, self.fields)
        assert manager.load(["V"]).S1_magnitude is None

    @fast
    def test_previous_checkpoint_is_read_during_swap(self, tmp_path):
        directory = tmp_path / "checkpoints"
        manager = CheckpointManager(directory)
        manager.save(1.0, self.context, self.fields)

        # Interrupted between moving the old checkpoint aside and moving the new one in
        directory.rename(tmp_path / "checkpoints.previous")
        assert manager.exists()
        assert manager.load(["V"]).time == 1.0

        manager.save(2.0, self.context, self.fields)
        assert manager.load(["V"]).time == 2.0
        assert not (tmp_path / "checkpoints.previous").exists()

    @fast
    def test_missing_checkpoint(self, tmp_path):
        with pytest.raises(CheckpointError):
            CheckpointManager(tmp_path / "checkpoints").load(["V"])

    @fast
    def test_bad_header(self, tmp_path):
        manager = CheckpointManager(tmp_path / "checkpoints")
        manager.save(1.0, self.context, self.fields)
        header = tmp_path / "checkpoints" / "checkpoint.txt"
        header.write_text("1.0\n121.0\n")
        with pytest.raises(CheckpointError):
            manager.load(["V"])

        header.write_text("1.0\nabc\n150.0\n")
        with pytest.raises(CheckpointError):
            manager.load(["V"])

    @fast
    def test_size_mismatch(self, tmp_path):
        manager = CheckpointManager(tmp_path / "checkpoints")
        manager.save(1.0, self.context, self.fields)
        with pytest.raises(CheckpointError):
            manager.load(["V", "h_gate"], sizes={"h_gate": 8})

    @fast
    def test_failed_periodic_write_is_skipped(self, tmp_path, caplog):
        # A regular file where the parent directory should be
        blocker = tmp_path / "output"
        blocker.write_text("")
        manager = CheckpointManager(blocker / "checkpoints")

        with pytest.raises(CheckpointError):
            manager.save(1.0, self.context, self.fields)

        solver = types.SimpleNamespace(
            clock=SimulationClock(0.0, 1.0, 0.1, step_count=4),
            context=self.context,
            checkpoint_fields=lambda: self.fields,
        )
        with caplog.at_level(logging.WARNING, logger="xalheart.checkpoint"):
            manager(solver)
        assert "Skipping checkpoint at step 4" in caplog.text

    @fast
    def test_failed_write_keeps_previous_checkpoint(self, tmp_path, caplog, monkeypatch):
        manager = CheckpointManager(tmp_path / "checkpoints")
        old = {name: np.ones_like(values) for name, values in self.fields.items()}
        manager.save(1.0, self.context, old)

        write = manager._write
        calls = []

        def fail_second_write(directory, name, values):
            calls.append(name)
            if len(calls) == 2:
                raise OSError("No space left on device")
            write(directory, name, values)

        monkeypatch.setattr(manager, "_write", fail_second_write)
        solver = types.SimpleNamespace(
            clock=SimulationClock(0.0, 3.0, 0.1, step_count=20),
            context=self.context,
            checkpoint_fields=lambda: {name: np.full_like(values, 2.0) for name, values in old.items()},
        )
        with caplog.at_level(logging.WARNING, logger="xalheart.checkpoint"):
            manager(solver)
        assert "Skipping checkpoint at step 20" in caplog.text

        record = manager.load(list(old), sizes={"V": 7})
        assert record.time == 1.0
        for name, values in old.items():
            assert np.array_equal(record.fields[name], values), name
        assert [path.name for path in tmp_path.iterdir()] == ["checkpoints"]
