"""Checkpointing and restart of splitting solver runs.

A checkpoint is a directory of plain text files::

  checkpoint.txt   time, S2 magnitude and S1-S2 interval, one per line,
                   followed by the S1 magnitude when it is swept
  V.txt            transmembrane potential
  W.txt            gap-junction potential (EMI only)
  m_gate.txt       gating variables of the cell model
  h_gate.txt

Field files hold one value per line. Values are written with 17
significant digits, so that a restarted run continues from exactly the
same state.

A checkpoint is written as a whole into a temporary sibling directory,
which then replaces the previous checkpoint. While the directories are
swapped the previous checkpoint is kept in ``<directory>.previous``, so
at any time one complete checkpoint can be read.
"""

__all__ = ["CheckpointRecord", "CheckpointManager"]

import os
import shutil
import tempfile

import numpy as np

from pathlib import Path

from typing import (
    Dict,
    NamedTuple,
    Optional,
    Sequence,
    Union,
)

from xalheart.exceptions import CheckpointError
from xalheart.parameters import RunContext

import logging


logger = logging.getLogger(__name__)


class CheckpointRecord(NamedTuple):
    """Everything needed to resume a run."""
    time: float
    S2_magnitude: float
    S1S2_interval: float
    fields: Dict[str, np.ndarray]
    S1_magnitude: Optional[float] = None

    @property
    def context(self) -> RunContext:
        return RunContext(self.S2_magnitude, self.S1S2_interval, S1_magnitude=self.S1_magnitude)


class CheckpointManager:
    """Write and read checkpoints in `directory`.

    Registered as an observer of a
    :py:class:`~xalheart.splittingsolver.SplittingSolver`, a failing
    periodic write is logged and the run continues from the previous
    checkpoint.

    *Arguments*
      directory (str or :py:class:`pathlib.Path`)
      fmt (str, optional)
        printf style format of the values
    """

    header_name = "checkpoint.txt"

    def __init__(self, directory: Union[str, Path], fmt: str = "%.17g") -> None:
        self._directory = Path(directory)
        self._previous = self._directory.with_name(self._directory.name + ".previous")
        self._fmt = fmt

    @property
    def directory(self) -> Path:
        return self._directory

    def _complete(self) -> Optional[Path]:
        """Return the directory holding the latest complete checkpoint."""
        for directory in (self._directory, self._previous):
            if (directory / self.header_name).is_file():
                return directory
        return None

    def exists(self) -> bool:
        return self._complete() is not None

    def _write(self, directory: Path, name: str, values: np.ndarray) -> None:
        with (directory / name).open("w") as f:
            np.savetxt(f, np.asarray(values, dtype=float).ravel(), fmt=self._fmt)

    def _swap(self, staging: Path) -> None:
        """Replace the checkpoint directory by `staging`."""
        if self._previous.exists():
            shutil.rmtree(str(self._previous))
        if self._directory.exists():
            os.replace(str(self._directory), str(self._previous))
        os.replace(str(staging), str(self._directory))
        if self._previous.exists():
            shutil.rmtree(str(self._previous))

    def save(
        self,
        time: float,
        context: RunContext,
        fields: Dict[str, np.ndarray]
    ) -> CheckpointRecord:
        """Write a checkpoint of `fields` at `time`."""
        header = [time, context.S2_magnitude, context.S1S2_interval]
        if context.S1_magnitude is not None:
            header.append(context.S1_magnitude)

        staging = None
        try:
            self._directory.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(dir=str(self._directory.parent), prefix=".checkpoint-"))
            for name, values in fields.items():
                self._write(staging, "{}.txt".format(name), values)
            self._write(staging, self.header_name, np.array(header))
            self._swap(staging)
        except OSError as e:
            if staging is not None and staging.exists():
                shutil.rmtree(str(staging), ignore_errors=True)
            raise CheckpointError("Could not write checkpoint to {}: {}".format(self._directory, e)) from e

        logger.info("Wrote checkpoint at t = %g to %s", time, self._directory)
        return CheckpointRecord(
            time,
            context.S2_magnitude,
            context.S1S2_interval,
            {name: np.array(values, dtype=float) for name, values in fields.items()},
            context.S1_magnitude,
        )

    @staticmethod
    def _read(path: Path) -> np.ndarray:
        if path.stat().st_size == 0:
            return np.zeros(0)
        return np.loadtxt(str(path), dtype=float, ndmin=1)

    def load(
        self,
        field_names: Sequence[str],
        sizes: Dict[str, int] = None
    ) -> CheckpointRecord:
        """Read the checkpoint.

        *Arguments*
          field_names (sequence of str)
            the fields to read
          sizes (dict, optional)
            expected number of values per field
        """
        directory = self._complete()
        if directory is None:
            raise CheckpointError("No checkpoint in {}".format(self._directory))

        try:
            header = self._read(directory / self.header_name)
            fields = {name: self._read(directory / "{}.txt".format(name)) for name in field_names}
        except (OSError, ValueError) as e:
            raise CheckpointError("Could not read checkpoint from {}: {}".format(directory, e)) from e

        if header.size not in (3, 4):
            msg = "Expected 3 or 4 values in {}, got {}"
            raise CheckpointError(msg.format(directory / self.header_name, header.size))

        for name, size in (sizes or {}).items():
            if fields[name].size != size:
                msg = "Checkpoint field {} has {} values, expected {}"
                raise CheckpointError(msg.format(name, fields[name].size, size))

        time, S2_magnitude, S1S2_interval = (float(value) for value in header[:3])
        S1_magnitude = float(header[3]) if header.size == 4 else None
        logger.info("Read checkpoint at t = %g from %s", time, directory)
        return CheckpointRecord(time, S2_magnitude, S1S2_interval, fields, S1_magnitude)

    def __call__(self, solver: "SplittingSolver") -> None:
        """Write a checkpoint of the solver's current state, logging failures."""
        try:
            self.save(solver.clock.current_time, solver.context, solver.checkpoint_fields())
        except CheckpointError as e:
            logger.warning("Skipping checkpoint at step %d: %s", solver.clock.step_count, e)
