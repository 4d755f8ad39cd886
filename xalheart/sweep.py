"""This module contains the driver of S1-S2 parameter sweeps.

For every S2 magnitude (and optionally every S1-S2 interval and S1
magnitude) of the sweep, a complete simulation is set up from scratch:
tissue operator, cell solver, splitting solver, observers and output
directory. The runs share nothing, so a run that fails numerically does not affect the
others.

*Example of usage*::

  config = load_config("s1s2.json")
  for result in MagnitudeSweep(config).run():
      print(result.context, result.status)
"""

__all__ = [
    "MagnitudeSweep",
    "RunStatus",
    "SweepResult",
    "build_domain",
    "run_directory",
]

import enum

import numpy as np

from pathlib import Path

from typing import (
    Callable,
    List,
    NamedTuple,
    Optional,
    Union,
)

from xalheart.cellmodels import (
    CellModel,
    GrayPathmanathan2016,
)
from xalheart.cellsolver import CellSolver
from xalheart.checkpoint import (
    CheckpointManager,
    CheckpointRecord,
)
from xalheart.config import SimulationConfig
from xalheart.exceptions import (
    AssemblyError,
    DivergenceError,
    SolverError,
)
from xalheart.mesh import (
    Box,
    BoxMesh,
    EMIGeometry,
)
from xalheart.output import (
    FieldWriter,
    PointSampler,
)
from xalheart.parameters import RunContext
from xalheart.splittingsolver import SplittingSolver
from xalheart.stimulus import StimulusProtocol
from xalheart.tissue import assemble
from xalheart.utils import sweep_values

import logging
import os


logging.basicConfig(level=os.environ.get("LOGLEVEL", "INFO"))
logger = logging.getLogger(__name__)


class RunStatus(enum.Enum):
    COMPLETED = "completed"
    DIVERGED = "diverged"
    SOLVER_FAILURE = "solver failure"
    ASSEMBLY_FAILURE = "assembly failure"


class SweepResult(NamedTuple):
    """Outcome of one value of a sweep."""
    context: RunContext
    status: RunStatus
    final_time: float
    num_steps: int
    error: Optional[str] = None


def run_directory(outputdir: Union[str, Path], context: RunContext) -> Path:
    """Return the output directory of the run with `context`."""
    name = "S2_{:g}_interval_{:g}".format(context.S2_magnitude, context.S1S2_interval)
    if context.S1_magnitude is not None:
        name = "S1_{:g}_{}".format(context.S1_magnitude, name)
    return Path(outputdir) / name


def build_domain(config: SimulationConfig) -> Union[BoxMesh, EMIGeometry]:
    """Create the voxel grid of the bidomain model, or the myocyte lattice of the EMI model."""
    geometry = config.geometry
    if config.splitting.pde_solver == "bidomain":
        return BoxMesh.from_size(geometry.domain_size(), geometry.meshsize)

    cx, cy, cz = geometry.emi_cell_shape
    spacing = (geometry.cell_length/cx, geometry.cell_diameter/cy, geometry.cell_diameter/cz)
    return EMIGeometry(geometry.num_cells, geometry.emi_cell_shape, spacing)


class MagnitudeSweep:
    """Run one simulation per S2 magnitude and S1-S2 interval.

    *Arguments*
      config (:py:class:`~xalheart.config.SimulationConfig`)
      cell_model_factory (callable, optional)
        creates the cell model of a run, defaults to
        :py:class:`~xalheart.cellmodels.GrayPathmanathan2016`
    """

    def __init__(
        self,
        config: SimulationConfig,
        cell_model_factory: Callable[[], CellModel] = GrayPathmanathan2016
    ) -> None:
        self._config = config
        self._cell_model_factory = cell_model_factory
        self._restart = config.output.restart

    @property
    def config(self) -> SimulationConfig:
        return self._config

    def checkpoint_manager(self) -> CheckpointManager:
        output = self._config.output
        directory = output.checkpointsdir or Path(output.outputdir) / "checkpoints"
        return CheckpointManager(directory)

    def contexts(self) -> List[RunContext]:
        """Return the contexts of all runs.

        Intervals vary in the outer loop, then S1 magnitudes, then S2
        magnitudes.
        """
        sweep = self._config.sweep
        if sweep.min_S1S2_interval is None:
            intervals = [self._config.protocol.S1S2_interval]
        else:
            intervals = sweep_values(
                sweep.min_S1S2_interval,
                sweep.max_S1S2_interval,
                sweep.S1S2_interval_increment
            )
        if sweep.min_S1 is None:
            S1_magnitudes = [None]
        else:
            S1_magnitudes = sweep_values(sweep.min_S1, sweep.max_S1, sweep.S1_increment)
        magnitudes = sweep_values(sweep.min_S2, sweep.max_S2, sweep.S2_increment)

        contexts = []
        for interval in intervals:
            for S1_magnitude in S1_magnitudes:
                for magnitude in magnitudes:
                    context = RunContext(magnitude, interval, S1_magnitude=S1_magnitude)
                    outputdir = run_directory(self._config.output.outputdir, context)
                    contexts.append(context._replace(outputdir=str(outputdir)))
        return contexts

    def setup(self, context: RunContext, resumed: bool = False) -> SplittingSolver:
        """Create the splitting solver and the observers of the run with `context`."""
        config = self._config
        domain = build_domain(config)
        operator = assemble(domain, config.tissue_parameters(), config.splitting.dt, config.krylov)
        coordinates = operator.transmembrane_coordinates()

        electrode = Box.from_corner(*config.geometry.electrode())
        in_electrode = electrode.contains(coordinates)
        if config.geometry.excitable_corner is not None:
            excitable_size = config.geometry.excitable_size or config.geometry.domain_size()
            excitable = Box.from_corner(config.geometry.excitable_corner, excitable_size).contains(coordinates)
        else:
            excitable = np.ones(operator.num_dofs, dtype=bool)
        logger.info(
            "%d of %d nodes in the electrode %s",
            np.count_nonzero(in_electrode),
            operator.num_dofs,
            electrode
        )

        protocol = StimulusProtocol.from_parameters(
            config.protocol,
            S2_magnitude=context.S2_magnitude,
            S1S2_interval=context.S1S2_interval,
            S1_magnitude=context.S1_magnitude
        )
        applied_region = None
        if config.protocol.electrode_type == "NeumannBC":
            # Stimulus enters through the extracellular space, not the cell model
            applied_region = in_electrode
            in_electrode = np.zeros_like(in_electrode)
        cell_solver = CellSolver(
            self._cell_model_factory(),
            operator.num_dofs,
            protocol,
            excitable=excitable,
            in_electrode=in_electrode,
            parameters=config.cell_solver
        )
        solver = SplittingSolver(operator, cell_solver, config.splitting, context, applied_region)

        output = config.output
        rundir = Path(context.outputdir or run_directory(output.outputdir, context))
        if len(output.sample_points) > 0:
            sampler = PointSampler(rundir / "samples.txt", output.sample_points, coordinates, append=resumed)
            solver.add_observer(sampler, output.sample_steps, at_end=True)

        plotdir = Path(output.plotdir) / rundir.name if output.plotdir else rundir / "fields"
        solver.add_observer(FieldWriter(plotdir, coordinates), output.plot_steps)
        solver.add_observer(self.checkpoint_manager(), output.checkpoint_steps)
        return solver

    def _resume(self, context: RunContext) -> SplittingSolver:
        """Set up the run from the checkpoint, with the S2 values stored there."""
        manager = self.checkpoint_manager()
        field_names = ["V"]
        if self._config.splitting.pde_solver == "emi":
            field_names.append("W")
        model = self._cell_model_factory()
        names = list(model.initial_conditions().keys())
        field_names += ["{}_gate".format(names[i]) for i in model.gating_indices]

        record: CheckpointRecord = manager.load(field_names)
        pinned = record.context
        pinned = pinned._replace(outputdir=str(run_directory(self._config.output.outputdir, pinned)))
        if pinned._replace(outputdir=None) != context._replace(outputdir=None):
            logger.info(
                "Checkpoint overrides S2 magnitude %g, interval %g and S1 magnitude %s with %g, %g and %s",
                context.S2_magnitude,
                context.S1S2_interval,
                context.S1_magnitude,
                pinned.S2_magnitude,
                pinned.S1S2_interval,
                pinned.S1_magnitude
            )

        solver = self.setup(pinned, resumed=True)
        solver.restore(record)
        return solver

    def run_one(self, context: RunContext, resume: bool = False) -> SweepResult:
        """Run the simulation of one sweep value.

        Numerical divergence, linear solver failure and assembly failure
        end this run only and are reported in the result.
        """
        logger.info(
            "Starting run with S2 magnitude %g and S1-S2 interval %g",
            context.S2_magnitude,
            context.S1S2_interval
        )
        try:
            solver = self._resume(context) if resume else self.setup(context)
        except AssemblyError as e:
            logger.error("Skipping S2 magnitude %g: %s", context.S2_magnitude, e)
            return SweepResult(context, RunStatus.ASSEMBLY_FAILURE, self._config.splitting.t0, 0, str(e))

        clock = solver.clock
        try:
            solver.run()
        except DivergenceError as e:
            logger.error("Aborting S2 magnitude %g: %s", solver.context.S2_magnitude, e)
            return SweepResult(solver.context, RunStatus.DIVERGED, clock.current_time, clock.step_count, str(e))
        except SolverError as e:
            logger.error("Aborting S2 magnitude %g: %s", solver.context.S2_magnitude, e)
            return SweepResult(
                solver.context, RunStatus.SOLVER_FAILURE, clock.current_time, clock.step_count, str(e)
            )

        logger.info("Finished run at t = %g after %d steps", clock.current_time, clock.step_count)
        return SweepResult(solver.context, RunStatus.COMPLETED, clock.current_time, clock.step_count)

    def run(self) -> List[SweepResult]:
        """Run every value of the sweep.

        A requested restart applies to the first run only.
        """
        results = []
        for context in self.contexts():
            resume = self._restart
            self._restart = False
            results.append(self.run_one(context, resume=resume))
        return results
