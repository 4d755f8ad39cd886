""" The xalheart Python module is a bidomain and EMI operator splitting solver for S1-S2 stimulation of cardiac tissue."""

from xalheart.cellmodels import (
    CellModel,
    GrayPathmanathan2016,
)

from xalheart.cellsolver import (
    CellSolver,
    SingleCellSolver,
)

from xalheart.stimulus import (
    StimulusKind,
    StimulusProtocol,
)

from xalheart.mesh import (
    Box,
    BoxMesh,
    EMIGeometry,
)

from xalheart.tissue import (
    BidomainOperator,
    EMIOperator,
)

# Solver imports
from xalheart.splittingsolver import (
    SplittingSolver,
    StepPhase,
)

from xalheart.checkpoint import (
    CheckpointManager,
    CheckpointRecord,
)

from xalheart.output import (
    FieldWriter,
    PointSampler,
)

from xalheart.parameters import (
    StimulusSpec,
    ProtocolParameters,
    CellSolverParameters,
    BidomainParameters,
    EMIParameters,
    KrylovParameters,
    SplittingParameters,
    OutputParameters,
    SweepParameters,
    GeometryParameters,
    RunContext,
)

from xalheart.config import (
    SimulationConfig,
    config_from_mapping,
    load_config,
)

from xalheart.sweep import (
    MagnitudeSweep,
    SweepResult,
)

from xalheart.exceptions import (
    XalheartError,
    ConfigurationError,
    DivergenceError,
    AssemblyError,
    SolverError,
    CheckpointError,
)

# Various utility functions, mainly for internal use
import xalheart.utils
