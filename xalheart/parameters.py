"""Collection of specifications for all the solvers."""
from typing import (
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Union,
)


class StimulusSpec(NamedTuple):
    """Timing and strength of one stimulus pulse train.

    Times are in ms, the magnitude in uA/uF.
    """
    start: float = 0.0
    period: float = 1000.0
    duration: float = 2.0
    magnitude: float = 120.0


class ProtocolParameters(NamedTuple):
    """Parameters for the S1-S2 stimulus protocol."""
    S1: StimulusSpec = StimulusSpec()
    S2_duration: float = 2.0
    S2_period: float = 1000.0
    S2_magnitude: float = 120.0
    S1S2_interval: float = 150.0
    electrode_type: str = "CellModel"   # or "NeumannBC"


class CellSolverParameters(NamedTuple):
    """Parameters for CellSolver."""
    scheme: str = "ForwardEuler"        # or "RushLarsen"
    num_substeps: int = 100


class BidomainParameters(NamedTuple):
    """Parameters for the bidomain operator."""
    intracellular_conductivity: Tuple[float, float, float] = (0.2525, 0.0222, 0.0222)
    extracellular_conductivity: Tuple[float, float, float] = (0.821, 0.215, 0.215)
    membrane_capacitance: float = 0.01
    surface_to_volume_ratio: float = 150.0
    linear_solver_type: str = "direct"


class EMIParameters(NamedTuple):
    """Parameters for the EMI operator."""
    intracellular_conductivity: float = 0.5
    extracellular_conductivity: float = 2.0

    # Scalar, or one value per facet orientation (+x, -x, +y, -y, +z, -z)
    membrane_capacitance: Union[float, Sequence[float]] = 0.01
    gap_capacitance: float = 0.01
    gap_resistance: float = 0.15
    linear_solver_type: str = "direct"


class KrylovParameters(NamedTuple):
    """Parameters for Krylov solver."""
    relative_tolerance: float = 1e-10
    absolute_tolerance: float = 1e-14
    maximum_iterations: int = 1000
    restart: int = 50
    drop_tolerance: float = 1e-6
    fill_factor: float = 20.0


class SplittingParameters(NamedTuple):
    """Parameters for SplittingSolver."""
    pde_solver: str = "bidomain"        # or "emi"
    t0: float = 0.0
    T: float = 180.0
    dt: float = 0.1


class OutputParameters(NamedTuple):
    """Cadences and destinations for the snapshot observers."""
    outputdir: str = "."
    checkpointsdir: Optional[str] = None    # defaults to <outputdir>/checkpoints
    plotdir: Optional[str] = None           # defaults to the run directory
    sample_points: Sequence[Tuple[float, float, float]] = ()
    sample_steps: int = 10
    plot_steps: int = 10
    checkpoint_steps: int = 1000
    restart: bool = False


class SweepParameters(NamedTuple):
    """Bounds of the outer parameter scan."""
    min_S2: float = 120.0
    max_S2: float = 126.0
    S2_increment: float = 1.0
    min_S1S2_interval: Optional[float] = None
    max_S1S2_interval: Optional[float] = None
    S1S2_interval_increment: float = 1.0
    min_S1: Optional[float] = None
    max_S1: Optional[float] = None
    S1_increment: float = 1.0


class GeometryParameters(NamedTuple):
    """Dimensions (mm) of the myocyte lattice and of the stimulating electrode."""
    cell_length: float = 0.155
    cell_diameter: float = 0.02
    gap_length: float = 0.005
    num_cells: Tuple[int, int, int] = (25, 25, 1)

    # Bidomain voxel size
    meshsize: float = 0.025

    # EMI voxels per myocyte
    emi_cell_shape: Tuple[int, int, int] = (8, 2, 2)

    # Electrode box, defaults to a 0.5 x 0.1 mm box at a third of the domain
    electrode_corner: Optional[Tuple[float, float, float]] = None
    electrode_size: Optional[Tuple[float, float, float]] = None

    # Excitable region, defaults to the whole domain
    excitable_corner: Optional[Tuple[float, float, float]] = None
    excitable_size: Optional[Tuple[float, float, float]] = None

    def domain_size(self) -> Tuple[float, float, float]:
        ncx, ncy, ncz = self.num_cells
        return (
            (self.cell_length + self.gap_length)*ncx,
            (self.cell_diameter + self.gap_length)*ncy,
            (self.cell_diameter + self.gap_length)*ncz,
        )

    def electrode(self) -> Tuple[Tuple[float, float, float], Tuple[float, float, float]]:
        """Return corner and size of the electrode, with defaults filled in."""
        length, width, height = self.domain_size()
        corner = self.electrode_corner or (length/3, width/3, 0.0)
        size = self.electrode_size or (0.5, 0.1, height)
        return tuple(corner), tuple(size)


class RunContext(NamedTuple):
    """The values of one run of a parameter sweep."""
    S2_magnitude: float
    S1S2_interval: float
    outputdir: Optional[str] = None
    S1_magnitude: Optional[float] = None   # None keeps the protocol S1 magnitude
