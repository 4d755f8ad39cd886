"""Configuration of a complete simulation.

A :py:class:`SimulationConfig` collects the parameter records of every
component. It is usually created from a flat mapping of option names,
for instance read from a JSON file with :py:func:`load_config`::

  {
      "model": "EMI",
      "S1Magnitude": 120.0,
      "MinS2": 120.0,
      "MaxS2": 126.0,
      "S2Increment": 1.0,
      "timestepsize": 0.1,
      "RushLarsen": 1,
      "samplex": [1.5, 2.0],
      "sampley": [0.3, 0.3],
      "samplez": [0.01, 0.01]
  }

Malformed options raise :py:class:`~xalheart.exceptions.ConfigurationError`.
"""

__all__ = [
    "SimulationConfig",
    "config_from_mapping",
    "load_config",
]

import json

from pathlib import Path

from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    NamedTuple,
    Union,
)

from xalheart.exceptions import ConfigurationError
from xalheart.stimulus import StimulusProtocol
from xalheart.utils import sweep_values
from xalheart.parameters import (
    BidomainParameters,
    CellSolverParameters,
    EMIParameters,
    GeometryParameters,
    KrylovParameters,
    OutputParameters,
    ProtocolParameters,
    SplittingParameters,
    StimulusSpec,
    SweepParameters,
)

import logging


logger = logging.getLogger(__name__)


class SimulationConfig(NamedTuple):
    """Parameters of every component of a simulation."""
    geometry: GeometryParameters = GeometryParameters()
    protocol: ProtocolParameters = ProtocolParameters()
    cell_solver: CellSolverParameters = CellSolverParameters()
    bidomain: BidomainParameters = BidomainParameters()
    emi: EMIParameters = EMIParameters()
    krylov: KrylovParameters = KrylovParameters()
    splitting: SplittingParameters = SplittingParameters()
    output: OutputParameters = OutputParameters()
    sweep: SweepParameters = SweepParameters()

    def tissue_parameters(self) -> Union[BidomainParameters, EMIParameters]:
        """Return the parameters of the selected tissue model."""
        if self.splitting.pde_solver == "bidomain":
            return self.bidomain
        return self.emi


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        if value.lower() in ("1", "true", "yes"):
            return True
        if value.lower() in ("0", "false", "no"):
            return False
        raise ValueError("not a flag: {!r}".format(value))
    return bool(int(value))


def _model(value: str) -> str:
    name = str(value).lower()
    if name not in ("bidomain", "emi"):
        raise ValueError("unknown model {!r}, expected 'Bidomain' or 'EMI'".format(value))
    return name


def _optional_str(value: Any) -> str:
    return None if value is None else str(value)


def _capacitance(value: Any) -> Union[float, tuple]:
    if isinstance(value, (list, tuple)):
        return tuple(float(v) for v in value)
    return float(value)


def _int_triple(value: Any) -> tuple:
    if len(value) != 3:
        raise ValueError("expected three values, got {!r}".format(value))
    return tuple(int(v) for v in value)


# option -> (section, field, converter)
_OPTIONS: Dict[str, tuple] = {
    "celllength": ("geometry", "cell_length", float),
    "celldiameter": ("geometry", "cell_diameter", float),
    "gaplength": ("geometry", "gap_length", float),
    "meshsize": ("geometry", "meshsize", float),
    "emicellshape": ("geometry", "emi_cell_shape", _int_triple),
    "sigmai": ("emi", "intracellular_conductivity", float),
    "sigmae": ("emi", "extracellular_conductivity", float),
    "gapcapacitance": ("emi", "gap_capacitance", float),
    "gapresistance": ("emi", "gap_resistance", float),
    "chi": ("bidomain", "surface_to_volume_ratio", float),
    "ti": ("splitting", "t0", float),
    "tf": ("splitting", "T", float),
    "timestepsize": ("splitting", "dt", float),
    "model": ("splitting", "pde_solver", _model),
    "timesubsteps": ("cell_solver", "num_substeps", int),
    "S1Start": ("S1", "start", float),
    "S1Duration": ("S1", "duration", float),
    "S1Period": ("S1", "period", float),
    "S1Magnitude": ("S1", "magnitude", float),
    "S2Duration": ("protocol", "S2_duration", float),
    "S2Period": ("protocol", "S2_period", float),
    "S2Magnitude": ("protocol", "S2_magnitude", float),
    "S1S2Interval": ("protocol", "S1S2_interval", float),
    "MinS2": ("sweep", "min_S2", float),
    "MaxS2": ("sweep", "max_S2", float),
    "S2Increment": ("sweep", "S2_increment", float),
    "MinS1S2Interval": ("sweep", "min_S1S2_interval", float),
    "MaxS1S2Interval": ("sweep", "max_S1S2_interval", float),
    "S1S2IntervalIncrement": ("sweep", "S1S2_interval_increment", float),
    "MinS1": ("sweep", "min_S1", float),
    "MaxS1": ("sweep", "max_S1", float),
    "S1Increment": ("sweep", "S1_increment", float),
    "PlotSteps": ("output", "plot_steps", int),
    "SampleSteps": ("output", "sample_steps", int),
    "CheckPointSteps": ("output", "checkpoint_steps", int),
    "Restart": ("output", "restart", _flag),
    "outputdir": ("output", "outputdir", str),
    "checkpointsdir": ("output", "checkpointsdir", _optional_str),
    "vtudir": ("output", "plotdir", _optional_str),
    "reltol": ("krylov", "relative_tolerance", float),
    "abstol": ("krylov", "absolute_tolerance", float),
    "maxiter": ("krylov", "maximum_iterations", int),
}

# option -> (section, field, axis)
_AXIS_OPTIONS: Dict[str, tuple] = {
    "ncellsx": ("geometry", "num_cells", 0),
    "ncellsy": ("geometry", "num_cells", 1),
    "ncellsz": ("geometry", "num_cells", 2),
    "sigmaix": ("bidomain", "intracellular_conductivity", 0),
    "sigmaiy": ("bidomain", "intracellular_conductivity", 1),
    "sigmaiz": ("bidomain", "intracellular_conductivity", 2),
    "sigmaex": ("bidomain", "extracellular_conductivity", 0),
    "sigmaey": ("bidomain", "extracellular_conductivity", 1),
    "sigmaez": ("bidomain", "extracellular_conductivity", 2),
    "e1xmin": ("geometry", "electrode_corner", 0),
    "e1ymin": ("geometry", "electrode_corner", 1),
    "e1zmin": ("geometry", "electrode_corner", 2),
    "e1length": ("geometry", "electrode_size", 0),
    "e1width": ("geometry", "electrode_size", 1),
    "e1height": ("geometry", "electrode_size", 2),
}

# Stimulus through the cell model, or as a current into the extracellular space
_ELECTRODE_TYPES = ("CellModel", "NeumannBC", "DirichletBC")

# Accepted for compatibility with existing run scripts, but without effect
_IGNORED_OPTIONS = ("gapdiameter", "ncycles", "meshfile", "S2Start")


def _convert(key: str, converter: Callable, value: Any) -> Any:
    try:
        return converter(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError("Invalid value {!r} for option {}: {}".format(value, key, e)) from e


def config_from_mapping(options: Mapping[str, Any]) -> SimulationConfig:
    """Create a :py:class:`SimulationConfig` from a flat mapping of options.

    Options not given keep their default value.
    """
    sections = {name: dict(record._asdict()) for name, record in SimulationConfig()._asdict().items()}
    S1 = dict(StimulusSpec()._asdict())
    axis_values: Dict[tuple, Dict[int, float]] = {}
    sample = {}

    for key, value in options.items():
        if key in _OPTIONS:
            section, field, converter = _OPTIONS[key]
            target = S1 if section == "S1" else sections[section]
            target[field] = _convert(key, converter, value)
        elif key in _AXIS_OPTIONS:
            section, field, axis = _AXIS_OPTIONS[key]
            converter = int if key.startswith("ncells") else float
            axis_values.setdefault((section, field), {})[axis] = _convert(key, converter, value)
        elif key in ("membranecapacitance", "capacitance"):
            capacitance = _convert(key, _capacitance, value)
            sections["emi"]["membrane_capacitance"] = capacitance
            if not isinstance(capacitance, tuple):
                sections["bidomain"]["membrane_capacitance"] = capacitance
        elif key in ("ForwardEuler", "RushLarsen"):
            if _convert(key, _flag, value):
                sections["cell_solver"]["scheme"] = key
        elif key in _ELECTRODE_TYPES:
            if _convert(key, _flag, value):
                sections["protocol"]["electrode_type"] = key
        elif key in ("linearsolver", "linearsolvertype"):
            solver_type = str(value).lower()
            sections["bidomain"]["linear_solver_type"] = solver_type
            sections["emi"]["linear_solver_type"] = solver_type
        elif key in ("samplex", "sampley", "samplez"):
            sample[key] = _convert(key, lambda v: [float(x) for x in v], value)
        elif key in _IGNORED_OPTIONS:
            logger.warning("Ignoring option %s", key)
        else:
            raise ConfigurationError("Unknown option {}".format(key))

    sections["protocol"]["S1"] = StimulusSpec(**S1)

    # Per-axis options complete the defaults of their tuple. The electrode
    # defaults depend on the domain size, so they come last.
    electrode_fields = ("electrode_corner", "electrode_size")
    ordered = sorted(axis_values.items(), key=lambda item: item[0][1] in electrode_fields)
    for (section, field), values in ordered:
        current = sections[section][field]
        if current is None:
            geometry = GeometryParameters(**sections["geometry"])
            current = dict(zip(electrode_fields, geometry.electrode()))[field]
        current = list(current)
        for axis, value in values.items():
            current[axis] = value
        sections[section][field] = tuple(current)

    if sample:
        if set(sample) != {"samplex", "sampley", "samplez"}:
            raise ConfigurationError("Sample points need all of samplex, sampley and samplez")
        lengths = {len(values) for values in sample.values()}
        if len(lengths) != 1:
            msg = "samplex, sampley and samplez differ in length: {}, {}, {}"
            raise ConfigurationError(msg.format(*(len(sample[k]) for k in ("samplex", "sampley", "samplez"))))
        sections["output"]["sample_points"] = tuple(
            zip(sample["samplex"], sample["sampley"], sample["samplez"])
        )

    config = SimulationConfig(**{
        name: type(record)(**sections[name]) for name, record in SimulationConfig()._asdict().items()
    })
    _validate(config)
    return config


def _validate(config: SimulationConfig) -> None:
    splitting = config.splitting
    if not splitting.dt > 0:
        raise ConfigurationError("timestepsize must be positive, got {}".format(splitting.dt))
    if splitting.T < splitting.t0:
        raise ConfigurationError("tf {} is before ti {}".format(splitting.T, splitting.t0))
    if config.cell_solver.num_substeps < 1:
        raise ConfigurationError("timesubsteps must be positive, got {}".format(config.cell_solver.num_substeps))
    if config.cell_solver.scheme not in ("ForwardEuler", "RushLarsen"):
        raise ConfigurationError("Unknown cell model scheme {}".format(config.cell_solver.scheme))
    for name in ("sample_steps", "plot_steps", "checkpoint_steps"):
        if getattr(config.output, name) < 1:
            raise ConfigurationError("{} must be positive, got {}".format(name, getattr(config.output, name)))
    if config.tissue_parameters().linear_solver_type not in ("direct", "iterative"):
        msg = "Unknown linear solver {}, expected 'direct' or 'iterative'"
        raise ConfigurationError(msg.format(config.tissue_parameters().linear_solver_type))

    sweep = config.sweep
    if not sweep.S2_increment > 0 or sweep.max_S2 < sweep.min_S2:
        msg = "Invalid S2 sweep: min {}, max {}, increment {}"
        raise ConfigurationError(msg.format(sweep.min_S2, sweep.max_S2, sweep.S2_increment))
    bounds = (sweep.min_S1S2_interval, sweep.max_S1S2_interval)
    if (bounds[0] is None) != (bounds[1] is None):
        raise ConfigurationError("Both MinS1S2Interval and MaxS1S2Interval are needed for an interval sweep")
    if bounds[0] is not None and (
        not sweep.S1S2_interval_increment > 0 or bounds[1] < bounds[0]
    ):
        msg = "Invalid S1-S2 interval sweep: min {}, max {}, increment {}"
        raise ConfigurationError(msg.format(bounds[0], bounds[1], sweep.S1S2_interval_increment))
    if (sweep.min_S1 is None) != (sweep.max_S1 is None):
        raise ConfigurationError("Both MinS1 and MaxS1 are needed for an S1 sweep")
    if sweep.min_S1 is not None and (not sweep.S1_increment > 0 or sweep.max_S1 < sweep.min_S1):
        msg = "Invalid S1 sweep: min {}, max {}, increment {}"
        raise ConfigurationError(msg.format(sweep.min_S1, sweep.max_S1, sweep.S1_increment))

    electrode_type = config.protocol.electrode_type
    if electrode_type == "DirichletBC":
        raise ConfigurationError("DirichletBC electrodes are not supported, use CellModel or NeumannBC")
    if electrode_type not in ("CellModel", "NeumannBC"):
        raise ConfigurationError("Unknown electrode type {}".format(electrode_type))
    if electrode_type == "NeumannBC" and splitting.pde_solver != "bidomain":
        raise ConfigurationError("NeumannBC electrodes need the bidomain model")

    # Every S2 train of the sweep must start within its period
    if bounds[0] is None:
        intervals = [config.protocol.S1S2_interval]
    else:
        intervals = sweep_values(bounds[0], bounds[1], sweep.S1S2_interval_increment)
    for interval in intervals:
        StimulusProtocol.from_parameters(config.protocol, S1S2_interval=interval)


def load_config(path: Union[str, Path]) -> SimulationConfig:
    """Read a JSON file of options, see :py:func:`config_from_mapping`."""
    try:
        with Path(path).open() as f:
            options = json.load(f)
    except OSError as e:
        raise ConfigurationError("Could not read configuration {}: {}".format(path, e)) from e
    except json.JSONDecodeError as e:
        raise ConfigurationError("Malformed configuration {}: {}".format(path, e)) from e

    if not isinstance(options, dict):
        raise ConfigurationError("Expected a mapping of options in {}".format(path))
    logger.info("Read configuration %s", path)
    return config_from_mapping(options)
