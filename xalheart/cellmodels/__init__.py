from .cellmodel import CellModel

from .gray_pathmanathan import GrayPathmanathan2016


SUPPORTED_CELL_MODELS = [
    GrayPathmanathan2016,
]

__all__ = [
    "CellModel",
    "GrayPathmanathan2016",
]
