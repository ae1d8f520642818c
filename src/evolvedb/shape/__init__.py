"""Shape comparison: decide whether two type definitions serialise identically."""

from evolvedb.shape.comparator import ShapeComparator, ShapeComparison, ShapeVerdict
from evolvedb.shape.oracle import (
    CommandShapeOracle,
    ShapeOracle,
    StructuralShapeOracle,
)

__all__ = [
    "CommandShapeOracle",
    "ShapeComparator",
    "ShapeComparison",
    "ShapeOracle",
    "ShapeVerdict",
    "StructuralShapeOracle",
]
