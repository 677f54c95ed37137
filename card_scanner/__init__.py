"""Card scanner core: boundary detection and perspective rectification for business cards."""

from .detector import CandidateScorer, EdgeDetector, EdgeLine, compute_gradient_field
from .exceptions import DecodeFailure, ScannerError, SolverSingularity
from .models import CropRegion, DetectionCandidate, Point, Quadrilateral, RasterImage
from .transformer import (
    ImageResampler,
    PerspectiveMatrix,
    PerspectiveSolver,
    PerspectiveTransformer,
    RectifyResult,
    RectifyStrategy,
)

__all__ = [
    "CandidateScorer",
    "CropRegion",
    "DecodeFailure",
    "DetectionCandidate",
    "EdgeDetector",
    "EdgeLine",
    "ImageResampler",
    "PerspectiveMatrix",
    "PerspectiveSolver",
    "PerspectiveTransformer",
    "Point",
    "Quadrilateral",
    "RasterImage",
    "RectifyResult",
    "RectifyStrategy",
    "ScannerError",
    "SolverSingularity",
    "compute_gradient_field",
]
