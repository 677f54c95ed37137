"""Perspective rectification of a card quadrilateral into an upright rectangle."""

import enum
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .constants import PIVOT_EPSILON
from .exceptions import SolverSingularity
from .models import Point, Quadrilateral, RasterImage

logger = logging.getLogger(__name__)


class RectifyStrategy(enum.Enum):
    """How destination pixels are mapped back into the source quadrilateral.

    HOMOGRAPHY solves the 8-unknown perspective system. EDGE_INTERPOLATION
    blends linearly along the quad's edges; it is exact for parallelograms
    but drifts from the true perspective mapping on strong keystone skew.
    """

    HOMOGRAPHY = "homography"
    EDGE_INTERPOLATION = "edge_interpolation"


@dataclass(frozen=True)
class PerspectiveMatrix:
    """Eight solved coefficients of a 3x3 perspective matrix; the ninth is 1."""

    coefficients: Tuple[float, ...]

    def as_matrix(self) -> np.ndarray:
        return np.append(np.asarray(self.coefficients, dtype=np.float64), 1.0).reshape(3, 3)

    def apply(self, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Map point arrays through the matrix."""
        a, b, c, d, e, f, g, h = self.coefficients
        denominator = g * xs + h * ys + 1.0
        return (a * xs + b * ys + c) / denominator, (d * xs + e * ys + f) / denominator

    def apply_point(self, point: Point) -> Point:
        x, y = self.apply(np.array([point.x]), np.array([point.y]))
        return Point(float(x[0]), float(y[0]))

    def inverse(self) -> "PerspectiveMatrix":
        matrix = self.as_matrix()
        try:
            inverse = np.linalg.inv(matrix)
        except np.linalg.LinAlgError as e:
            raise SolverSingularity(f"Perspective matrix is not invertible: {e}") from e
        if abs(inverse[2, 2]) < PIVOT_EPSILON:
            raise SolverSingularity("Inverse perspective matrix cannot be normalised")
        inverse = inverse / inverse[2, 2]
        return PerspectiveMatrix(tuple(float(v) for v in inverse.flatten()[:8]))


class PerspectiveSolver:
    """Solves the 4-point correspondence for a perspective matrix.

    The system fixes the ninth coefficient at 1 and uses raw pixel
    coordinates without normalisation, so configurations with extreme skew
    are only approximately corrected.
    """

    def __init__(self, epsilon: float = PIVOT_EPSILON):
        self.epsilon = epsilon

    def build_system(self, src: Sequence[Point], dst: Sequence[Point]) -> Tuple[np.ndarray, np.ndarray]:
        if len(src) != 4 or len(dst) != 4:
            raise ValueError("Perspective solve needs exactly 4 source and 4 destination points")
        a = np.zeros((8, 8), dtype=np.float64)
        b = np.zeros(8, dtype=np.float64)
        for i, (s, d) in enumerate(zip(src, dst)):
            a[2 * i] = [s.x, s.y, 1, 0, 0, 0, -d.x * s.x, -d.x * s.y]
            a[2 * i + 1] = [0, 0, 0, s.x, s.y, 1, -d.y * s.x, -d.y * s.y]
            b[2 * i] = d.x
            b[2 * i + 1] = d.y
        return a, b

    def solve_linear_system(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Gaussian elimination with partial pivoting, then back-substitution.

        Raises:
            SolverSingularity: If a pivot falls below the tolerance.
        """
        n = len(b)
        augmented = np.hstack([np.asarray(a, dtype=np.float64),
                               np.asarray(b, dtype=np.float64).reshape(n, 1)])
        tolerance = self.epsilon * max(1.0, float(np.abs(augmented[:, :n]).max(initial=0.0)))

        for col in range(n):
            pivot_row = col + int(np.argmax(np.abs(augmented[col:, col])))
            if abs(augmented[pivot_row, col]) < tolerance:
                raise SolverSingularity(
                    f"No usable pivot in column {col}; points are degenerate", column=col
                )
            if pivot_row != col:
                augmented[[col, pivot_row]] = augmented[[pivot_row, col]]

            for row in range(col + 1, n):
                factor = augmented[row, col] / augmented[col, col]
                if factor != 0.0:
                    augmented[row, col:] -= factor * augmented[col, col:]

        solution = np.zeros(n, dtype=np.float64)
        for row in range(n - 1, -1, -1):
            residual = augmented[row, n] - augmented[row, row + 1:n] @ solution[row + 1:]
            solution[row] = residual / augmented[row, row]
        return solution

    def solve(self, src: Sequence[Point], dst: Sequence[Point]) -> PerspectiveMatrix:
        a, b = self.build_system(src, dst)
        solution = self.solve_linear_system(a, b)
        return PerspectiveMatrix(tuple(float(v) for v in solution))


class ImageResampler:
    """Bilinear sampling of a raster at fractional source coordinates."""

    def sample(self, image: RasterImage, xs: np.ndarray, ys: np.ndarray) -> RasterImage:
        """Sample ``image`` at (xs, ys), producing a raster shaped like xs.

        Coordinates are clamped to the source bounds before interpolation.
        """
        src = image.pixels.astype(np.float64)
        max_x = image.width - 1
        max_y = image.height - 1

        xs = np.clip(np.nan_to_num(xs, nan=0.0), 0, max_x)
        ys = np.clip(np.nan_to_num(ys, nan=0.0), 0, max_y)

        x0 = np.floor(xs).astype(np.intp)
        y0 = np.floor(ys).astype(np.intp)
        x1 = np.minimum(x0 + 1, max_x)
        y1 = np.minimum(y0 + 1, max_y)
        fx = (xs - x0)[..., np.newaxis]
        fy = (ys - y0)[..., np.newaxis]

        top = src[y0, x0] * (1 - fx) + src[y0, x1] * fx
        bottom = src[y1, x0] * (1 - fx) + src[y1, x1] * fx
        blended = top * (1 - fy) + bottom * fy

        return RasterImage(np.clip(np.rint(blended), 0, 255).astype(np.uint8))


@dataclass(frozen=True)
class RectifyResult:
    image: RasterImage
    strategy: RectifyStrategy
    fell_back: bool = False


class PerspectiveTransformer:
    """Applies perspective correction to a skewed card quadrilateral.

    Given the 4 ordered corners of the card, this class produces an upright
    raster whose width is the longer of the top/bottom edges and whose
    height is the longer of the left/right edges.
    """

    def __init__(self, solver: PerspectiveSolver = None, resampler: ImageResampler = None):
        self.solver = solver or PerspectiveSolver()
        self.resampler = resampler or ImageResampler()

    @staticmethod
    def destination_corners(width: int, height: int) -> Tuple[Point, Point, Point, Point]:
        return (
            Point(0.0, 0.0),
            Point(float(width), 0.0),
            Point(float(width), float(height)),
            Point(0.0, float(height)),
        )

    def source_coordinates(
        self,
        quad: Quadrilateral,
        output_size: Tuple[int, int],
        strategy: RectifyStrategy = RectifyStrategy.HOMOGRAPHY,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Source positions for every destination pixel.

        Raises:
            SolverSingularity: For the homography strategy on a degenerate quad.
        """
        width, height = output_size
        grid_y, grid_x = np.mgrid[0:height, 0:width].astype(np.float64)

        if strategy is RectifyStrategy.HOMOGRAPHY:
            forward = self.solver.solve(quad.points, self.destination_corners(width, height))
            return forward.inverse().apply(grid_x, grid_y)

        if strategy is RectifyStrategy.EDGE_INTERPOLATION:
            tl, tr, br, bl = quad.as_array()
            u = (grid_x / width)[..., np.newaxis]
            v = (grid_y / height)[..., np.newaxis]
            top = tl + u * (tr - tl)
            bottom = bl + u * (br - bl)
            mapped = top + v * (bottom - top)
            return mapped[..., 0], mapped[..., 1]

        raise ValueError(f"Unknown rectify strategy: {strategy!r}")

    def transform(
        self,
        image: RasterImage,
        quad: Quadrilateral,
        output_size: Tuple[int, int] = None,
        strategy: RectifyStrategy = RectifyStrategy.HOMOGRAPHY,
    ) -> RasterImage:
        """Rectify ``quad`` without any fallback.

        Raises:
            SolverSingularity: If the homography cannot be solved.
        """
        if output_size is None:
            output_size = quad.output_size()
        xs, ys = self.source_coordinates(quad, output_size, strategy)
        return self.resampler.sample(image, xs, ys)

    def rectify(
        self,
        image: RasterImage,
        quad: Quadrilateral,
        strategy: RectifyStrategy = RectifyStrategy.HOMOGRAPHY,
    ) -> RectifyResult:
        """Rectify ``quad``, falling back to its bounding box if it is degenerate."""
        if not quad.is_convex():
            logger.warning("Rectifying a non-convex or self-intersecting quadrilateral: %s",
                           [p.as_tuple() for p in quad])
        try:
            rectified = self.transform(image, quad, strategy=strategy)
        except SolverSingularity as e:
            logger.warning("Perspective solve failed (%s), cropping bounding box instead", e)
            return RectifyResult(self.bounding_box_crop(image, quad), strategy, fell_back=True)
        logger.debug("Rectified %s to %s with %s", image, rectified, strategy.value)
        return RectifyResult(rectified, strategy)

    def bounding_box_crop(self, image: RasterImage, quad: Quadrilateral) -> RasterImage:
        """Axis-aligned crop of the quad's bounding box, clipped to the image."""
        box = quad.bounding_box()
        x0 = min(max(int(round(box.x)), 0), image.width - 1)
        y0 = min(max(int(round(box.y)), 0), image.height - 1)
        x1 = min(max(int(round(box.right)), x0 + 1), image.width)
        y1 = min(max(int(round(box.bottom)), y0 + 1), image.height)
        return RasterImage(image.pixels[y0:y1, x0:x1])
