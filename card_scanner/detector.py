"""Business card boundary detection from strong horizontal and vertical edges."""

import logging
import math
from typing import List, NamedTuple, Optional, Tuple

import cv2
import numpy as np

from .constants import (
    ASPECT_WEIGHT,
    CARD_ASPECT_RATIO,
    CARD_RATIO_TOLERANCE,
    EDGE_THRESHOLD,
    FALLBACK_CONFIDENCE,
    FALLBACK_FRACTION,
    MAX_CARD_AREA_RATIO,
    MAX_DETECTION_DIMENSION,
    MAX_LINES_PER_AXIS,
    MIN_CARD_AREA_RATIO,
    MIN_CONFIDENCE,
    MIN_LINE_FRACTION,
    MIN_RECT_HEIGHT,
    MIN_RECT_WIDTH,
    POSITION_WEIGHT,
    SIZE_SCORE_MAX_RATIO,
    SIZE_SCORE_MIN_RATIO,
    SIZE_WEIGHT,
)
from .models import DetectionCandidate, Quadrilateral, RasterImage

logger = logging.getLogger(__name__)


class EdgeLine(NamedTuple):
    """A maximal run of strong gradient along one row or column.

    For a horizontal line ``position`` is the row and ``start``/``end`` are
    inclusive x bounds; for a vertical line the roles are swapped.
    """

    position: int
    start: int
    end: int
    strength: float


def compute_gradient_field(image: RasterImage) -> np.ndarray:
    """Compute the Sobel gradient magnitude of an image.

    Luma is the plain average of the RGB channels. The 1-pixel border is
    left at zero because the 3x3 kernels cannot be centered there.

    Args:
        image: Source raster.

    Returns:
        Float64 array of shape (height, width) with magnitudes >= 0.
    """
    height, width = image.height, image.width
    magnitude = np.zeros((height, width), dtype=np.float64)
    if height < 3 or width < 3:
        return magnitude

    luma = image.rgb().astype(np.float64).mean(axis=2)
    gx = cv2.Sobel(luma, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(luma, cv2.CV_64F, 0, 1, ksize=3)

    magnitude[1:-1, 1:-1] = np.sqrt(gx[1:-1, 1:-1] ** 2 + gy[1:-1, 1:-1] ** 2)
    return magnitude


def _find_runs(field: np.ndarray, threshold: float, min_length: float) -> List[EdgeLine]:
    """Find maximal above-threshold runs along each row of ``field``."""
    rows, cols = field.shape
    mask = field > threshold
    padded = np.zeros((rows, cols + 2), dtype=np.int8)
    padded[:, 1:-1] = mask
    transitions = np.diff(padded, axis=1)

    # argwhere is row-major, so starts and ends pair up in order
    starts = np.argwhere(transitions == 1)
    ends = np.argwhere(transitions == -1)
    if len(starts) == 0:
        return []

    cumulative = np.zeros((rows, cols + 1), dtype=np.float64)
    np.cumsum(field, axis=1, out=cumulative[:, 1:])

    row_idx = starts[:, 0]
    start_x = starts[:, 1]
    end_x = ends[:, 1]  # exclusive
    lengths = end_x - start_x
    keep = lengths > min_length

    lines = []
    for row, x0, x1, length in zip(row_idx[keep], start_x[keep], end_x[keep], lengths[keep]):
        total = cumulative[row, x1] - cumulative[row, x0]
        lines.append(EdgeLine(int(row), int(x0), int(x1 - 1), float(total / length)))
    return lines


class CandidateScorer:
    """Ranks rectangle hypotheses by card-likeness.

    confidence = 0.5 * aspect + 0.3 * size + 0.2 * position, where the aspect
    score compares w/h against the 1.6 card ratio, the size score prefers
    10%-80% of the image area and the position score prefers the center.
    """

    def __init__(self, target_ratio: float = CARD_ASPECT_RATIO,
                 min_confidence: float = MIN_CONFIDENCE):
        self.target_ratio = target_ratio
        self.min_confidence = min_confidence

    def score(self, quad: Quadrilateral, image_width: int, image_height: int) -> float:
        tl, tr, br, bl = quad
        width = max(tr.x - tl.x, br.x - bl.x)
        height = max(bl.y - tl.y, br.y - tr.y)
        if width <= 0 or height <= 0:
            return 0.0

        aspect_score = 1.0 - abs(width / height - self.target_ratio) / self.target_ratio

        area_ratio = (width * height) / float(image_width * image_height)
        in_range = SIZE_SCORE_MIN_RATIO <= area_ratio <= SIZE_SCORE_MAX_RATIO
        size_score = 1.0 if in_range else 0.5

        center_x, center_y = image_width / 2.0, image_height / 2.0
        centroid = quad.centroid()
        distance = math.hypot(centroid.x - center_x, centroid.y - center_y)
        position_score = 1.0 - distance / math.hypot(center_x, center_y)

        confidence = (ASPECT_WEIGHT * aspect_score
                      + SIZE_WEIGHT * size_score
                      + POSITION_WEIGHT * position_score)
        # Perfect scores may land a hair above 1; only the floor is enforced.
        return max(0.0, confidence)

    def fallback(self, image_width: int, image_height: int) -> DetectionCandidate:
        """Centered card-shaped rectangle used when detection finds nothing usable."""
        card_width = min(image_width * FALLBACK_FRACTION,
                         image_height * FALLBACK_FRACTION * self.target_ratio)
        card_height = card_width / self.target_ratio
        x = (image_width - card_width) / 2.0
        y = (image_height - card_height) / 2.0
        quad = Quadrilateral.from_rect(x, y, card_width, card_height)
        return DetectionCandidate.from_quad(quad, FALLBACK_CONFIDENCE, is_fallback=True)

    def select_best(self, candidates: List[Quadrilateral], image_width: int,
                    image_height: int) -> DetectionCandidate:
        best: Optional[Tuple[float, Quadrilateral]] = None
        for quad in candidates:
            confidence = self.score(quad, image_width, image_height)
            if best is None or confidence > best[0]:
                best = (confidence, quad)

        if best is None:
            logger.warning("No card candidates found, using centered fallback")
            return self.fallback(image_width, image_height)
        if best[0] < self.min_confidence:
            logger.warning("Best candidate confidence %.3f below %.3f, using centered fallback",
                           best[0], self.min_confidence)
            return self.fallback(image_width, image_height)

        return DetectionCandidate.from_quad(best[1], best[0])


class EdgeDetector:
    """Detects a business card as the best rectangle formed by strong edge runs.

    The gradient field is scanned row by row and column by column for long
    runs of strong edges. The strongest few runs on each axis are paired up
    into axis-aligned rectangles, which the CandidateScorer then ranks.
    """

    def __init__(
        self,
        threshold: float = EDGE_THRESHOLD,
        min_line_fraction: float = MIN_LINE_FRACTION,
        max_lines: int = MAX_LINES_PER_AXIS,
        max_dimension: Optional[int] = MAX_DETECTION_DIMENSION,
        card_shape_filter: bool = True,
        scorer: Optional[CandidateScorer] = None,
    ):
        """Initialize the edge detector.

        Args:
            threshold: Minimum gradient magnitude for a pixel to count as edge.
            min_line_fraction: Minimum run length as a fraction of the image
                width (rows) or height (columns).
            max_lines: How many of the strongest lines per axis are paired.
            max_dimension: Longest edge the image is downscaled to before
                detection. None disables downscaling.
            card_shape_filter: Drop candidates whose ratio or area cannot be
                a business card.
            scorer: Candidate scorer; a default CandidateScorer if omitted.
        """
        self.threshold = threshold
        self.min_line_fraction = min_line_fraction
        self.max_lines = max_lines
        self.max_dimension = max_dimension
        self.card_shape_filter = card_shape_filter
        self.scorer = scorer or CandidateScorer()

    def detect(self, image: RasterImage) -> DetectionCandidate:
        """Detect the card boundary, falling back to a centered guess.

        Args:
            image: Source raster at full resolution.

        Returns:
            The best DetectionCandidate in full-resolution coordinates.
        """
        scale = 1.0
        proc_image = image
        longest = max(image.width, image.height)
        if self.max_dimension and longest > self.max_dimension:
            scale = self.max_dimension / float(longest)
            resized = cv2.resize(
                image.copy_pixels(),
                (max(1, int(round(image.width * scale))), max(1, int(round(image.height * scale)))),
                interpolation=cv2.INTER_AREA,
            )
            proc_image = RasterImage(resized)
            logger.debug("Downscaled %s to %s for detection", image, proc_image)

        field = compute_gradient_field(proc_image)
        candidates = self.find_candidates(field)
        best = self.scorer.select_best(candidates, proc_image.width, proc_image.height)

        if proc_image is not image:
            sx = image.width / float(proc_image.width)
            sy = image.height / float(proc_image.height)
            best = DetectionCandidate.from_quad(best.quad.scaled(sx, sy), best.confidence,
                                                is_fallback=best.is_fallback)
        return best

    def find_lines(self, field: np.ndarray) -> Tuple[List[EdgeLine], List[EdgeLine]]:
        """Find strong horizontal and vertical runs, strongest first."""
        height, width = field.shape
        horizontal = _find_runs(field, self.threshold, width * self.min_line_fraction)
        vertical = _find_runs(field.T, self.threshold, height * self.min_line_fraction)

        horizontal.sort(key=lambda line: line.strength, reverse=True)
        vertical.sort(key=lambda line: line.strength, reverse=True)
        logger.debug("Found %d horizontal and %d vertical lines", len(horizontal), len(vertical))
        return horizontal, vertical

    def find_candidates(self, field: np.ndarray) -> List[Quadrilateral]:
        """Pair the strongest lines on each axis into rectangle candidates."""
        height, width = field.shape
        horizontal, vertical = self.find_lines(field)
        top_h = horizontal[:self.max_lines]
        top_v = vertical[:self.max_lines]

        candidates = []
        for i, h1 in enumerate(top_h):
            for h2 in top_h[i + 1:]:
                for k, v1 in enumerate(top_v):
                    for v2 in top_v[k + 1:]:
                        quad = self._form_rectangle(h1, h2, v1, v2)
                        if quad is None:
                            continue
                        if self.card_shape_filter and not self._is_card_shaped(quad, width, height):
                            continue
                        candidates.append(quad)

        logger.debug("Formed %d rectangle candidates", len(candidates))
        return candidates

    def _form_rectangle(self, h1: EdgeLine, h2: EdgeLine, v1: EdgeLine,
                        v2: EdgeLine) -> Optional[Quadrilateral]:
        top = min(h1.position, h2.position)
        bottom = max(h1.position, h2.position)
        left = min(v1.position, v2.position)
        right = max(v1.position, v2.position)

        if right - left < MIN_RECT_WIDTH or bottom - top < MIN_RECT_HEIGHT:
            return None
        return Quadrilateral.from_rect(left, top, right - left, bottom - top)

    def _is_card_shaped(self, quad: Quadrilateral, image_width: int, image_height: int) -> bool:
        box = quad.bounding_box()
        if abs(box.width / box.height - self.scorer.target_ratio) > CARD_RATIO_TOLERANCE:
            return False
        image_area = float(image_width * image_height)
        return MIN_CARD_AREA_RATIO * image_area <= box.area <= MAX_CARD_AREA_RATIO * image_area
