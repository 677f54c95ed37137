"""
Geometry and raster data models for the card scanner.

Classes:
    RasterImage: Immutable RGBA8 pixel buffer
    Point: Floating-point position in image-pixel space
    Quadrilateral: Four corners in TL, TR, BR, BL order
    CropRegion: Axis-aligned rectangle in image-pixel space
    DetectionCandidate: Detected card quad with confidence and bounding box
"""

import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Tuple

import numpy as np

RgbaColor = Tuple[int, int, int, int]


@dataclass(frozen=True, eq=False)
class RasterImage:
    """An RGBA8 image whose pixel buffer cannot be modified in place.

    ``pixels`` has shape ``(height, width, 4)`` and dtype ``uint8``.
    """

    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected an (H, W, 4) array, got shape {pixels.shape}")
        if pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {pixels.dtype}")
        pixels = np.ascontiguousarray(pixels)
        if pixels.flags.writeable:
            pixels = pixels.copy()
            pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RasterImage":
        """Build a RasterImage from a gray, RGB or RGBA array."""
        arr = np.asarray(array)
        if arr.dtype != np.uint8:
            arr = np.clip(np.rint(arr), 0, 255).astype(np.uint8)
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported array shape {arr.shape}")
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=-1)
        return cls(arr)

    @classmethod
    def blank(cls, width: int, height: int, color: RgbaColor = (0, 0, 0, 255)) -> "RasterImage":
        if width <= 0 or height <= 0:
            raise ValueError(f"Image dimensions must be positive, got {width}x{height}")
        arr = np.empty((height, width, 4), dtype=np.uint8)
        arr[:, :] = color
        return cls(arr)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def rgb(self) -> np.ndarray:
        return self.pixels[:, :, :3]

    def copy_pixels(self) -> np.ndarray:
        """Return a writable copy of the pixel buffer."""
        return np.array(self.pixels, copy=True)

    def __repr__(self):
        return f"RasterImage({self.width}x{self.height})"


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def clamped(self, width: float, height: float) -> "Point":
        return Point(min(max(self.x, 0.0), width), min(max(self.y, 0.0), height))

    def scaled(self, sx: float, sy: float) -> "Point":
        return Point(self.x * sx, self.y * sy)

    def as_tuple(self) -> Tuple[float, float]:
        return self.x, self.y


@dataclass(frozen=True)
class Quadrilateral:
    """Four corner points in fixed [top-left, top-right, bottom-right, bottom-left] order.

    Operations only ever move points; the winding order is never permuted.
    """

    points: Tuple[Point, Point, Point, Point]

    def __post_init__(self):
        points = tuple(p if isinstance(p, Point) else Point(float(p[0]), float(p[1]))
                       for p in self.points)
        if len(points) != 4:
            raise ValueError(f"A quadrilateral needs exactly 4 points, got {len(points)}")
        object.__setattr__(self, "points", points)

    @classmethod
    def from_rect(cls, x: float, y: float, width: float, height: float) -> "Quadrilateral":
        return cls((
            Point(x, y),
            Point(x + width, y),
            Point(x + width, y + height),
            Point(x, y + height),
        ))

    @classmethod
    def from_array(cls, array: Iterable) -> "Quadrilateral":
        return cls(tuple(Point(float(px), float(py)) for px, py in array))

    def __getitem__(self, index: int) -> Point:
        return self.points[index]

    def __iter__(self):
        return iter(self.points)

    def with_point(self, index: int, point: Point) -> "Quadrilateral":
        """Return a copy with only the point at ``index`` moved."""
        points = list(self.points)
        points[index] = point
        return Quadrilateral(tuple(points))

    def scaled(self, sx: float, sy: float) -> "Quadrilateral":
        return Quadrilateral(tuple(p.scaled(sx, sy) for p in self.points))

    def as_array(self) -> np.ndarray:
        return np.array([p.as_tuple() for p in self.points], dtype=np.float64)

    def bounding_box(self) -> "CropRegion":
        xs = [p.x for p in self.points]
        ys = [p.y for p in self.points]
        return CropRegion(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))

    def edge_lengths(self) -> Tuple[float, float, float, float]:
        """Lengths of the top, right, bottom and left edges."""
        tl, tr, br, bl = self.points
        return (
            tl.distance_to(tr),
            tr.distance_to(br),
            bl.distance_to(br),
            tl.distance_to(bl),
        )

    def output_size(self) -> Tuple[int, int]:
        """Width and height of the rectified output, at least 1x1."""
        top, right, bottom, left = self.edge_lengths()
        width = int(round(max(top, bottom)))
        height = int(round(max(left, right)))
        return max(width, 1), max(height, 1)

    def centroid(self) -> Point:
        return Point(
            sum(p.x for p in self.points) / 4.0,
            sum(p.y for p in self.points) / 4.0,
        )

    def is_convex(self) -> bool:
        """True when all turns have the same sign (no crossed or reflex corners)."""
        signs = []
        for i in range(4):
            a, b, c = self.points[i], self.points[(i + 1) % 4], self.points[(i + 2) % 4]
            cross = (b.x - a.x) * (c.y - b.y) - (b.y - a.y) * (c.x - b.x)
            if abs(cross) > 1e-9:
                signs.append(cross > 0)
        return len(signs) == 4 and (all(signs) or not any(signs))


@dataclass(frozen=True)
class CropRegion:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def corners(self) -> List[Point]:
        return list(self.to_quad().points)

    def to_quad(self) -> Quadrilateral:
        return Quadrilateral.from_rect(self.x, self.y, self.width, self.height)

    def clamped_to(self, image_width: float, image_height: float,
                   min_size: float = 0.0) -> "CropRegion":
        """Shrink and shift the region until it lies inside the image.

        Width and height are raised to ``min_size`` where the image allows it.
        """
        width = min(max(self.width, min(min_size, image_width)), image_width)
        height = min(max(self.height, min(min_size, image_height)), image_height)
        x = min(max(self.x, 0.0), image_width - width)
        y = min(max(self.y, 0.0), image_height - height)
        return replace(self, x=x, y=y, width=width, height=height)

    def contains(self, image_width: float, image_height: float) -> bool:
        return (self.x >= 0 and self.y >= 0
                and self.right <= image_width and self.bottom <= image_height)


@dataclass(frozen=True)
class DetectionCandidate:
    quad: Quadrilateral
    confidence: float
    crop: CropRegion
    is_fallback: bool = False

    @classmethod
    def from_quad(cls, quad: Quadrilateral, confidence: float,
                  is_fallback: bool = False) -> "DetectionCandidate":
        return cls(quad=quad, confidence=confidence, crop=quad.bounding_box(),
                   is_fallback=is_fallback)
