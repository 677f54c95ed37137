"""
Constants and configuration values for the card scanner.

Defaults live here as module constants; ScannerSettings collects the ones
that can be overridden from the environment.
"""

import os
from dataclasses import dataclass

# ISO/IEC 7810 ID-1 card, 85.60 x 53.98 mm
CARD_ASPECT_RATIO = 1.6
CARD_RATIO_TOLERANCE = 0.5

# Gradient / line detection
EDGE_THRESHOLD = 50.0
MIN_LINE_FRACTION = 0.1
MAX_LINES_PER_AXIS = 4
MIN_RECT_WIDTH = 50
MIN_RECT_HEIGHT = 30
MIN_CARD_AREA_RATIO = 0.1
MAX_CARD_AREA_RATIO = 0.9
MAX_DETECTION_DIMENSION = 1500

# Scoring
ASPECT_WEIGHT = 0.5
SIZE_WEIGHT = 0.3
POSITION_WEIGHT = 0.2
SIZE_SCORE_MIN_RATIO = 0.1
SIZE_SCORE_MAX_RATIO = 0.8
MIN_CONFIDENCE = 0.3
FALLBACK_FRACTION = 0.9
FALLBACK_CONFIDENCE = 0.5

# Perspective solve
PIVOT_EPSILON = 1e-10

# Editor
HANDLE_HIT_RADIUS = 20.0
HIT_SCALE_DIVISOR = 500.0
TOUCH_HIT_MULTIPLIER = 1.5
MIN_CROP_SIZE = 50.0
ROTATION_MIN = -180.0
ROTATION_MAX = 180.0
ROTATION_STEP = 90.0
PERCENT_MIN = 50.0
PERCENT_MAX = 200.0
DEFAULT_PERCENT = 100.0
AUTO_ENHANCE_BRIGHTNESS = 110.0
AUTO_ENHANCE_CONTRAST = 120.0

# Encoding / upload
DEFAULT_OUTPUT_FORMAT = "JPEG"
DEFAULT_JPEG_QUALITY = 90
UPLOAD_MAX_BYTES = 500 * 1024
UPLOAD_MAX_WIDTH = 1200
UPLOAD_MAX_HEIGHT = 800
UPLOAD_QUALITY_STEPS = (85, 70, 60, 50, 40, 30)

MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}


@dataclass(frozen=True)
class ScannerSettings:
    """Runtime settings, overridable through CARD_SCANNER_* variables."""

    max_dimension: int = MAX_DETECTION_DIMENSION
    edge_threshold: float = EDGE_THRESHOLD
    min_confidence: float = MIN_CONFIDENCE
    strategy: str = "homography"

    @classmethod
    def from_env(cls, environ=None) -> "ScannerSettings":
        env = os.environ if environ is None else environ
        return cls(
            max_dimension=int(env.get("CARD_SCANNER_MAX_DIMENSION", MAX_DETECTION_DIMENSION)),
            edge_threshold=float(env.get("CARD_SCANNER_EDGE_THRESHOLD", EDGE_THRESHOLD)),
            min_confidence=float(env.get("CARD_SCANNER_MIN_CONFIDENCE", MIN_CONFIDENCE)),
            strategy=env.get("CARD_SCANNER_STRATEGY", "homography").strip().lower(),
        )
