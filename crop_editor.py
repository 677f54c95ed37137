"""
Interactive editor for manual refinement of the auto-detected card boundary.

Features:
- Adjust mode: rotation, brightness and contrast
- Crop mode: draggable corner handles and a center move handle
- Keystone mode: four draggable quadrilateral corners for perspective correction
- Hit radius scaled to the canvas size so touch targets stay usable

The editor is a state machine: every handler takes an EditorState and returns
a new one, so sessions can be driven and tested without a rendering surface.
"""

import enum
import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import cv2
import numpy as np

from card_scanner import (
    CropRegion,
    DetectionCandidate,
    EdgeDetector,
    PerspectiveTransformer,
    Point,
    Quadrilateral,
    RasterImage,
    RectifyStrategy,
)
from card_scanner.constants import (
    AUTO_ENHANCE_BRIGHTNESS,
    AUTO_ENHANCE_CONTRAST,
    DEFAULT_PERCENT,
    HANDLE_HIT_RADIUS,
    HIT_SCALE_DIVISOR,
    MIN_CROP_SIZE,
    PERCENT_MAX,
    PERCENT_MIN,
    ROTATION_MAX,
    ROTATION_MIN,
    ROTATION_STEP,
    TOUCH_HIT_MULTIPLIER,
)
from image_processing import apply_brightness_contrast, crop_image, rotate_image

logger = logging.getLogger(__name__)

TOP_LEFT, TOP_RIGHT, BOTTOM_RIGHT, BOTTOM_LEFT = range(4)
CENTER_HANDLE = 4

HANDLE_SIZE = 12
KEYSTONE_POINT_RADIUS = 8
OVERLAY_COLOR = (255, 255, 255, 255)
HANDLE_BORDER_COLOR = (0, 0, 0, 255)
KEYSTONE_LINE_COLOR = (255, 0, 0, 255)
KEYSTONE_POINT_COLOR = (0, 255, 0, 255)
SELECTED_POINT_COLOR = (255, 0, 0, 255)


class EditorMode(enum.Enum):
    ADJUST = "adjust"
    CROP = "crop"
    KEYSTONE = "keystone"


class PointerAction(enum.Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"
    CANCEL = "cancel"
    LEAVE = "leave"


class PointerDevice(enum.Enum):
    MOUSE = "mouse"
    TOUCH = "touch"
    PEN = "pen"


@dataclass(frozen=True)
class PointerEvent:
    """A pointer or touch event in display coordinates."""

    action: PointerAction
    x: float
    y: float
    device: PointerDevice = PointerDevice.MOUSE


@dataclass(frozen=True)
class AdjustSettings:
    rotation: float = 0.0
    brightness: float = DEFAULT_PERCENT
    contrast: float = DEFAULT_PERCENT


@dataclass(frozen=True)
class DragSession:
    """An in-progress drag: which handle, where it started and the geometry at that moment."""

    handle: int
    start: Point
    origin_crop: CropRegion
    origin_quad: Quadrilateral


@dataclass(frozen=True)
class EditorState:
    """Everything one editing session knows.

    ``crop`` and ``quad`` are always in image-pixel coordinates of the
    (rotated) canvas, which has the same size as ``image``.
    """

    image: RasterImage
    mode: EditorMode
    adjust: AdjustSettings
    crop: CropRegion
    quad: Quadrilateral
    detection: DetectionCandidate
    display_size: Optional[Tuple[float, float]] = None
    drag: Optional[DragSession] = None

    @property
    def buffer_size(self) -> Tuple[int, int]:
        return self.image.width, self.image.height

    @property
    def is_dragging(self) -> bool:
        return self.drag is not None


@dataclass(frozen=True)
class CommitResult:
    image: RasterImage
    mode: EditorMode
    crop: Optional[CropRegion]
    quad: Optional[Quadrilateral]
    confidence: float
    fell_back: bool = False


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _wrap_rotation(degrees: float) -> float:
    while degrees > ROTATION_MAX:
        degrees -= 360.0
    while degrees < ROTATION_MIN:
        degrees += 360.0
    return degrees


class EditorInteractionController:
    """Drives crop and keystone editing sessions from pointer events.

    The controller only holds configuration; all session data lives in the
    EditorState passed to and returned from each method.
    """

    def __init__(
        self,
        detector: Optional[EdgeDetector] = None,
        transformer: Optional[PerspectiveTransformer] = None,
        strategy: RectifyStrategy = RectifyStrategy.HOMOGRAPHY,
        hit_radius: float = HANDLE_HIT_RADIUS,
        touch_multiplier: float = TOUCH_HIT_MULTIPLIER,
        min_crop_size: float = MIN_CROP_SIZE,
    ):
        """Initialize the controller.

        Args:
            detector: Edge detector used to seed new sessions.
            transformer: Perspective transformer used on keystone commit.
            strategy: Rectification strategy for keystone commit.
            hit_radius: Handle hit radius in image pixels on a 500px canvas.
            touch_multiplier: Extra hit radius factor for touch input.
            min_crop_size: Minimum crop width and height in image pixels.
        """
        self.detector = detector or EdgeDetector()
        self.transformer = transformer or PerspectiveTransformer()
        self.strategy = strategy
        self.hit_radius = hit_radius
        self.touch_multiplier = touch_multiplier
        self.min_crop_size = min_crop_size

    # Session lifecycle

    def open_session(self, image: RasterImage,
                     candidate: Optional[DetectionCandidate] = None) -> EditorState:
        """Start editing ``image``, seeding crop and keystone from detection."""
        if candidate is None:
            candidate = self.detector.detect(image)
        logger.debug("Opening editor on %s (confidence %.3f)", image, candidate.confidence)
        return EditorState(
            image=image,
            mode=EditorMode.ADJUST,
            adjust=AdjustSettings(),
            crop=self._seed_crop(candidate, image),
            quad=self._seed_quad(candidate, image),
            detection=candidate,
        )

    def _seed_crop(self, candidate: DetectionCandidate, image: RasterImage) -> CropRegion:
        return candidate.crop.clamped_to(image.width, image.height, self.min_crop_size)

    def _seed_quad(self, candidate: DetectionCandidate, image: RasterImage) -> Quadrilateral:
        return Quadrilateral(tuple(p.clamped(image.width, image.height) for p in candidate.quad))

    def reset(self, state: EditorState) -> EditorState:
        """Restore default adjustments and the detected geometry."""
        return replace(
            state,
            adjust=AdjustSettings(),
            crop=self._seed_crop(state.detection, state.image),
            quad=self._seed_quad(state.detection, state.image),
            drag=None,
        )

    def redetect(self, state: EditorState) -> EditorState:
        """Run detection again on the session image and re-seed the geometry."""
        candidate = self.detector.detect(state.image)
        return replace(
            state,
            detection=candidate,
            crop=self._seed_crop(candidate, state.image),
            quad=self._seed_quad(candidate, state.image),
            drag=None,
        )

    def set_mode(self, state: EditorState, mode: EditorMode) -> EditorState:
        if not isinstance(mode, EditorMode):
            mode = EditorMode(mode)
        return replace(state, mode=mode, drag=None)

    def set_display_size(self, state: EditorState, width: float, height: float) -> EditorState:
        """Record the size the canvas is currently shown at."""
        if width <= 0 or height <= 0:
            raise ValueError(f"Display size must be positive, got {width}x{height}")
        return replace(state, display_size=(float(width), float(height)))

    # Adjust mode

    def set_rotation(self, state: EditorState, degrees: float) -> EditorState:
        rotation = _clamp(float(degrees), ROTATION_MIN, ROTATION_MAX)
        return replace(state, adjust=replace(state.adjust, rotation=rotation))

    def rotate_by(self, state: EditorState, degrees: float = ROTATION_STEP) -> EditorState:
        rotation = _wrap_rotation(state.adjust.rotation + degrees)
        return replace(state, adjust=replace(state.adjust, rotation=rotation))

    def reset_rotation(self, state: EditorState) -> EditorState:
        return replace(state, adjust=replace(state.adjust, rotation=0.0))

    def set_brightness(self, state: EditorState, percent: float) -> EditorState:
        brightness = _clamp(float(percent), PERCENT_MIN, PERCENT_MAX)
        return replace(state, adjust=replace(state.adjust, brightness=brightness))

    def set_contrast(self, state: EditorState, percent: float) -> EditorState:
        contrast = _clamp(float(percent), PERCENT_MIN, PERCENT_MAX)
        return replace(state, adjust=replace(state.adjust, contrast=contrast))

    def auto_enhance(self, state: EditorState) -> EditorState:
        """Business card preset: slightly brighter, more contrast."""
        return replace(state, adjust=replace(
            state.adjust, brightness=AUTO_ENHANCE_BRIGHTNESS, contrast=AUTO_ENHANCE_CONTRAST
        ))

    # Coordinates and hit testing

    def to_image_coordinates(self, state: EditorState, x: float, y: float) -> Point:
        """Convert a display-space position to image-pixel space."""
        buffer_w, buffer_h = state.buffer_size
        display_w, display_h = state.display_size or (buffer_w, buffer_h)
        return Point(x * buffer_w / display_w, y * buffer_h / display_h)

    def hit_radius_for(self, state: EditorState,
                       device: PointerDevice = PointerDevice.MOUSE) -> float:
        buffer_w, buffer_h = state.buffer_size
        radius = self.hit_radius * min(buffer_w, buffer_h) / HIT_SCALE_DIVISOR
        if device is PointerDevice.TOUCH:
            radius *= self.touch_multiplier
        return radius

    def find_crop_handle(self, state: EditorState, point: Point,
                         device: PointerDevice = PointerDevice.MOUSE) -> Optional[int]:
        """Corner handles first, then the center handle."""
        radius = self.hit_radius_for(state, device)
        for index, corner in enumerate(state.crop.corners()):
            if corner.distance_to(point) < radius:
                return index
        if state.crop.center().distance_to(point) < radius:
            return CENTER_HANDLE
        return None

    def find_keystone_point(self, state: EditorState, point: Point,
                            device: PointerDevice = PointerDevice.MOUSE) -> Optional[int]:
        """Nearest quad corner within the hit radius."""
        radius = self.hit_radius_for(state, device)
        distances = [(corner.distance_to(point), index) for index, corner in enumerate(state.quad)]
        distance, index = min(distances)
        return index if distance < radius else None

    # Pointer handling

    def handle_pointer(self, state: EditorState, event: PointerEvent) -> EditorState:
        if event.action is PointerAction.DOWN:
            return self.pointer_down(state, event)
        if event.action is PointerAction.MOVE:
            return self.pointer_move(state, event)
        return self.pointer_up(state, event)

    def pointer_down(self, state: EditorState, event: PointerEvent) -> EditorState:
        point = self.to_image_coordinates(state, event.x, event.y)

        if state.mode is EditorMode.CROP:
            handle = self.find_crop_handle(state, point, event.device)
        elif state.mode is EditorMode.KEYSTONE:
            handle = self.find_keystone_point(state, point, event.device)
        elif state.mode is EditorMode.ADJUST:
            handle = None
        else:
            raise ValueError(f"Unhandled editor mode: {state.mode!r}")

        if handle is None:
            return replace(state, drag=None)
        return replace(state, drag=DragSession(handle, point, state.crop, state.quad))

    def pointer_move(self, state: EditorState, event: PointerEvent) -> EditorState:
        if state.drag is None:
            return state
        return self._apply_move(state, self.to_image_coordinates(state, event.x, event.y))

    def _apply_move(self, state: EditorState, point: Point) -> EditorState:
        if state.mode is EditorMode.CROP:
            if state.drag.handle == CENTER_HANDLE:
                crop = self._move_crop(state, point)
            else:
                crop = self._resize_crop(state, point)
            return replace(state, crop=crop)
        if state.mode is EditorMode.KEYSTONE:
            width, height = state.buffer_size
            quad = state.quad.with_point(state.drag.handle, point.clamped(width, height))
            return replace(state, quad=quad)
        return state

    def pointer_up(self, state: EditorState, event: Optional[PointerEvent] = None) -> EditorState:
        if state.drag is None:
            return state
        return replace(state, drag=None)

    def drag(self, state: EditorState, start: Point, end: Point,
             device: PointerDevice = PointerDevice.MOUSE) -> EditorState:
        """Replay a full press-move-release gesture given in display coordinates."""
        for action, point in ((PointerAction.DOWN, start), (PointerAction.MOVE, end),
                              (PointerAction.UP, end)):
            state = self.handle_pointer(state, PointerEvent(action, point.x, point.y, device))
        return state

    def drag_handle(self, state: EditorState, handle: int, end: Point) -> EditorState:
        """Drag a specific handle to ``end`` in image coordinates, skipping hit testing."""
        if state.mode is EditorMode.CROP:
            if handle == CENTER_HANDLE:
                start = state.crop.center()
            elif handle in range(4):
                start = state.crop.corners()[handle]
            else:
                raise ValueError(f"Crop handle must be 0-3 or {CENTER_HANDLE}, got {handle}")
        elif state.mode is EditorMode.KEYSTONE:
            if handle not in range(4):
                raise ValueError(f"Keystone handle must be 0-3, got {handle}")
            start = state.quad[handle]
        else:
            return state

        moving = replace(state, drag=DragSession(handle, start, state.crop, state.quad))
        return self.pointer_up(self._apply_move(moving, end))

    def _min_size(self, state: EditorState) -> Tuple[float, float]:
        width, height = state.buffer_size
        return min(self.min_crop_size, width), min(self.min_crop_size, height)

    def _move_crop(self, state: EditorState, point: Point) -> CropRegion:
        width, height = state.buffer_size
        origin = state.drag.origin_crop
        dx = point.x - state.drag.start.x
        dy = point.y - state.drag.start.y
        x = _clamp(origin.x + dx, 0.0, width - origin.width)
        y = _clamp(origin.y + dy, 0.0, height - origin.height)
        return replace(origin, x=x, y=y)

    def _resize_crop(self, state: EditorState, point: Point) -> CropRegion:
        """Resize by one corner while the two opposite edges stay fixed."""
        width, height = state.buffer_size
        min_w, min_h = self._min_size(state)
        origin = state.drag.origin_crop
        left, top, right, bottom = origin.x, origin.y, origin.right, origin.bottom
        px = _clamp(point.x, 0.0, width)
        py = _clamp(point.y, 0.0, height)
        handle = state.drag.handle

        if handle in (TOP_LEFT, BOTTOM_LEFT):
            left = _clamp(px, 0.0, right - min_w)
        else:
            right = _clamp(px, left + min_w, width)

        if handle in (TOP_LEFT, TOP_RIGHT):
            top = _clamp(py, 0.0, bottom - min_h)
        else:
            bottom = _clamp(py, top + min_h, height)

        return CropRegion(left, top, right - left, bottom - top)

    # Rendering and commit

    def render_preview(self, state: EditorState) -> RasterImage:
        """The session image rotated about its center, then enhanced."""
        rotated = rotate_image(state.image, state.adjust.rotation)
        return apply_brightness_contrast(rotated, state.adjust.brightness, state.adjust.contrast)

    def draw_overlay(self, state: EditorState, preview: Optional[RasterImage] = None) -> RasterImage:
        """Draw crop or keystone handles over the preview."""
        if preview is None:
            preview = self.render_preview(state)
        canvas = preview.copy_pixels()
        scale = max(min(state.buffer_size) / HIT_SCALE_DIVISOR, 1.0)

        if state.mode is EditorMode.CROP:
            self._draw_crop_overlay(canvas, state.crop, scale)
        elif state.mode is EditorMode.KEYSTONE:
            selected = state.drag.handle if state.drag else -1
            self._draw_keystone_overlay(canvas, state.quad, selected, scale)
        return RasterImage(canvas)

    def _draw_crop_overlay(self, canvas: np.ndarray, crop: CropRegion, scale: float):
        x0, y0 = int(round(crop.x)), int(round(crop.y))
        x1, y1 = int(round(crop.right)), int(round(crop.bottom))

        # Darken everything outside the crop area
        shaded = canvas.copy()
        shaded[:, :, :3] = (shaded[:, :, :3] * 0.5).astype(np.uint8)
        shaded[y0:y1, x0:x1] = canvas[y0:y1, x0:x1]
        canvas[:] = shaded

        thickness = max(1, int(round(2 * scale)))
        cv2.rectangle(canvas, (x0, y0), (x1, y1), OVERLAY_COLOR, thickness)

        half = int(round(HANDLE_SIZE * scale / 2))
        for corner in crop.corners():
            cx, cy = int(round(corner.x)), int(round(corner.y))
            cv2.rectangle(canvas, (cx - half, cy - half), (cx + half, cy + half), OVERLAY_COLOR, -1)
            cv2.rectangle(canvas, (cx - half, cy - half), (cx + half, cy + half), HANDLE_BORDER_COLOR, 1)

        center = crop.center()
        cv2.circle(canvas, (int(round(center.x)), int(round(center.y))), half, OVERLAY_COLOR, -1)
        cv2.putText(canvas, f"{round(crop.width)} x {round(crop.height)}",
                    (x0 + 5, max(y0 - 5, 12)), cv2.FONT_HERSHEY_SIMPLEX,
                    0.45 * scale, OVERLAY_COLOR, thickness)

    def _draw_keystone_overlay(self, canvas: np.ndarray, quad: Quadrilateral,
                               selected: int, scale: float):
        pts = np.round(quad.as_array()).astype(np.int32).reshape(-1, 1, 2)
        thickness = max(1, int(round(3 * scale)))
        cv2.polylines(canvas, [pts], True, KEYSTONE_LINE_COLOR, thickness)

        radius = max(1, int(round(KEYSTONE_POINT_RADIUS * scale)))
        for index, point in enumerate(quad):
            center = (int(round(point.x)), int(round(point.y)))
            color = SELECTED_POINT_COLOR if index == selected else KEYSTONE_POINT_COLOR
            cv2.circle(canvas, center, radius, color, -1)
            cv2.putText(canvas, str(index + 1), (center[0] - radius // 2, center[1] + radius // 2),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.4 * scale, OVERLAY_COLOR, 1)

    def commit(self, state: EditorState) -> CommitResult:
        """Apply the current mode's geometry to the rotated image, then enhance it.

        Only one geometry operation is applied; chain edits by opening a new
        session on the committed image.
        """
        rotated = rotate_image(state.image, state.adjust.rotation)
        fell_back = False
        crop = None
        quad = None

        if state.mode is EditorMode.CROP:
            crop = state.crop
            shaped = crop_image(rotated, crop)
        elif state.mode is EditorMode.KEYSTONE:
            quad = state.quad
            result = self.transformer.rectify(rotated, quad, self.strategy)
            shaped = result.image
            fell_back = result.fell_back
        elif state.mode is EditorMode.ADJUST:
            shaped = rotated
        else:
            raise ValueError(f"Unhandled editor mode: {state.mode!r}")

        final = apply_brightness_contrast(shaped, state.adjust.brightness, state.adjust.contrast)
        logger.info("Committed %s edit: %s -> %s", state.mode.value, state.image, final)
        return CommitResult(
            image=final,
            mode=state.mode,
            crop=crop,
            quad=quad,
            confidence=state.detection.confidence,
            fell_back=fell_back,
        )
