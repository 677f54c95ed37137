"""
Card Scanner - Main Streamlit Application

A business card scanning application with:
- Automatic card boundary detection
- Perspective correction of skewed card photos
- Manual review in Adjust, Crop and Keystone modes
- Brightness / contrast enhancement and download
"""

import logging
from typing import Optional

import streamlit as st

from card_scanner import (
    CandidateScorer,
    DecodeFailure,
    EdgeDetector,
    PerspectiveTransformer,
    Point,
    RectifyStrategy,
)
from card_scanner.constants import (
    PERCENT_MAX,
    PERCENT_MIN,
    ROTATION_MAX,
    ROTATION_MIN,
    ScannerSettings,
)
from crop_editor import (
    CENTER_HANDLE,
    CommitResult,
    EditorInteractionController,
    EditorMode,
    EditorState,
)
from image_processing import compress_for_upload, decode_image, encode_image

logger = logging.getLogger(__name__)


# Page configuration
st.set_page_config(
    page_title="Card Scanner",
    page_icon="📇",
    layout="wide",
    initial_sidebar_state="expanded"
)

CORNER_NAMES = ("Top-Left", "Top-Right", "Bottom-Right", "Bottom-Left")

MODE_LABELS = {
    EditorMode.ADJUST: "🎚️ Adjust",
    EditorMode.CROP: "✂️ Crop",
    EditorMode.KEYSTONE: "📐 Keystone",
}


@st.cache_resource
def get_controller(settings: ScannerSettings) -> EditorInteractionController:
    """Build the editor controller from runtime settings."""
    detector = EdgeDetector(
        threshold=settings.edge_threshold,
        max_dimension=settings.max_dimension,
        scorer=CandidateScorer(min_confidence=settings.min_confidence),
    )
    return EditorInteractionController(
        detector=detector,
        transformer=PerspectiveTransformer(),
        strategy=RectifyStrategy(settings.strategy),
    )


def init_session_state():
    """Initialize session state variables."""
    if 'editor' not in st.session_state:
        st.session_state.editor = None  # EditorState of the current session
    if 'result' not in st.session_state:
        st.session_state.result = None  # Last CommitResult
    if 'upload_name' not in st.session_state:
        st.session_state.upload_name = None
    if 'revision' not in st.session_state:
        st.session_state.revision = 0  # Bumped to reset widget keys


def start_session(state: Optional[EditorState]):
    st.session_state.editor = state
    st.session_state.result = None
    st.session_state.revision += 1


def upload_section(controller: EditorInteractionController):
    """Photo upload and detection."""
    st.subheader("📤 Upload Card Photo")

    uploaded_file = st.file_uploader(
        "Choose a card photo",
        type=['jpg', 'jpeg', 'png', 'webp'],
        key="card_uploader"
    )
    if uploaded_file is None or uploaded_file.name == st.session_state.upload_name:
        return

    with st.spinner("Detecting card..."):
        try:
            image = decode_image(uploaded_file.read())
        except DecodeFailure as e:
            logger.warning("Rejected upload %s: %s", uploaded_file.name, e)
            st.error(f"Could not read {uploaded_file.name}: {e}")
            return
        state = controller.open_session(image)
        logger.info("Opened session for %s (%s)", uploaded_file.name, image)

    st.session_state.upload_name = uploaded_file.name
    start_session(state)
    st.rerun()


def adjust_controls(controller: EditorInteractionController, state: EditorState) -> EditorState:
    """Rotation, brightness and contrast sliders."""
    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        if st.button("↺ -90°", key="rot_left"):
            state = controller.rotate_by(state, -90)
            st.session_state.revision += 1
    with col2:
        if st.button("↻ +90°", key="rot_right"):
            state = controller.rotate_by(state, 90)
            st.session_state.revision += 1
    with col3:
        if st.button("✨ Auto Enhance", key="auto_enhance"):
            state = controller.auto_enhance(state)
            st.session_state.revision += 1

    # Slider keys follow the revision so button changes show up in the widgets
    key = st.session_state.revision
    adjust = state.adjust

    rotation = st.slider("Rotation (°)", float(ROTATION_MIN), float(ROTATION_MAX),
                         float(adjust.rotation), 1.0, key=f"rotation_{key}")
    brightness = st.slider("Brightness (%)", float(PERCENT_MIN), float(PERCENT_MAX),
                           float(adjust.brightness), 1.0, key=f"brightness_{key}")
    contrast = st.slider("Contrast (%)", float(PERCENT_MIN), float(PERCENT_MAX),
                         float(adjust.contrast), 1.0, key=f"contrast_{key}")

    state = controller.set_rotation(state, rotation)
    state = controller.set_brightness(state, brightness)
    return controller.set_contrast(state, contrast)


def handle_inputs(controller: EditorInteractionController, state: EditorState) -> EditorState:
    """Fine-tune handle positions; each change is replayed as a drag."""
    key = st.session_state.revision
    width, height = state.buffer_size

    if state.mode is EditorMode.CROP:
        handles = list(enumerate(state.crop.corners()))
        handles.append((CENTER_HANDLE, state.crop.center()))
        labels = list(CORNER_NAMES) + ["Center"]
    elif state.mode is EditorMode.KEYSTONE:
        handles = list(enumerate(state.quad))
        labels = list(CORNER_NAMES)
    else:
        return state

    with st.expander("Fine-tune handle coordinates"):
        cols = st.columns(len(handles))
        for (handle, point), label, col in zip(handles, labels, cols):
            with col:
                st.caption(label)
                x = st.number_input("X", value=float(point.x), min_value=0.0,
                                    max_value=float(width), key=f"h_{key}_{state.mode.value}_{handle}_x")
                y = st.number_input("Y", value=float(point.y), min_value=0.0,
                                    max_value=float(height), key=f"h_{key}_{state.mode.value}_{handle}_y")
                if (x, y) != point.as_tuple():
                    state = controller.drag_handle(state, handle, Point(x, y))
                    # Re-seed every handle widget from the new geometry
                    st.session_state.editor = state
                    st.session_state.revision += 1
                    st.rerun()
    return state


def editor_section(controller: EditorInteractionController):
    """Interactive review of the current session."""
    state: EditorState = st.session_state.editor
    detection = state.detection

    st.subheader("🔍 Review Card")
    if detection.is_fallback:
        st.caption("⚠️ No card boundary detected - using a centered default area")
    else:
        st.caption(f"✅ Card detected (confidence {detection.confidence:.0%})")

    labels = [MODE_LABELS[mode] for mode in EditorMode]
    selected = st.radio("Mode", labels, index=labels.index(MODE_LABELS[state.mode]),
                        horizontal=True, key=f"mode_{st.session_state.revision}")
    mode = next(m for m, label in MODE_LABELS.items() if label == selected)
    if mode is not state.mode:
        state = controller.set_mode(state, mode)

    col_image, col_controls = st.columns([3, 2])

    with col_controls:
        state = adjust_controls(controller, state)
        state = handle_inputs(controller, state)

        col1, col2 = st.columns(2)
        with col1:
            if st.button("🔄 Reset", key="reset_editor"):
                state = controller.reset(state)
                st.session_state.revision += 1
        with col2:
            if st.button("🎯 Re-detect", key="redetect"):
                state = controller.redetect(state)
                st.session_state.revision += 1

        if st.button("✅ Apply", type="primary", key="commit_edit"):
            st.session_state.result = controller.commit(state)

    with col_image:
        st.image(controller.draw_overlay(state).pixels, width="stretch")

    st.session_state.editor = state


def result_section(controller: EditorInteractionController):
    """Committed result preview, download and follow-up editing."""
    result: CommitResult = st.session_state.result
    if result is None:
        return

    st.divider()
    st.subheader("🖼️ Result")
    if result.fell_back:
        st.warning("Perspective correction failed for this shape; the bounding box was cropped instead.")

    st.image(result.image.pixels, caption=f"{result.image.width} × {result.image.height}")

    col1, col2, col3 = st.columns(3)
    with col1:
        encoded = encode_image(result.image, 'PNG')
        st.download_button("⬇️ Download PNG", encoded.data, file_name="card.png",
                           mime=encoded.mime_type)
    with col2:
        compressed = compress_for_upload(result.image)
        st.download_button("⬇️ Download JPEG", compressed.data, file_name="card.jpg",
                           mime=compressed.mime_type)
        st.caption(f"{len(compressed.data) / 1024:.0f} KB")
    with col3:
        if st.button("✏️ Edit Result", key="edit_result"):
            start_session(controller.open_session(result.image))
            st.rerun()


def main():
    """Main application."""
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_session_state()

    settings = ScannerSettings.from_env()
    controller = get_controller(settings)

    # Sidebar
    st.sidebar.title("📇 Card Scanner")
    st.sidebar.caption(f"Rectification: {settings.strategy}")
    st.sidebar.caption(f"Detection size limit: {settings.max_dimension}px")
    if st.session_state.editor is not None:
        if st.sidebar.button("🆕 New Card"):
            st.session_state.upload_name = None
            start_session(None)
            st.rerun()

    st.title("📇 Business Card Scanner")

    if st.session_state.editor is None:
        upload_section(controller)
        return

    editor_section(controller)
    result_section(controller)


if __name__ == "__main__":
    main()
