"""
Tests for the Streamlit review app, driven through AppTest.

Each test seeds a 400x300 editor session whose crop starts at
(100, 100, 200, 120) and edits it through the fine-tune inputs.
"""

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

from card_scanner import CropRegion, Point
from crop_editor import EditorMode

APP_PATH = str(Path(__file__).resolve().parent.parent / "app.py")


@pytest.fixture
def app(controller, editor_state):
    """
    Provide an AppTest with a crop-mode session already open.

    Returns:
        AppTest that has completed its first run
    """
    at = AppTest.from_file(APP_PATH, default_timeout=30)
    at.session_state["editor"] = controller.set_mode(editor_state, EditorMode.CROP)
    at.run()
    assert not at.exception
    return at


def handle_input(at, handle, axis):
    key = f"h_{at.session_state['revision']}_crop_{handle}_{axis}"
    return at.number_input(key=key)


class TestFineTuneInputs:
    """Tests for editing handles through the coordinate inputs."""

    def test_corner_edit_survives_reruns(self, app):
        """Should keep an edited corner across later reruns."""
        handle_input(app, 0, "x").set_value(50.0).run()
        assert app.session_state["editor"].crop == CropRegion(50, 100, 250, 120)

        app.run()
        app.run()
        assert not app.exception
        assert app.session_state["editor"].crop == CropRegion(50, 100, 250, 120)

    def test_inputs_follow_geometry(self, app):
        """Should re-seed the other handle inputs after an edit."""
        handle_input(app, 0, "x").set_value(50.0).run()

        assert handle_input(app, 0, "x").value == 50.0
        assert handle_input(app, 1, "x").value == 300.0
        assert handle_input(app, 4, "x").value == 175.0

    def test_apply_commits_edited_crop(self, app):
        """Should commit the crop entered in the inputs."""
        handle_input(app, 0, "x").set_value(50.0).run()
        app.run()
        app.button(key="commit_edit").click().run()

        result = app.session_state["result"]
        assert result.crop == CropRegion(50, 100, 250, 120)
        assert result.image.size == (250, 120)

    def test_center_edit_moves_crop(self, app):
        """Should move the whole crop when the center input changes."""
        handle_input(app, 4, "y").set_value(180.0).run()
        app.run()

        state = app.session_state["editor"]
        assert state.crop == CropRegion(100, 120, 200, 120)
        assert state.crop.center() == Point(200, 180)
