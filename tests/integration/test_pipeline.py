"""
End-to-end pipeline runs on synthetic diagrams.
"""

import cv2
import numpy as np
import pytest
from openai import OpenAIError

from part_markers.models import (
    ENGINE_FRONT_LAYOUT,
    PipelineConfig,
    PipelineFailure,
    PipelineStatus,
    ProcessingStage,
    RasterImage,
)
from part_markers.pipeline import recognize_markers, run_pipeline, run_pipeline_async
from tests.synthetic import random_diagram, render_diagram, standard_diagram

BOX_TOLERANCE = 2


def _close(a, b, tol=BOX_TOLERANCE) -> bool:
    return (
        abs(a.x_min - b.x_min) <= tol
        and abs(a.y_min - b.y_min) <= tol
        and abs(a.x_max - b.x_max) <= tol
        and abs(a.y_max - b.y_max) <= tol
    )


class TestSixteen:
    def test_single_marker(self, sixteen_image):
        state = run_pipeline(sixteen_image)
        assert state.status == PipelineStatus.DONE
        # grouped box spans both glyphs
        (number,) = state.numbers
        box = number.bounding_box
        assert (box.x_min, box.y_min, box.x_max, box.y_max) == (306, 250, 370, 295)
        # a lone marker has zero spread, so its box comes from the layout
        (result,) = state.results
        assert result.id == "16"
        assert result.group == "engine"
        assert result.box_source == "layout"
        assert result.bounding_box == ENGINE_FRONT_LAYOUT.scaled("16", 800, 600).clamp(800, 600)
        assert state.calibration_applied

    def test_encoded_bytes(self, sixteen_image):
        ok, buf = cv2.imencode(".png", sixteen_image.pixels)
        assert ok
        results = recognize_markers(buf.tobytes())
        assert [r.id for r in results] == ["16"]

    def test_raw_array(self, sixteen_image):
        results = recognize_markers(np.array(sixteen_image.pixels))
        assert [r.id for r in results] == ["16"]

    def test_file_path(self, sixteen_image, tmp_path):
        path = tmp_path / "sheet.png"
        cv2.imwrite(str(path), sixteen_image.pixels)
        assert [r.id for r in recognize_markers(path)] == ["16"]
        assert [r.id for r in recognize_markers(str(path))] == ["16"]

    async def test_async(self, sixteen_image):
        state = await run_pipeline_async(sixteen_image)
        assert state.status == PipelineStatus.DONE
        assert [r.id for r in state.results] == ["16"]


class TestEdgeCases:
    def test_blank_image(self):
        state = run_pipeline(np.full((300, 400), 255, dtype=np.uint8))
        assert state.status == PipelineStatus.DONE
        assert state.results == []
        assert state.errors == []

    def test_zero_dimension(self):
        state = run_pipeline(np.zeros((0, 10), dtype=np.uint8))
        assert state.status == PipelineStatus.FAILED
        assert state.failure.stage == ProcessingStage.INPUT
        assert state.failure.error_type == "zero_dimension"
        assert state.results == []

    def test_malformed_buffer(self):
        state = run_pipeline(np.zeros((4, 4, 2), dtype=np.uint8))
        assert state.failure.error_type == "malformed_pixel_buffer"

    def test_missing_file(self, tmp_path):
        state = run_pipeline(tmp_path / "missing.png")
        assert state.status == PipelineStatus.FAILED
        assert state.failure.error_type == "file_not_found"

    def test_undecodable_bytes(self):
        state = run_pipeline(b"definitely not a png")
        assert state.failure.error_type == "imdecode_failed"

    def test_recognize_markers_raises(self, tmp_path):
        with pytest.raises(PipelineFailure) as exc_info:
            recognize_markers(tmp_path / "missing.png")
        assert exc_info.value.error.error_type == "file_not_found"

    def test_expected_ids_exclude_everything(self, sixteen_image):
        state = run_pipeline(sixteen_image, PipelineConfig(expected_ids=frozenset({"3"})))
        assert state.status == PipelineStatus.DONE
        assert state.results == []
        assert [n.text for n in state.numbers] == ["16"]


class TestSyntheticDiagrams:
    def test_standard_diagram(self):
        image, truth = render_diagram(standard_diagram())
        state = run_pipeline(image)
        assert state.status == PipelineStatus.DONE
        assert not state.calibration_applied
        found = {r.id: r for r in state.results}
        assert set(found) == set(truth)
        for marker_id, box in truth.items():
            assert _close(found[marker_id].bounding_box, box), marker_id

    def test_reading_order(self):
        image, _ = render_diagram(standard_diagram())
        ids = [r.id for r in run_pipeline(image).results]
        assert ids == ["3", "12", "24", "9"]

    def test_grayscale_render(self):
        image, truth = render_diagram(standard_diagram(), color=False)
        assert {r.id for r in recognize_markers(image)} == set(truth)

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
    def test_random_diagrams(self, seed):
        diagram = random_diagram(seed)
        image, truth = render_diagram(diagram)
        results = recognize_markers(image)
        assert {r.id for r in results} == diagram.ids
        for result in results:
            assert _close(result.bounding_box, truth[result.id])


class TestProviderPath:
    def test_collapsed_provider_boxes_are_calibrated(self, stub_llm):
        llm = stub_llm([
            {"text": "16", "confidence": 0.9},
            {"text": "24", "confidence": 0.9},
            {"text": "3", "confidence": 0.9},
        ])
        image = RasterImage(np.full((600, 800), 255, dtype=np.uint8))
        state = run_pipeline(image, PipelineConfig(text_provider="openai"), llm=llm)
        assert state.status == PipelineStatus.DONE
        assert state.symbol_source == "provider"
        assert state.calibration_applied
        assert {r.id for r in state.results} == {"16", "24", "3"}
        for result in state.results:
            assert result.box_source == "layout"
            assert result.confidence == pytest.approx(0.81)
            assert result.bounding_box.contained_in(800, 600)

    def test_provider_failure_still_finds_markers(self, stub_llm, sixteen_image):
        state = run_pipeline(
            sixteen_image, PipelineConfig(text_provider="openai"), llm=stub_llm(OpenAIError("boom"))
        )
        assert state.status == PipelineStatus.DONE
        assert [r.id for r in state.results] == ["16"]
        assert "W_PROVIDER_FALLBACK:provider_unavailable" in state.warnings

    async def test_async_provider(self, stub_llm, sixteen_image):
        llm = stub_llm([{"text": "16", "confidence": 0.9, "x": 306, "y": 250, "width": 64, "height": 45}])
        state = await run_pipeline_async(sixteen_image, PipelineConfig(text_provider="openai"), llm=llm)
        assert state.symbol_source == "provider"
        assert [r.id for r in state.results] == ["16"]


class TestStageFailures:
    @pytest.mark.parametrize(
        "target,stage,error_type",
        [
            ("part_markers.nodes.recognition.match", ProcessingStage.RECOGNIZE, "template_matching_failed"),
            ("part_markers.nodes.grouping.group", ProcessingStage.GROUP, "grouping_failed"),
            ("part_markers.nodes.calibration.validate", ProcessingStage.VALIDATE, "validation_failed"),
            ("part_markers.nodes.calibration.calibrate", ProcessingStage.CALIBRATE, "calibration_failed"),
        ],
    )
    def test_stage_error_ends_in_failed_state(
        self, monkeypatch, sixteen_image, target, stage, error_type
    ):
        def broken(*args, **kwargs):
            raise ValueError("broken stage")

        monkeypatch.setattr(target, broken)
        state = run_pipeline(sixteen_image)
        assert state.status == PipelineStatus.FAILED
        assert state.results == []
        assert state.failure.stage == stage
        assert state.failure.error_type == error_type
        assert state.failure.details["width"] == 800
        assert state.failure.details["height"] == 600

    def test_stage_error_raises_from_wrapper(self, monkeypatch, sixteen_image):
        def broken(*args, **kwargs):
            raise ValueError("broken stage")

        monkeypatch.setattr("part_markers.nodes.grouping.group", broken)
        with pytest.raises(PipelineFailure) as exc_info:
            recognize_markers(sixteen_image)
        assert exc_info.value.error.stage == ProcessingStage.GROUP
