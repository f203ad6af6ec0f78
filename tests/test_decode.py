import numpy as np
import pytest

from webcam_overlay.exceptions import MalformedOutput
from webcam_overlay.inference.base import RawOutput
from webcam_overlay.inference.decode import OutputDecoder, candidate_records, decode_output
from webcam_overlay.session import ModelConfig, OutputLayout


def _config(labels, layout=OutputLayout.INTERLEAVED, size=640):
    return ModelConfig(input_width=size, input_height=size, labels=tuple(labels), output_layout=layout)


def test_interleaved_single_record_above_threshold():
    raw = RawOutput.from_array([100, 100, 40, 60, 0.2, 0.7])

    detections = decode_output(raw, _config(["cat", "dog"]), threshold=0.5)

    assert len(detections) == 1
    det = detections[0]
    assert det.class_id == 1
    assert det.confidence == pytest.approx(0.7)
    assert (det.box.center_x, det.box.center_y, det.box.width, det.box.height) == (100, 100, 40, 60)


def test_planar_person_example_keeps_first_candidate():
    output = np.array(
        [[[10, 50], [10, 50], [4, 4], [4, 4], [0.9, 0.1]]],
        dtype=np.float32,
    )
    raw = RawOutput.from_array(output)

    detections = decode_output(raw, _config(["person"], OutputLayout.PLANAR), threshold=0.5)

    assert len(detections) == 1
    det = detections[0]
    assert det.class_id == 0
    assert det.confidence == pytest.approx(0.9)
    assert det.box.center_x == 10
    assert det.box.center_y == 10


def test_planar_records_cover_every_candidate():
    num_predictions, num_classes = 7, 3
    output = np.arange((4 + num_classes) * num_predictions, dtype=np.float32).reshape(
        1, 4 + num_classes, num_predictions
    )
    records = candidate_records(RawOutput.from_array(output), _config(["a", "b", "c"], OutputLayout.PLANAR))

    assert records.shape == (num_predictions, 4 + num_classes)
    # attribute a of candidate i lives at a * num_predictions + i
    assert records[2, 5] == 5 * num_predictions + 2


def test_argmax_tie_picks_lowest_class_index():
    raw = RawOutput.from_array([10, 10, 2, 2, 0.1, 0.8, 0.8])

    detections = decode_output(raw, _config(["a", "b", "c"]), threshold=0.5)

    assert [det.class_id for det in detections] == [1]


def test_threshold_is_strict():
    raw = RawOutput.from_array([10, 10, 2, 2, 0.5, 0.25])

    assert decode_output(raw, _config(["a", "b"]), threshold=0.5) == []


def test_interleaved_count_bound_and_confidence():
    rng = np.random.default_rng(7)
    k = 50
    records = rng.random((k, 6), dtype=np.float32)
    raw = RawOutput.from_array(records)

    detections = decode_output(raw, _config(["a", "b"]), threshold=0.3)

    assert len(detections) <= k
    assert all(det.confidence > 0.3 for det in detections)


def test_decode_is_idempotent():
    rng = np.random.default_rng(3)
    raw = RawOutput.from_array(rng.random((20, 6), dtype=np.float32))
    decoder = OutputDecoder(_config(["a", "b"]), threshold=0.4)

    assert decoder.decode(raw) == decoder.decode(raw)


def test_empty_output_yields_no_detections():
    raw = RawOutput.from_array(np.zeros((0, 6), dtype=np.float32))

    assert decode_output(raw, _config(["a", "b"])) == []


def test_interleaved_length_not_multiple_of_stride():
    raw = RawOutput.from_array([1, 2, 3, 4, 0.9, 0.1, 5])

    with pytest.raises(MalformedOutput):
        decode_output(raw, _config(["a", "b"]))


def test_planar_attribute_count_must_match_classes():
    output = np.zeros((1, 5, 4), dtype=np.float32)

    with pytest.raises(MalformedOutput):
        decode_output(RawOutput.from_array(output), _config(["a", "b"], OutputLayout.PLANAR))


def test_planar_needs_two_dimensions():
    raw = RawOutput.from_array(np.zeros(10, dtype=np.float32))

    with pytest.raises(MalformedOutput):
        decode_output(raw, _config(["a"], OutputLayout.PLANAR))
