import numpy as np
import pytest

from faceclock.detect.postprocess import (
    FaceBox,
    Letterbox,
    crop_face,
    expand_box,
    iou,
    non_max_suppression,
    postprocess_detections,
)

# 640x480 image into a 640x640 model input: scale 1, 80px bars top and bottom
LB = Letterbox.fit(640, 480, 640)


def row(cx, cy, w, h, conf):
    return [cx / 640.0, cy / 640.0, w / 640.0, h / 640.0, conf]


def test_letterbox_fit_landscape():
    assert LB.scale == 1.0
    assert LB.pad_x == 0
    assert LB.pad_y == 80


def test_letterbox_fit_downscale():
    lb = Letterbox.fit(1280, 720, 640)
    assert lb.scale == pytest.approx(0.5)
    assert lb.pad_x == 0
    assert lb.pad_y == (640 - 360) // 2


def test_facebox_rejects_invalid_values():
    with pytest.raises(ValueError):
        FaceBox(0, 0, 0, 10, 0.5)
    with pytest.raises(ValueError):
        FaceBox(0, 0, 10, 10, 1.5)


def test_iou_identical_and_disjoint():
    a = FaceBox(0, 0, 100, 100, 0.9)
    b = FaceBox(200, 200, 100, 100, 0.8)
    assert iou(a, a) == pytest.approx(1.0)
    assert iou(a, b) == 0.0


def test_nms_drops_overlapping_lower_confidence_box():
    strong = FaceBox(0, 0, 100, 100, 0.9)
    weak = FaceBox(10, 0, 100, 100, 0.8)      # IoU = 90/110 ~ 0.82
    kept = non_max_suppression([weak, strong], iou_threshold=0.45)
    assert kept == [strong]


def test_nms_keeps_boxes_below_threshold():
    a = FaceBox(0, 0, 100, 100, 0.9)
    b = FaceBox(70, 0, 100, 100, 0.8)         # IoU = 30/170 ~ 0.18
    kept = non_max_suppression([a, b], iou_threshold=0.45)
    assert len(kept) == 2


def test_postprocess_maps_back_to_image_space():
    raw = np.array([row(320, 320, 160, 160, 0.9)], dtype=np.float32)
    boxes = postprocess_detections(raw, 640, 480, LB, conf_threshold=0.75)
    assert len(boxes) == 1
    box = boxes[0]
    assert box.x == pytest.approx(240)
    assert box.y == pytest.approx(160)
    assert box.width == pytest.approx(160)
    assert box.height == pytest.approx(160)
    assert box.confidence == pytest.approx(0.9)


def test_postprocess_accepts_channels_first_with_batch_axis():
    raw = np.array([row(320, 320, 160, 160, 0.9), row(100, 200, 100, 100, 0.8)], dtype=np.float32)
    batched = raw.T[np.newaxis, ...]          # (1, 5, N)
    boxes = postprocess_detections(batched, 640, 480, LB, conf_threshold=0.5)
    assert len(boxes) == 2


def test_postprocess_filters_confidence_and_min_size():
    raw = np.array([
        row(320, 320, 160, 160, 0.7),         # below verification threshold
        row(100, 300, 64, 64, 0.95),          # smaller than 80px
    ], dtype=np.float32)
    assert postprocess_detections(raw, 640, 480, LB, conf_threshold=0.75) == []
    enrolled = postprocess_detections(raw, 640, 480, LB, conf_threshold=0.5)
    assert len(enrolled) == 1
    assert enrolled[0].confidence == pytest.approx(0.7)


def test_postprocess_skips_non_finite_rows():
    raw = np.array([row(320, 320, 160, 160, 0.9), [np.nan, 0.5, 0.2, 0.2, 0.99]], dtype=np.float32)
    boxes = postprocess_detections(raw, 640, 480, LB)
    assert len(boxes) == 1


def test_postprocess_sorts_largest_face_first():
    raw = np.array([
        row(100, 250, 90, 90, 0.99),
        row(450, 300, 200, 200, 0.80),
    ], dtype=np.float32)
    boxes = postprocess_detections(raw, 640, 480, LB)
    assert [round(b.width) for b in boxes] == [200, 90]


def test_postprocess_clamps_to_image():
    raw = np.array([row(620, 320, 160, 160, 0.9)], dtype=np.float32)
    boxes = postprocess_detections(raw, 640, 480, LB)
    assert len(boxes) == 1
    assert boxes[0].x2 == pytest.approx(640)
    assert boxes[0].width == pytest.approx(100)


def test_postprocess_padding_expands_boxes():
    raw = np.array([row(320, 320, 160, 160, 0.9)], dtype=np.float32)
    box = postprocess_detections(raw, 640, 480, LB, padding=0.2)[0]
    assert box.width == pytest.approx(192)
    assert box.x == pytest.approx(224)


def test_postprocess_empty_output():
    assert postprocess_detections(np.zeros((0, 5)), 640, 480, LB) == []


def test_expand_box_reclamps_at_border():
    box = FaceBox(0, 0, 100, 100, 0.9)
    grown = expand_box(box, 0.2, 640, 480)
    assert grown.x == 0
    assert grown.width == pytest.approx(110)


def test_crop_face_is_square():
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    crop = crop_face(frame, FaceBox(100, 100, 80, 120, 0.9), margin=0.1)
    assert crop.shape[0] == crop.shape[1] == 144


def test_crop_face_outside_frame_is_none():
    frame = np.zeros((100, 100, 3), dtype=np.uint8)
    assert crop_face(frame, FaceBox(1000, 1000, 50, 50, 0.9)) is None


def test_nms_suppresses_at_exact_threshold():
    strong = FaceBox(0, 0, 100, 100, 0.9)
    half = FaceBox(0, 0, 100, 50, 0.8)        # IoU = 5000/10000 = 0.5
    assert iou(strong, half) == 0.5
    assert non_max_suppression([half, strong], iou_threshold=0.5) == [strong]


def landmark_output(rows, n):
    """(1, 20, n) tensor: box + conf rows, 15 landmark channels of noise."""
    out = np.full((n, 20), 0.3, dtype=np.float32)
    out[:, 4] = 0.0
    for i, r in enumerate(rows):
        out[i, :5] = r
    return out.T[np.newaxis, ...]


@pytest.mark.parametrize("n", [8400, 8, 3])
def test_postprocess_decodes_landmark_channels(n):
    raw = landmark_output([row(320, 320, 160, 160, 0.9)], n)
    assert raw.shape == (1, 20, n)
    boxes = postprocess_detections(raw, 640, 480, LB, conf_threshold=0.75)
    assert len(boxes) == 1
    assert boxes[0].x == pytest.approx(240)
    assert boxes[0].width == pytest.approx(160)


def test_postprocess_accepts_rows_with_extra_columns():
    raw = landmark_output([row(320, 320, 160, 160, 0.9)], 8400)[0].T   # (8400, 20)
    boxes = postprocess_detections(raw, 640, 480, LB)
    assert len(boxes) == 1
