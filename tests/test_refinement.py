"""Unit tests for 2D refinement: gap filling, smoothing, remapping and normalization."""
from dataclasses import replace

import numpy as np
import pytest

from fitpose.analysis.postprocess.refinement import (
    PoseRefiner,
    coco_to_h36m,
    ema_smooth,
    fill_gaps,
    moving_average,
    normalize_pose,
)
from fitpose.config import EMAConfig, NormalizeConfig, PostprocessConfig
from fitpose.errors import InvalidPoseDocumentError
from fitpose.models.documents import Keypoint2D, PoseDocument, PoseFrame, VideoInfo
from fitpose.models.keypoint_schema import COCOKeypoint, H36MKeypoint

VIDEO = VideoInfo(video_width=640, video_height=480, fps=30.0, sampled_fps=5.0)


def _track(values, valid):
    """Single-joint track of [x, y, score] samples."""
    points = np.array(values, dtype=np.float64).reshape(len(values), 1, 3)
    return points, np.array(valid, dtype=bool).reshape(len(valid), 1)


def _coco_pose(offset=0.0, score=0.9):
    return np.array([[10.0 * k + offset, 5.0 * k + offset, score] for k in range(17)])


def _pose_frame(fi, ok=True, pose=None):
    keypoints = []
    if pose is not None:
        keypoints = [Keypoint2D(x=p[0], y=p[1], score=p[2]) for p in pose]
    return PoseFrame(fi=fi, t=round(fi / 30.0, 3), ok=ok, keypoints=keypoints)


def _pose_document(frames, num_keypoints=17):
    return PoseDocument(video=VIDEO, num_keypoints=num_keypoints, simcc_ratio=2.0,
                        input_width=192, input_height=256, frames=frames)


class TestFillGaps:
    """Test linear filling of short gaps."""

    def test_interior_gap_is_linear(self):
        """Test an interior gap is filled by linear interpolation."""
        values = [[0.0, 0.0, 1.0]] * 10
        values[5] = [10.0, 20.0, 0.5]
        valid = [i in (0, 5) for i in range(10)]
        points, mask = _track(values, valid)

        filled, filled_mask, counts = fill_gaps(points, mask, max_gap=5)

        for k in range(1, 5):
            expected = np.array([0.0, 0.0, 1.0]) + k * (np.array([10.0, 20.0, 0.5]) - [0.0, 0.0, 1.0]) / 5
            np.testing.assert_allclose(filled[k, 0], expected)
            assert filled_mask[k, 0]
        assert counts.tolist() == [4]

    def test_trailing_run_stays_invalid(self):
        """Test invalid samples after the last valid one are not filled."""
        valid = [i in (0, 5) for i in range(10)]
        points, mask = _track([[float(i), 0.0, 1.0] for i in range(10)], valid)

        _, filled_mask, _ = fill_gaps(points, mask, max_gap=5)

        assert not filled_mask[6:, 0].any()

    def test_leading_run_stays_invalid(self):
        """Test invalid samples before the first valid one are not filled."""
        points, mask = _track([[0.0, 0.0, 1.0]] * 4, [False, False, True, True])

        _, filled_mask, counts = fill_gaps(points, mask, max_gap=5)

        assert filled_mask[:, 0].tolist() == [False, False, True, True]
        assert counts.tolist() == [0]

    def test_long_gap_not_filled(self):
        """Test gaps longer than the limit stay invalid."""
        valid = [True] + [False] * 6 + [True]
        points, mask = _track([[0.0, 0.0, 1.0]] * 8, valid)

        _, filled_mask, _ = fill_gaps(points, mask, max_gap=5)

        assert filled_mask[:, 0].tolist() == valid

    def test_zero_max_gap_disables_filling(self):
        """Test a zero limit disables filling."""
        points, mask = _track([[0.0, 0.0, 1.0]] * 3, [True, False, True])

        _, filled_mask, _ = fill_gaps(points, mask, max_gap=0)

        assert not filled_mask[1, 0]

    def test_idempotent(self):
        """Test filling twice gives the same result."""
        valid = [True, False, False, True, False, True]
        points, mask = _track([[float(i), 2.0 * i, 0.8] for i in range(6)], valid)

        once = fill_gaps(points, mask, max_gap=5)
        twice = fill_gaps(once[0], once[1], max_gap=5)

        np.testing.assert_array_equal(once[0], twice[0])
        np.testing.assert_array_equal(once[1], twice[1])
        assert twice[2].tolist() == [0]

    def test_inputs_not_mutated(self):
        """Test the input arrays are left untouched."""
        points, mask = _track([[0.0, 0.0, 1.0], [5.0, 5.0, 1.0], [2.0, 2.0, 1.0]], [True, False, True])

        fill_gaps(points, mask, max_gap=5)

        assert points[1, 0, 0] == 5.0
        assert not mask[1, 0]


class TestSmoothing:
    """Test EMA and moving average smoothing."""

    def test_ema_seeds_on_first_valid_sample(self):
        """Test the EMA starts from the first valid sample."""
        points, mask = _track([[0.0, 0.0, 1.0], [10.0, 0.0, 1.0], [20.0, 0.0, 1.0]], [True, True, True])

        smoothed = ema_smooth(points, mask, alpha=0.5)

        assert smoothed[:, 0, 0].tolist() == pytest.approx([0.0, 5.0, 12.5])

    def test_ema_invalid_samples_do_not_advance_state(self):
        """Test invalid samples are skipped by the EMA."""
        points, mask = _track([[0.0, 0.0, 1.0], [100.0, 0.0, 1.0], [20.0, 0.0, 1.0]], [True, False, True])

        smoothed = ema_smooth(points, mask, alpha=0.5)

        assert smoothed[:, 0, 0].tolist() == pytest.approx([0.0, 50.0, 10.0])

    def test_ema_before_seed_passes_through(self):
        """Test samples before the seed pass through unchanged."""
        points, mask = _track([[7.0, 0.0, 1.0], [3.0, 0.0, 1.0]], [False, True])

        smoothed = ema_smooth(points, mask, alpha=0.5)

        assert smoothed[:, 0, 0].tolist() == [7.0, 3.0]

    def test_moving_average_is_trailing(self):
        """Test the moving average only looks backwards."""
        points, _ = _track([[0.0, 0.0, 1.0], [2.0, 0.0, 1.0], [4.0, 0.0, 1.0], [6.0, 0.0, 1.0]], [True] * 4)

        smoothed = moving_average(points, window=2)

        assert smoothed[:, 0, 0].tolist() == pytest.approx([0.0, 1.0, 3.0, 5.0])

    def test_moving_average_window_one_is_identity(self):
        """Test a window of one changes nothing."""
        points, _ = _track([[1.0, 2.0, 0.5], [3.0, 4.0, 0.5]], [True, True])

        np.testing.assert_array_equal(moving_average(points, window=1), points)


class TestCocoToH36M:
    """Test COCO to H36M joint conversion."""

    def test_derived_joints(self):
        """Test hip, spine, thorax and neck are derived from COCO joints."""
        pose = _coco_pose()
        pose[COCOKeypoint.LEFT_HIP.value, 2] = 0.4

        out = coco_to_h36m(pose, head_top_factor=0.5)

        lhip, rhip = pose[COCOKeypoint.LEFT_HIP.value], pose[COCOKeypoint.RIGHT_HIP.value]
        lsh, rsh = pose[COCOKeypoint.LEFT_SHOULDER.value], pose[COCOKeypoint.RIGHT_SHOULDER.value]
        pelvis = (lhip[:2] + rhip[:2]) / 2
        neck = (lsh[:2] + rsh[:2]) / 2

        np.testing.assert_allclose(out[H36MKeypoint.PELVIS.value], [*pelvis, 0.4])
        np.testing.assert_allclose(out[H36MKeypoint.NECK.value, :2], neck)
        np.testing.assert_allclose(out[H36MKeypoint.SPINE.value, :2], (pelvis + neck) / 2)
        assert out[H36MKeypoint.SPINE.value, 2] == pytest.approx(0.4)

    def test_head_top_extrapolates_from_neck(self):
        """Test head top extends from neck through nose."""
        pose = _coco_pose()
        out = coco_to_h36m(pose, head_top_factor=0.5)

        nose = pose[COCOKeypoint.NOSE.value]
        neck = out[H36MKeypoint.NECK.value]
        np.testing.assert_allclose(out[H36MKeypoint.HEAD_TOP.value, :2], nose[:2] + 0.5 * (nose[:2] - neck[:2]))
        assert out[H36MKeypoint.HEAD_TOP.value, 2] == pytest.approx(nose[2])

    def test_direct_joints_copied(self):
        """Test limb joints are copied across."""
        pose = _coco_pose()
        out = coco_to_h36m(pose, head_top_factor=0.5)

        np.testing.assert_array_equal(out[H36MKeypoint.RIGHT_WRIST.value], pose[COCOKeypoint.RIGHT_WRIST.value])
        np.testing.assert_array_equal(out[H36MKeypoint.LEFT_ANKLE.value], pose[COCOKeypoint.LEFT_ANKLE.value])

    def test_too_few_joints_maps_to_zeros(self):
        """Test an input with too few joints yields zeros."""
        out = coco_to_h36m(np.ones((12, 3)), head_top_factor=0.5)

        assert out.shape == (17, 3)
        assert not out.any()


class TestNormalizePose:
    """Test root centring and bone-length scaling."""

    def _joints(self):
        joints = np.zeros((17, 3))
        joints[:, 0] = 10.0
        joints[:, 1] = 20.0
        joints[8] = [13.0, 24.0, 0.9]
        return joints

    def test_root_at_origin_unit_bone(self):
        """Test the root lands at the origin and the scale bone has unit length."""
        values, center, scale = normalize_pose(self._joints(), NormalizeConfig())

        assert scale == pytest.approx(5.0)
        np.testing.assert_allclose(center, [10.0, 20.0])
        np.testing.assert_allclose(values[0, :2], [0.0, 0.0])
        np.testing.assert_allclose(values[8], [0.6, 0.8, 0.9])

    def test_degenerate_bone_uses_epsilon(self):
        """Test a zero-length scale bone does not divide by zero."""
        joints = np.zeros((17, 3))

        _, _, scale = normalize_pose(joints, NormalizeConfig())

        assert scale == pytest.approx(1e-6)

    def test_out_of_range_indices_clamped(self):
        """Test joint indices outside the skeleton are clamped."""
        config = NormalizeConfig(root_joint=99, scale_joint_a=-3, scale_joint_b=99)
        joints = self._joints()
        joints[16] = [1.0, 2.0, 0.5]

        values, center, _ = normalize_pose(joints, config)

        np.testing.assert_allclose(center, [1.0, 2.0])
        np.testing.assert_allclose(values[16, :2], [0.0, 0.0])

    def test_disabled_passes_through(self):
        """Test disabled normalization leaves joints unchanged."""
        joints = self._joints()

        values, _, _ = normalize_pose(joints, NormalizeConfig(enabled=False))

        np.testing.assert_array_equal(values, joints)


class TestPoseRefiner:
    """Test the refine stage over pose documents."""

    @pytest.fixture
    def refiner(self):
        return PoseRefiner(replace(PostprocessConfig(), ema=EMAConfig(enabled=False)))

    def test_rejects_document_without_keypoints(self, refiner):
        """Test a document with no keypoints is rejected."""
        document = _pose_document([_pose_frame(0, ok=False)], num_keypoints=0)

        with pytest.raises(InvalidPoseDocumentError):
            refiner.refine(document)

    def test_frame_count_preserved(self, refiner):
        """Test refined and normalized documents keep every frame."""
        frames = [_pose_frame(0, pose=_coco_pose()), _pose_frame(6, ok=False), _pose_frame(12, pose=_coco_pose(4.0))]

        refined, normalized = refiner.refine(_pose_document(frames))

        assert [f.fi for f in refined.frames] == [0, 6, 12]
        assert [f.fi for f in normalized.frames] == [0, 6, 12]
        assert normalized.skeleton == "h36m_17"
        assert all(len(f.keypoints) == 17 for f in normalized.frames)

    def test_missing_frame_filled_from_neighbours(self, refiner):
        """Test a missing frame is interpolated from its neighbours."""
        frames = [_pose_frame(0, pose=_coco_pose()), _pose_frame(6, ok=False), _pose_frame(12, pose=_coco_pose(4.0))]

        refined, normalized = refiner.refine(_pose_document(frames))

        assert refined.frames[1].ok is True
        assert normalized.frames[1].ok is True
        assert refined.frames[1].keypoints[0].x == pytest.approx(2.0)
        assert refined.frames[1].keypoints[0].score == pytest.approx(0.9)

    def test_unfillable_frame_not_ok(self, refiner):
        """Test a frame that cannot be filled stays not ok."""
        frames = [_pose_frame(0, pose=_coco_pose()), _pose_frame(6, ok=False)]

        refined, normalized = refiner.refine(_pose_document(frames))

        assert refined.frames[1].ok is False
        assert normalized.frames[1].ok is False
        assert len(normalized.frames[1].keypoints) == 17

    def test_scores_clamped(self, refiner):
        """Test scores are clamped to one."""
        frames = [_pose_frame(0, pose=_coco_pose(score=1.4))]

        refined, _ = refiner.refine(_pose_document(frames))

        assert all(kp.score == 1.0 for kp in refined.frames[0].keypoints)

    def test_normalized_root_at_origin(self, refiner):
        """Test the normalized document is root centred."""
        refined, normalized = refiner.refine(_pose_document([_pose_frame(0, pose=_coco_pose())]))

        pelvis = normalized.frames[0].keypoints[H36MKeypoint.PELVIS.value]
        assert pelvis[:2] == pytest.approx([0.0, 0.0])
        assert refined.num_keypoints == 17
