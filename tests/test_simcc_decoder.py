"""Unit tests for SIMCC decoding and layout inference."""
import numpy as np
import pytest

from fitpose.analysis.pose_estimation.simcc_decoder import bin_diversity, decode_simcc, joint_axis


def _simcc(num_joints, bins, peak_bins, peak=0.8):
    arr = np.zeros((1, num_joints, bins), dtype=np.float32)
    for k, b in enumerate(peak_bins):
        arr[0, k, b] = peak
    return arr


@pytest.fixture
def simcc_pair():
    """17 joints, 384 x-bins and 512 y-bins with distinct peaks per joint."""
    x = _simcc(17, 384, [20 + 15 * k for k in range(17)], peak=0.8)
    y = _simcc(17, 512, [40 + 25 * k for k in range(17)], peak=0.6)
    return x, y


class TestJointAxis:
    """Test detection of the joint axis in a SIMCC tensor."""

    def test_known_joint_count_wins(self):
        """Test an axis matching a known joint count is chosen."""
        assert joint_axis((17, 384)) == 0
        assert joint_axis((384, 17)) == 1
        assert joint_axis((512, 26)) == 1

    def test_falls_back_to_smaller_axis(self):
        """Test the smaller axis is chosen when no count is known."""
        assert joint_axis((20, 300)) == 0
        assert joint_axis((300, 20)) == 1

    def test_both_known_takes_smaller(self):
        """Test the smaller axis wins when both are known counts."""
        assert joint_axis((29, 17)) == 1

    def test_ties_take_first_axis(self):
        """Test equal axes resolve to the first."""
        assert joint_axis((40, 40)) == 0


class TestDecodeSimcc:
    """Test SIMCC decoding into points and scores."""

    def test_positions_are_bins_over_ratio(self, simcc_pair):
        """Test positions are argmax bins divided by the split ratio."""
        points, scores = decode_simcc(*simcc_pair, simcc_ratio=2.0)

        assert points.shape == (17, 2)
        np.testing.assert_allclose(points[:, 0], [(20 + 15 * k) / 2.0 for k in range(17)])
        np.testing.assert_allclose(points[:, 1], [(40 + 25 * k) / 2.0 for k in range(17)])

    def test_score_is_mean_of_maxima(self, simcc_pair):
        """Test the score averages the x and y maxima."""
        _, scores = decode_simcc(*simcc_pair, simcc_ratio=2.0)

        np.testing.assert_allclose(scores, np.full(17, 0.7), rtol=1e-6)

    def test_score_clamped_to_unit_interval(self):
        """Test scores above one are clamped."""
        x = _simcc(17, 384, range(17), peak=3.0)
        y = _simcc(17, 512, range(17), peak=2.0)

        _, scores = decode_simcc(x, y, 2.0)

        assert np.all(scores == 1.0)

    def test_swapped_axes_decode_identically(self, simcc_pair):
        """Test (bins, joints) tensors decode like (joints, bins)."""
        x, y = simcc_pair
        points_a, scores_a = decode_simcc(x, y, 2.0)
        points_b, scores_b = decode_simcc(np.transpose(x, (0, 2, 1)), np.transpose(y, (0, 2, 1)), 2.0)

        np.testing.assert_array_equal(points_a, points_b)
        np.testing.assert_array_equal(scores_a, scores_b)

    def test_mixed_layouts_decode_identically(self, simcc_pair):
        """Test x and y may use different layouts."""
        x, y = simcc_pair
        points_a, _ = decode_simcc(x, y, 2.0)
        points_b, _ = decode_simcc(x, np.transpose(y, (0, 2, 1)), 2.0)

        np.testing.assert_array_equal(points_a, points_b)

    def test_joint_count_is_minimum_of_both_axes(self):
        """Test mismatched joint counts decode the common joints."""
        x = _simcc(17, 384, range(17))
        y = np.zeros((1, 26, 512), dtype=np.float32)

        points, scores = decode_simcc(x, y, 2.0)

        assert len(points) == len(scores) == 17

    def test_collapsed_layout_falls_back_to_transposed(self):
        """
        12 bins x 20 joints: the shape guess reads the 12-long axis as joints.
        One joint's broad distribution then wins every row, so every "joint"
        decodes to the same bin and the transposed reading is kept.
        """
        x = np.zeros((12, 20), dtype=np.float32)
        x[:, 0] = 0.5
        x[0, 0] = 1.0
        for j in range(1, 20):
            x[j % 12, j] = 0.4
        y = x.copy()

        points, _ = decode_simcc(x, y, 1.0)

        assert len(points) == 20
        np.testing.assert_array_equal(points[:, 0], [j % 12 for j in range(20)])

    def test_bin_diversity(self):
        """Test the fraction of distinct bins."""
        assert bin_diversity(np.array([1, 2, 3]), np.array([4, 5, 6])) == 1.0
        assert bin_diversity(np.array([1, 1, 1]), np.array([1, 1, 1])) == pytest.approx(1 / 3)
        assert bin_diversity(np.array([]), np.array([])) == 0.0

    def test_rejects_batched_output(self):
        """Test tensors with batch size above one are rejected."""
        with pytest.raises(ValueError, match="batch"):
            decode_simcc(np.zeros((2, 17, 384)), np.zeros((2, 17, 512)), 2.0)
