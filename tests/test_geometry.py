"""Unit tests for rotation and box bookkeeping."""
import numpy as np
import pytest

from fitpose.analysis.geometry import (
    normalize_rotation,
    padded_box,
    rotate_image,
    rotated_size,
    unrotate_box,
    unrotate_point,
)


class TestNormalizeRotation:
    """Test rotation normalization and rotated frame size."""

    @pytest.mark.parametrize("deg,expected", [
        (0, 0), (90, 90), (180, 180), (270, 270),
        (360, 0), (450, 90), (-90, 270), (-180, 180), (89, 90),
    ])
    def test_quarter_turns(self, deg, expected):
        """Test angles are folded onto quarter turns in [0, 360)."""
        assert normalize_rotation(deg) == expected

    def test_rotated_size_swaps_for_quarter_turns(self):
        """Test width and height swap for 90 degree turns."""
        assert rotated_size(640, 480, 90) == (480, 640)
        assert rotated_size(640, 480, 270) == (480, 640)
        assert rotated_size(640, 480, 180) == (640, 480)


class TestUnrotatePoint:
    """Points in a frame rotated clockwise by deg map back to the source frame."""

    W, H = 640, 480

    def test_identity(self):
        """Test no rotation leaves the point unchanged."""
        assert unrotate_point(10, 20, 0, self.W, self.H) == (10, 20)

    def test_quarter_turn(self):
        """Test the 90 degree mapping."""
        # Rotated frame is H wide; its top-left is the source bottom-left
        assert unrotate_point(0, 0, 90, self.W, self.H) == (0, self.H)
        assert unrotate_point(10, 20, 90, self.W, self.H) == (20, self.H - 10)

    def test_half_turn(self):
        """Test the 180 degree mapping."""
        assert unrotate_point(10, 20, 180, self.W, self.H) == (self.W - 10, self.H - 20)

    def test_three_quarter_turn(self):
        """Test the 270 degree mapping."""
        assert unrotate_point(0, 0, 270, self.W, self.H) == (self.W, 0)
        assert unrotate_point(10, 20, 270, self.W, self.H) == (self.W - 20, 10)

    def test_matches_image_rotation(self):
        """A marked pixel ends up where unrotate_point says it came from."""
        image = np.zeros((self.H, self.W), dtype=np.uint8)
        image[100:102, 300:302] = 255  # 2x2 block, centre at (301, 101)

        for deg in (90, 180, 270):
            rotated = rotate_image(image, deg)
            vs, us = np.nonzero(rotated)
            u, v = us.mean() + 0.5, vs.mean() + 0.5  # pixel centres -> continuous coords
            x, y = unrotate_point(u, v, deg, self.W, self.H)
            assert (x, y) == pytest.approx((301.0, 101.0))


class TestUnrotateBox:
    """Test box mapping from the rotated frame to the source."""

    def test_quarter_turn_swaps_extent(self):
        """A 10 wide, 20 tall rotated box is 20 wide, 10 tall in the source."""
        x, y, w, h = unrotate_box(0, 0, 10, 20, 90, 640, 480)

        assert (x, y, w, h) == pytest.approx((0, 470, 20, 10))

    def test_full_frame_round_trip(self):
        """Test the whole rotated frame maps to the whole source frame."""
        for deg in (0, 90, 180, 270):
            rw, rh = rotated_size(640, 480, deg)
            assert unrotate_box(0, 0, rw, rh, deg, 640, 480) == pytest.approx((0, 0, 640, 480))

    def test_clamped_to_frame(self):
        """Test boxes are clamped to the source frame."""
        x, y, w, h = unrotate_box(-50, -50, 100, 100, 0, 640, 480)

        assert (x, y, w, h) == pytest.approx((0, 0, 50, 50))


class TestPaddedBox:
    """Test crop padding around a detection box."""

    def test_expands_about_centre(self):
        """Test padding grows the box about its centre."""
        assert padded_box(100, 100, 100, 200, 1.5, 1000, 1000) == (75, 50, 150, 300)

    def test_snaps_outward_to_whole_pixels(self):
        """Test fractional edges round outward."""
        # 10 * 1.25 = 12.5 wide about x=15 -> [8.75, 21.25] -> [8, 22]
        assert padded_box(10, 10, 10, 10, 1.25, 100, 100) == (8, 8, 14, 14)

    def test_clamped_to_image(self):
        """Test the padded box stays inside the image."""
        assert padded_box(0, 0, 100, 100, 2.0, 120, 120) == (0, 0, 120, 120)

    def test_minimum_one_pixel(self):
        """Test an empty box still yields a one pixel crop."""
        x, y, w, h = padded_box(50, 50, 0, 0, 1.25, 100, 100)

        assert w >= 1 and h >= 1

    def test_degenerate_box_at_edge_stays_inside(self):
        """Test a zero-size box on the far edge stays inside the image."""
        x, y, w, h = padded_box(100, 100, 0, 0, 1.0, 100, 100)

        assert x + w <= 100 and y + h <= 100
        assert w >= 1 and h >= 1

    def test_empty_image(self):
        """Test an empty image yields no crop."""
        assert padded_box(0, 0, 10, 10, 1.25, 0, 0) is None
