"""Exercise video pose analysis: detection, 2D keypoints, refinement and 3D lifting."""

__version__ = "0.1.0"
