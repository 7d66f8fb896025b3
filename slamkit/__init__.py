"""Visual odometry and bundle adjustment building blocks on NumPy and SciPy."""

__version__ = "0.1.0"