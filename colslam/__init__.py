"""EPnP and Sim3 pose solvers with RANSAC, settings loading, run control and trajectory export."""

__version__ = "0.1.0"