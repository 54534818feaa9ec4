"""SE(3) pose graph optimisation and BAL bundle-adjustment problem tools."""

__version__ = "0.1.0"