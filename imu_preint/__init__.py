"""On-manifold IMU preintegration for factor-graph state estimation.

This package collapses a stream of high-rate inertial samples into a single
relative-motion constraint between two keyframe states:
- geometry: SO(3)/SE(3) primitives (exp/log maps, right Jacobians)
- navigation: bias model, preintegration engine, IMU factor evaluator
- sim: synthetic IMU samples for constant-rate motion
"""

__version__ = "0.1.0"
