"""
IMU Preintegration for Factor-Graph Navigation

Provides examples demonstrating:
    - Preintegrating a high-rate IMU stream into keyframe-to-keyframe factors
    - Growth of the preintegrated covariance within an interval
    - Residuals of IMU factors at the true states
    - Keyframe prediction from preintegrated measurements

Examples:
    - example_imu_preintegration.py: Constant-rate motion with noisy IMU
"""

__version__ = "0.1.0"
__all__ = []
