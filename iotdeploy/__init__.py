"""iotdeploy - idempotent EKS lifecycle orchestration for the IoT stack"""

__version__ = "1.0.0"
