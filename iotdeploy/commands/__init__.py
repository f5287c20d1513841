"""iotdeploy CLI commands"""
