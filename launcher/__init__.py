"""
OpenClaw Launcher - control plane for a sandboxed OpenClaw gateway.

This package brings up the OpenClaw container inside a local container
engine, verifies it is healthy, recovers from prior state, and reports
step-level progress to observers.
"""

__version__ = "0.1.0"
