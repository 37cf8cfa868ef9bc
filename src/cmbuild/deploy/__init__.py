"""Flashing and debugging hand-off."""

from .debugger import DebugSession, GdbBootstrap
from .deployer import DeploymentResult, Flasher

__all__ = ["DebugSession", "DeploymentResult", "Flasher", "GdbBootstrap"]
