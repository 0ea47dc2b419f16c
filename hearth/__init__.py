"""Hearth: provisions a Windows worker node so it can join a Kubernetes cluster."""

__version__ = "0.3.0"
