"""Kubernetes operator for Flightdeck installations."""
