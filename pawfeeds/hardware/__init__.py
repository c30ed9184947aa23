"""Feeder hardware: actuators, network link, protocol types and runtime."""
