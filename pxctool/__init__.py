"""Schedules, protobuf time, component discovery, kubectl tunnels and log streaming for a Portworx client."""

__version__ = "0.1.0"

__all__ = ["commander", "logs", "plugin", "portforward", "prototime", "sched"]