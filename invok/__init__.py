"""Serverless function platform: a container autoscaling runtime and a command-line client."""

__version__ = "0.1.0"