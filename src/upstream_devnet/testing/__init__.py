"""Test doubles for exercising the harness without Radicle binaries."""
