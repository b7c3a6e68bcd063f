"""Provide the public `gba_runner` package exports."""

from __future__ import annotations

from .orchestrator import execute_run, run_feature

__all__ = ["execute_run", "run_feature"]
