"""
Main Pipeline Module.

Drives the compositing pipeline from an external clock.
"""

from .orchestrator import PipelineOrchestrator, PipelineConfig
