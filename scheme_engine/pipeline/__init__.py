"""Pipeline orchestration for sync cycles and notification processing."""

from .models import PipelineRunResult
from .runner import SyncPipeline

__all__ = ["SyncPipeline", "PipelineRunResult"]
