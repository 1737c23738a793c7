"""
Processors: transform, filter, sample and batch data inside a pipeline.
"""

from .attributes import AttributesProcessor, ResourceProcessor, apply_actions
from .base import Processor
from .batch import BatchProcessor
from .filter import FilterProcessor
from .memory_limiter import MemoryLimiterProcessor
from .probabilistic_sampler import ProbabilisticSamplerProcessor

BUILTIN_PROCESSORS = (
    AttributesProcessor,
    BatchProcessor,
    FilterProcessor,
    MemoryLimiterProcessor,
    ProbabilisticSamplerProcessor,
    ResourceProcessor,
)

__all__ = [
    "AttributesProcessor",
    "BUILTIN_PROCESSORS",
    "BatchProcessor",
    "FilterProcessor",
    "MemoryLimiterProcessor",
    "ProbabilisticSamplerProcessor",
    "Processor",
    "ResourceProcessor",
    "apply_actions",
]
