from .base import (
    CatalogPublisher,
    GenerationProvider,
    PollResult,
    PollStatus,
    SyncProcessor,
)
from .blog_generator import AnthropicBlogGenerator
from .catalog_client import CatalogClient
from .image_generator import ReplicateImageGenerator
from .text_optimizer import TextOptimizer

__all__ = [
    "AnthropicBlogGenerator",
    "CatalogClient",
    "CatalogPublisher",
    "GenerationProvider",
    "PollResult",
    "PollStatus",
    "ReplicateImageGenerator",
    "SyncProcessor",
    "TextOptimizer",
]
