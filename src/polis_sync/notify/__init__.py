from .base import Publisher, Renderer
from .broadcast import Broadcaster
from .formatter import format_counts, format_sync_summary
from .render import CommandRenderer, NullRenderer

__all__ = [
    "Broadcaster",
    "CommandRenderer",
    "NullRenderer",
    "Publisher",
    "Renderer",
    "format_counts",
    "format_sync_summary",
]
