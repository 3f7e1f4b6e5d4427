"""changeloop: change ingestion, batched analysis triggering and outcome learning."""

from .version import __version__

__all__ = ["__version__"]
