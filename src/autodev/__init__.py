"""autodev: run decomposed project plans with a pool of AI agents."""

from autodev.config import VERSION

__version__ = VERSION
