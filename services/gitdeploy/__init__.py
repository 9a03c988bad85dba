"""git-deploy: webhook-triggered continuous deployment."""

__version__ = "0.1.0"
