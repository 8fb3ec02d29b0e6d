"""Keep many git working trees in view: status, pull and push across repositories."""

__version__ = "0.1.0"
