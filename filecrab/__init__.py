"""filecrab: share files and text through short-lived storage with memorable ids."""

__version__ = "0.1.0"
