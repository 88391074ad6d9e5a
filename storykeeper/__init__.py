"""storykeeper: story lifecycle archival and comment-tree reconstruction."""

__version__ = "0.1.0"
