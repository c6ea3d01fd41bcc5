"""storyshelf - a child's library of songs, poems and stories."""

__version__ = "0.1.0"
