"""issueflow - drives issues through a staged resolution pipeline and archives them."""

__version__ = "0.1.0"
