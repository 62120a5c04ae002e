"""
MindCache package initialization.

Capture notes, websites, YouTube videos and tweets per user and retrieve them by
semantic similarity.
"""

# Setup logging configuration on package import
from .utils.logging_config import setup_logging

setup_logging()

__version__ = '0.1.0'
