"""
mediaflow: node graph execution engine for media pipelines.
"""

__version__ = "0.1.0"
