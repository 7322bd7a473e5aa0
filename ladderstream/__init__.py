"""
LadderStream - multi-resolution HLS transcoding service
"""

__version__ = "1.0.0"
