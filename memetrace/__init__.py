"""
MemeTrace - Creator Attribution Service

Finds the probable original creator of an uploaded meme by chaining
vision and text model calls against a dataset of known posts.
"""

__version__ = "1.0.0"
__author__ = "MemeTrace Team"
__description__ = "Multi-stage creator attribution for memes"
