"""sparkcloud - device cloud server with webhook dispatch."""
__version__ = "0.1.0"
