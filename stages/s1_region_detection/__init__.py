from .detector import RegionDetector

__all__ = ["RegionDetector"]
