"""Feature extraction: image bytes -> FeatureEnvelope"""
from .extractor import FeatureExtractionService

__all__ = ['FeatureExtractionService']
