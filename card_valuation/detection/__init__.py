"""Card detection module"""
from .card_detector import CardRegion, detect_card_region, edge_mask

__all__ = ['CardRegion', 'detect_card_region', 'edge_mask']
