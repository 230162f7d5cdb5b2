"""
KYC Validation Pipeline

This package contains the complete pipeline for identity document validation:
- Image statistics and photo / face checks
- Signature and card-side consistency checks
- Document OCR classification with license back extraction
- Duplicate upload detection, scoring and final decision
"""

__version__ = "1.0.0"
