"""CFDI fiscal-document extraction pipeline.

Turns Mexican invoices and receipts (CFDI XML, PDF, or photographed
tickets) into normalized, confidence-scored fiscal records by combining
cloud OCR, a prioritized pattern cascade, and an optional AI mapper.
"""

__version__ = "1.0.0"
