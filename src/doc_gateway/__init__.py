"""
Document Conversion Gateway package.

This module provides a FastAPI application that converts uploaded office
documents to PDF through a headless LibreOffice subprocess. The converter
endpoint is available at `/convert`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
