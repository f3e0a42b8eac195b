"""
URL-to-PDF Delivery Service package.

Converts batches of URLs into PDFs through an external rendering service and
delivers them by email (ZIP attachment) or through a shared Google Drive
folder. The FastAPI application lives in `url_pdf_service.webapi`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
