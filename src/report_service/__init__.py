"""
Report PDF Service package.

Converts uploaded HTML account reports into paginated PDFs through a chain of
rendering backends. A FastAPI application exposing the REST endpoints lives
in ``report_service.webapi``.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
