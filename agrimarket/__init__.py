"""
Agrimarket lifecycle core.

Order, service booking and support ticket workflows for the agricultural
marketplace, exposed through a FastAPI application.
"""

__version__ = "1.0.0"
