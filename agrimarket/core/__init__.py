"""
Core package for shared utilities.

Configuration, structured logging and token verification shared by the
service and API layers.
"""
