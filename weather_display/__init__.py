"""
Weather Display - cached weather data service.
"""
__version__ = "3.0.0"
