# =============================================================================
# drms_core/__init__.py
# Disaster Response Management System - Core Package
# =============================================================================
"""
Core package for the disaster response platform: relational store,
services, REST API, offline sync layer, reports and Streamlit helpers.
"""

__version__ = "1.0.0"
