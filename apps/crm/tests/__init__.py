"""
Test suite for the Elta CRM backend.
"""

# Mark tests directory as Python package for proper imports
