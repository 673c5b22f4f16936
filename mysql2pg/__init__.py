"""
MySQL to PostgreSQL offline migration engine
"""

__version__ = '1.0.0'
