"""
Recipe Engine - DAG execution of content-generation recipes
"""

__version__ = "0.1.0"
