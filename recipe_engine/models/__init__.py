"""
Models module - SQLAlchemy database models
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models after Base is defined to avoid circular imports
from .recipe import Recipe  # noqa: E402
from .execution import RecipeExecution  # noqa: E402

__all__ = ["Base", "Recipe", "RecipeExecution"]
