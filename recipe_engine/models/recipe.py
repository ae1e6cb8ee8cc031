"""
Recipe Model
Database model for recipe (DAG workflow) definitions
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from datetime import datetime
from . import Base


class Recipe(Base):
    """
    Recipe Model

    Stores a named, versioned DAG definition.
    nodes/edges are stored exactly as submitted (JSON); they are parsed and
    validated by core.dag on every create, update and execution.
    """
    __tablename__ = "recipes"

    id = Column(String(255), primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    stage_type = Column(String(100), nullable=True, index=True)

    # Incremented whenever nodes/edges change
    version = Column(Integer, nullable=False, default=1)

    # Example: [{"id": "gen_text", "type": "text_generation", "prompt": "Describe {topic}"}]
    nodes = Column(JSON, nullable=False)

    # Example: [{"from": "gen_text", "to": "gen_image", "fromOutput": "output", "toInput": "input"}]
    edges = Column(JSON, nullable=False)

    execution_config = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)

    # Soft-delete flag
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "stageType": self.stage_type,
            "version": self.version,
            "nodes": self.nodes,
            "edges": self.edges,
            "executionConfig": self.execution_config,
            "metadata": {
                "createdBy": self.created_by,
                "isActive": self.is_active,
                "tags": self.tags or [],
                "createdAt": self.created_at.isoformat() if self.created_at else None,
                "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            },
        }

    def __repr__(self):
        return f"<Recipe(id='{self.id}', name='{self.name}', version={self.version})>"
