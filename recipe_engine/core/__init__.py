"""
Core engine: graph validation, input resolution, node execution, orchestration
"""
