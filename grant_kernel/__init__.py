"""
Grant Kernel

The innermost layer of the grant compliance engine:
- Domain value objects for the application aggregate
- Static module registry
- Typed exception hierarchy
- Structured logging
- Persistence base (SQLAlchemy)
"""

__version__ = "0.3.0"
