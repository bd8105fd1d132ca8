"""SQLAlchemy helpers shared by the database adapters."""
