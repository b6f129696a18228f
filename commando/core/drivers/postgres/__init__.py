from .postgres import PostgresDriver

__all__ = ["PostgresDriver"]
