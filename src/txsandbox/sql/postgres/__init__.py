from .interface import PostgresPool

__all__ = ("PostgresPool",)
