from .logger import AuditLogger

__all__ = ["AuditLogger"]
