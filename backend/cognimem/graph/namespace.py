"""Namespace selection shared by every scoped graph query."""
from sqlalchemy import true


class _AllNamespaces:
    def __repr__(self) -> str:
        return "ALL_NAMESPACES"


# Pass as `namespace=` to read across every namespace, global included
ALL_NAMESPACES = _AllNamespaces()


def namespace_clause(column, namespace):
    """WHERE clause selecting one namespace; None is the global namespace."""
    if namespace is ALL_NAMESPACES:
        return true()
    if namespace is None:
        return column.is_(None)
    return column == namespace
