"""
Index Order Service

Index-conditional limit orders: a swap that only becomes fillable once an
oracle-backed index crosses a threshold.

Core imports are lazily loaded. For direct module access, import from
submodules:

    from indexorder.oracle import OracleRegistry
    from indexorder.orders import OrderBuilder, encode_predicate
    from indexorder.server.main import app
"""

__version__ = "1.0.0"


# Lazy imports to avoid loading the web and RPC stack at package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'app':
        from .server.main import app
        return app
    elif name == 'OrderService':
        from .server.service import OrderService
        return OrderService
    elif name == 'IndexOrderException':
        from .exceptions import IndexOrderException
        return IndexOrderException
    raise AttributeError(f"module 'indexorder' has no attribute {name!r}")

__all__ = ['app', 'OrderService', 'IndexOrderException']
