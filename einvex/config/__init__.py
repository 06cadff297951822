from einvex.config.einvex_config import EinvexConfig

__all__ = ['EinvexConfig']
