from .engine import Engine, EngineStats
from .router import Route, Router, routing_key

__all__ = ['Engine', 'EngineStats', 'Route', 'Router', 'routing_key']
