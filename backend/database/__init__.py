from .connection import get_engine, get_session_factory, dispose_engine

__all__ = ['get_engine', 'get_session_factory', 'dispose_engine']
