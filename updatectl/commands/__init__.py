from . import serve, start, status

__all__ = ['serve', 'start', 'status']
