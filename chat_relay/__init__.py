"""
Chat relay: real-time chat rooms over WebSocket.

Modules:
- components/  - Building blocks (registry, rooms, events, auth, persistence)
- core/        - Fan-out, action routing and room lifecycle
- relay_manager - Composition root
- main         - FastAPI application
"""

__version__ = "1.0.0"
