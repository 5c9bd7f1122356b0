"""
Chat Relay Components.

Organized into domain-specific modules:
- core/        - Foundational components (constants, domain models)
- connection/  - Connection registry and per-room locks
- rooms/       - Room store
- events/      - Inbound/outbound event types and payload schemas
- auth/        - Identity resolution
- persistence/ - Message persistence hooks
- metrics/     - Counters
- endpoints/   - WebSocket endpoint

Import from the specific submodules.
"""
