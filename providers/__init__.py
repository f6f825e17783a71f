"""Provider integrations — Cal.com, Calendly, Stripe, Zoom.

Each provider package follows the same layout:
- events.py: pydantic envelope + ``parse_event`` (idempotency key)
- handlers.py: ``register_handlers(dispatcher, stores)``
- adapter.py: REST calls through the resilient HTTP boundary
- __init__.py: ``DEFINITION`` consumed by ``providers.registry``
"""
