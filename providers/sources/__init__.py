"""Auto-import all provider clients to trigger @register decorators."""

from providers.sources import (  # noqa: F401
    eventbrite,
    ticketmaster,
)
