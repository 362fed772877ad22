"""Error taxonomy for route resolution, caching and persistence."""


class RouteGeoError(Exception):
    """Base exception for the route geometry engine."""


class InvalidCoordinates(RouteGeoError, ValueError):
    """Raised when a coordinate is NaN or outside the valid lat/lon range."""


class ProviderError(RouteGeoError):
    """A route provider timed out or returned a transport/parse error."""


class InvalidGeometry(ProviderError):
    """A provider returned fewer than two points or a zero distance."""


class ProviderUnavailable(RouteGeoError):
    """Every provider in the fallback chain failed."""

    def __init__(self, message: str, attempted: list[str] | None = None) -> None:
        super().__init__(message)
        self.attempted = attempted or []


class ShapeNotFound(RouteGeoError):
    """The shape store has no shape or stop for the requested identifier."""


class OptionNotFound(RouteGeoError, LookupError):
    """The itinerary service has no option at the requested index."""


class PersistenceFailure(RouteGeoError):
    """Loading or saving cache state against the durable store failed."""
