from pydantic import BaseModel, Field


class ResolveRequest(BaseModel):
    origin_lat: float
    origin_lon: float
    dest_lat: float
    dest_lon: float


class OptionDetailRequest(ResolveRequest):
    selected_option_index: int = Field(ge=0)


class BusSegmentRequest(BaseModel):
    route_number: str
    from_stop_code: str
    to_stop_code: str


class LegOut(BaseModel):
    mode: str
    route_number: str = ""
    geometry: list[list[float]]  # [[lon, lat], ...]
    distance_meters: float
    duration_seconds: int
    source: str


class RouteResponse(BaseModel):
    geometry: list[list[float]]  # [[lon, lat], ...]
    distance_meters: float
    duration_seconds: int
    source: str
    cache_hit: bool
    original_points: int = 0
    legs: list[LegOut] = []


class ItineraryOptionOut(BaseModel):
    index: int
    route_numbers: list[str]
    total_duration_minutes: int
    summary: str = ""
    walking_time_minutes: int = 0
    transfers: int = 0


class CacheEntryOut(BaseModel):
    key: str
    access_count: int


class CacheStatsOut(BaseModel):
    hits: int
    misses: int
    hit_rate: float  # percent
    cached_count: int
    max_size: int
    evictions: int = 0
    ttl_seconds: float
    top_entries: list[CacheEntryOut] = []
