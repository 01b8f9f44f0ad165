from pydantic import BaseModel


class SnapResult(BaseModel):
    route_id: str
    lat: float
    lng: float
    segment_index: int
    segment_fraction: float
    path_fraction: float
    distance_m: float


class RouteGeometryInfo(BaseModel):
    id: str
    number: str = ""
    name: str = ""
    geometry: list[list[float]] | None = None  # [[lng, lat], ...]


class StopInfo(BaseModel):
    id: str
    name: str
    lat: float
    lon: float
    route_id: str = ""


class ViewportMessage(BaseModel):
    type: str = "viewport"
    sw: tuple[float, float] | None = None  # [lng, lat]
    ne: tuple[float, float] | None = None  # [lng, lat]
