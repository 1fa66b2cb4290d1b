"""
Route resolver.

Queries the primary driving-route provider, then exactly one secondary,
and finally falls back to a straight line that cannot fail.
"""

import asyncio
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from config import (
  ROUTING_PRIMARY_URL,
  ROUTING_SECONDARY_API_KEY,
  ROUTING_SECONDARY_KIND,
  ROUTING_SECONDARY_URL,
  ROUTING_TIMEOUT_SECONDS,
)
from decoder import decode_polyline, geojson_line_points, validate_path
from errors import ProviderError
from geo import haversine_m
from state import PROVENANCE_FALLBACK, PROVENANCE_ROUTED, LatLng, RoutePlan, stats


def straight_line_plan(origin: LatLng, destination: LatLng) -> RoutePlan:
  distance = haversine_m(origin[0], origin[1], destination[0], destination[1])
  return RoutePlan(
    points=[(origin[0], origin[1]), (destination[0], destination[1])],
    distance_m=distance,
    provenance=PROVENANCE_FALLBACK,
  )


def _read_distance(value: Any, provider: str) -> float:
  if isinstance(value, bool):
    raise ProviderError("distance is not a number", provider)
  try:
    distance = float(value)
  except (TypeError, ValueError):
    raise ProviderError(f"distance is not a number: {value!r}", provider)
  if not math.isfinite(distance) or distance < 0:
    raise ProviderError(f"invalid distance {distance}", provider)
  return distance


class OsrmProvider:
  """OSRM-compatible /route/v1 endpoint."""

  def __init__(self, name: str, base_url: str, geometries: str = "geojson", profile: str = "driving"):
    self.name = name
    self.base_url = base_url.rstrip("/")
    self.geometries = geometries
    self.profile = profile

  def _request(self, origin: LatLng, destination: LatLng) -> Tuple[str, Dict[str, Any]]:
    coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
    url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
    params = {"overview": "full", "geometries": self.geometries, "steps": "false"}
    return url, params

  def _parse(self, data: Any) -> Tuple[List[LatLng], float]:
    if not isinstance(data, dict):
      raise ProviderError("response is not an object", self.name)
    if data.get("code") != "Ok":
      raise ProviderError(f"routing failed: {data.get('code')} {data.get('message', '')}".strip(), self.name)
    routes = data.get("routes")
    if not isinstance(routes, list) or not routes or not isinstance(routes[0], dict):
      raise ProviderError("no routes in response", self.name)
    route = routes[0]
    geometry = route.get("geometry")
    try:
      if isinstance(geometry, str):
        points = decode_polyline(geometry, precision=6 if self.geometries == "polyline6" else 5)
      else:
        points = geojson_line_points(geometry)
      points = validate_path(points)
    except ValueError as exc:
      raise ProviderError(f"malformed geometry: {exc}", self.name)
    return points, _read_distance(route.get("distance"), self.name)

  async def route(self, client: httpx.AsyncClient, origin: LatLng, destination: LatLng, timeout: float) -> RoutePlan:
    url, params = self._request(origin, destination)
    data = await _get_json(client, url, params, timeout, self.name)
    points, distance = self._parse(data)
    return RoutePlan(points=points, distance_m=distance, provenance=PROVENANCE_ROUTED, provider=self.name)


class GraphHopperProvider:
  """GraphHopper /route endpoint with encoded points."""

  def __init__(self, name: str, base_url: str, api_key: Optional[str] = None, profile: str = "car"):
    self.name = name
    self.base_url = base_url.rstrip("/")
    self.api_key = api_key
    self.profile = profile

  async def route(self, client: httpx.AsyncClient, origin: LatLng, destination: LatLng, timeout: float) -> RoutePlan:
    params: List[Tuple[str, Any]] = [
      ("point", f"{origin[0]},{origin[1]}"),
      ("point", f"{destination[0]},{destination[1]}"),
      ("profile", self.profile),
      ("points_encoded", "true"),
      ("instructions", "false"),
    ]
    if self.api_key:
      params.append(("key", self.api_key))
    data = await _get_json(client, f"{self.base_url}/route", params, timeout, self.name)
    if not isinstance(data, dict):
      raise ProviderError("response is not an object", self.name)
    paths = data.get("paths")
    if not isinstance(paths, list) or not paths or not isinstance(paths[0], dict):
      raise ProviderError(f"no paths in response: {data.get('message', '')}".strip(), self.name)
    path = paths[0]
    encoded = path.get("points")
    try:
      if isinstance(encoded, str):
        multiplier = path.get("points_encoded_multiplier") or 1e5
        points = decode_polyline(encoded, precision=int(round(math.log10(float(multiplier)))))
      else:
        points = geojson_line_points(encoded)
      points = validate_path(points)
    except (TypeError, ValueError) as exc:
      raise ProviderError(f"malformed geometry: {exc}", self.name)
    distance = _read_distance(path.get("distance"), self.name)
    return RoutePlan(points=points, distance_m=distance, provenance=PROVENANCE_ROUTED, provider=self.name)


async def _get_json(client: httpx.AsyncClient, url: str, params: Any, timeout: float, provider: str) -> Any:
  try:
    response = await asyncio.wait_for(client.get(url, params=params, timeout=timeout), timeout)
    response.raise_for_status()
    return response.json()
  except asyncio.TimeoutError:
    raise ProviderError(f"timed out after {timeout:.1f}s", provider)
  except httpx.TimeoutException:
    raise ProviderError(f"timed out after {timeout:.1f}s", provider)
  except httpx.HTTPStatusError as exc:
    raise ProviderError(f"HTTP {exc.response.status_code}", provider)
  except httpx.HTTPError as exc:
    raise ProviderError(f"transport error: {exc}", provider)
  except ValueError as exc:
    raise ProviderError(f"invalid JSON: {exc}", provider)


def build_providers() -> List[Any]:
  providers: List[Any] = [OsrmProvider("osrm-primary", ROUTING_PRIMARY_URL, geometries="geojson")]
  if ROUTING_SECONDARY_URL:
    if ROUTING_SECONDARY_KIND == "graphhopper":
      providers.append(GraphHopperProvider("graphhopper", ROUTING_SECONDARY_URL, api_key=ROUTING_SECONDARY_API_KEY))
    else:
      providers.append(OsrmProvider("osrm-secondary", ROUTING_SECONDARY_URL, geometries="polyline"))
  return providers


class RouteResolver:
  def __init__(
    self,
    providers: Optional[Sequence[Any]] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = ROUTING_TIMEOUT_SECONDS,
  ):
    # Primary plus exactly one secondary.
    self.providers = list(providers if providers is not None else build_providers())[:2]
    self.timeout = timeout
    self._owns_client = client is None
    self.client = client or httpx.AsyncClient(timeout=timeout)

  async def resolve(self, origin: LatLng, destination: LatLng) -> RoutePlan:
    """Always returns a usable plan; provider failures degrade to a straight line."""
    stats["route_requests_total"] += 1
    for provider in self.providers:
      try:
        plan = await provider.route(self.client, origin, destination, self.timeout)
      except ProviderError as exc:
        failures = stats["provider_failures"]
        failures[provider.name] = failures.get(provider.name, 0) + 1
        print(f"[route] provider {provider.name} failed: {exc}")
        continue
      print(f"[route] {provider.name} resolved {len(plan.points)} points {plan.distance_m:.0f} m")
      return plan

    stats["route_fallbacks_total"] += 1
    print(f"[route] all providers failed, straight line {origin} -> {destination}")
    return straight_line_plan(origin, destination)

  async def aclose(self) -> None:
    if self._owns_client:
      await self.client.aclose()
