import asyncio

import httpx
import pytest

from services.routing import GraphHopperProvider, OsrmProvider, RouteResolver, straight_line_plan
from state import PROVENANCE_FALLBACK, PROVENANCE_ROUTED, stats

ORIGIN = (12.9716, 77.5946)
DESTINATION = (13.0827, 80.2707)


def osrm_ok(request: httpx.Request) -> httpx.Response:
  return httpx.Response(
    200,
    json={
      "code": "Ok",
      "routes": [
        {
          "distance": 346000.5,
          "geometry": {
            "type": "LineString",
            "coordinates": [[77.5946, 12.9716], [79.0, 12.9], [80.2707, 13.0827]],
          },
        }
      ],
    },
  )


def make_resolver(handlers, timeout=1.0):
  """One provider per handler; each handler sees only its own host."""
  by_host = {}
  providers = []
  for idx, handler in enumerate(handlers):
    host = f"p{idx}.test"
    by_host[host] = handler
    providers.append(OsrmProvider(f"p{idx}", f"http://{host}"))

  async def dispatch(request: httpx.Request) -> httpx.Response:
    result = by_host[request.url.host](request)
    if asyncio.iscoroutine(result):
      result = await result
    return result

  client = httpx.AsyncClient(transport=httpx.MockTransport(dispatch))
  return RouteResolver(providers=providers, client=client, timeout=timeout), client


@pytest.mark.asyncio
async def test_primary_success():
  seen = []

  def handler(request):
    seen.append(request)
    return osrm_ok(request)

  resolver, client = make_resolver([handler])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.provenance == PROVENANCE_ROUTED
  assert plan.provider == "p0"
  assert plan.points[0] == ORIGIN
  assert plan.points[-1] == DESTINATION
  assert plan.distance_m == 346000.5
  assert seen[0].url.path == "/route/v1/driving/77.5946,12.9716;80.2707,13.0827"
  assert seen[0].url.params["geometries"] == "geojson"


@pytest.mark.asyncio
async def test_secondary_used_when_primary_fails():
  resolver, client = make_resolver([lambda r: httpx.Response(503), osrm_ok])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.provider == "p1"
  assert stats["provider_failures"] == {"p0": 1}


@pytest.mark.asyncio
async def test_fallback_when_both_fail():
  def no_route(request):
    return httpx.Response(200, json={"code": "NoRoute", "message": "Impossible route"})

  def broken(request):
    raise httpx.ConnectError("connection refused", request=request)

  resolver, client = make_resolver([no_route, broken])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.provenance == PROVENANCE_FALLBACK
  assert plan.is_fallback
  assert plan.points == [ORIGIN, DESTINATION]
  assert plan.distance_m == pytest.approx(straight_line_plan(ORIGIN, DESTINATION).distance_m)
  assert stats["route_fallbacks_total"] == 1
  assert stats["provider_failures"] == {"p0": 1, "p1": 1}


@pytest.mark.asyncio
async def test_slow_provider_times_out():
  async def slow(request):
    await asyncio.sleep(5)
    return osrm_ok(request)

  resolver, client = make_resolver([slow, osrm_ok], timeout=0.05)
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.provider == "p1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
  "body",
  [
    {"code": "Ok", "routes": []},
    {"code": "Ok", "routes": [{"distance": 10, "geometry": {"type": "LineString", "coordinates": [[77.5, 12.9]]}}]},
    {"code": "Ok", "routes": [{"distance": -1, "geometry": {"coordinates": [[77.5, 12.9], [80.2, 13.0]]}}]},
    {"code": "Ok", "routes": [{"distance": 10, "geometry": {"coordinates": [[200, 12.9], [80.2, 13.0]]}}]},
    ["not", "an", "object"],
  ],
)
async def test_malformed_responses_degrade(body):
  resolver, client = make_resolver([lambda r: httpx.Response(200, json=body)])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.is_fallback


@pytest.mark.asyncio
async def test_non_json_body_degrades():
  resolver, client = make_resolver([lambda r: httpx.Response(200, text="<html>")])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.is_fallback


@pytest.mark.asyncio
async def test_only_two_providers_are_tried():
  calls = []

  def failing(request):
    calls.append(request.url.host)
    return httpx.Response(500)

  resolver, client = make_resolver([failing, failing, failing])
  async with client:
    plan = await resolver.resolve(ORIGIN, DESTINATION)
  assert plan.is_fallback
  assert calls == ["p0.test", "p1.test"]


@pytest.mark.asyncio
async def test_osrm_polyline_geometry():
  provider = OsrmProvider("poly", "http://poly.test", geometries="polyline")

  def handler(request):
    assert request.url.params["geometries"] == "polyline"
    return httpx.Response(
      200, json={"code": "Ok", "routes": [{"distance": 1200, "geometry": "_p~iF~ps|U_ulLnnqC_mqNvxq`@"}]}
    )

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    plan = await provider.route(client, ORIGIN, DESTINATION, 1.0)
  assert len(plan.points) == 3
  assert plan.points[0] == pytest.approx((38.5, -120.2))


@pytest.mark.asyncio
async def test_graphhopper_provider():
  provider = GraphHopperProvider("gh", "http://gh.test", api_key="k")

  def handler(request):
    assert request.url.path == "/route"
    assert request.url.params.get_list("point") == ["12.9716,77.5946", "13.0827,80.2707"]
    assert request.url.params["key"] == "k"
    return httpx.Response(200, json={"paths": [{"distance": 500.0, "points": "_p~iF~ps|U_ulLnnqC"}]})

  async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
    plan = await provider.route(client, ORIGIN, DESTINATION, 1.0)
  assert plan.provider == "gh"
  assert plan.distance_m == 500.0
  assert plan.points == [pytest.approx((38.5, -120.2)), pytest.approx((40.7, -120.95))]
