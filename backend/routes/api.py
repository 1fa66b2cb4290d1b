"""
API routes for location ingestion, history, devices and routing.
"""

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool

from errors import ValidationError
from helpers import device_payload, history_point_payload, route_payload
from history import history_summary, parse_day
from services.ingestion import ingest_location
from services.persistence import validate_coordinates, validate_device_id

router = APIRouter()


async def _json_body(request: Request) -> Dict[str, Any]:
  try:
    body = await request.json()
  except (json.JSONDecodeError, UnicodeDecodeError):
    raise ValidationError("Body is not valid JSON")
  if not isinstance(body, dict):
    raise ValidationError("Body must be a JSON object")
  return body


def _device_id_param(values: Any) -> Optional[str]:
  # `mobile` is the key older device clients send.
  return values.get("deviceId") or values.get("mobile")


@router.post("/api/update-location")
async def update_location(request: Request):
  """Accept a device's self-reported coordinate."""
  body = await _json_body(request)
  await run_in_threadpool(
    ingest_location,
    request.app.state.store,
    request.app.state.channel,
    _device_id_param(body),
    body.get("lat"),
    body.get("lng", body.get("lon")),
  )
  return {"success": True}


@router.get("/api/history")
def location_history(request: Request):
  """Positions for one device on one calendar day, most recent first."""
  device_id = _device_id_param(request.query_params)
  date_value = request.query_params.get("date")
  if not device_id or not date_value:
    raise ValidationError("Missing deviceId or date")
  day = parse_day(date_value)
  points = request.app.state.store.get_history(device_id, day)
  return {
    "success": True,
    "deviceId": device_id,
    "date": day.isoformat(),
    "history": [history_point_payload(p) for p in points],
    "summary": history_summary(points),
  }


@router.get("/api/devices")
def list_devices(request: Request):
  """Full current snapshot over REST."""
  return {
    "success": True,
    "devices": [device_payload(d) for d in request.app.state.store.get_all()],
  }


@router.post("/api/devices")
async def register_device(request: Request):
  """Register a device before its first position report."""
  body = await _json_body(request)
  device = await run_in_threadpool(request.app.state.store.register, validate_device_id(_device_id_param(body)))
  return {"success": True, "device": device_payload(device)}


@router.get("/api/route")
async def resolve_route(request: Request):
  """Road route between two coordinates, degrading to a straight line."""
  params = request.query_params
  origin = validate_coordinates(params.get("fromLat"), params.get("fromLng"))
  destination = validate_coordinates(params.get("toLat"), params.get("toLng"))
  plan = await request.app.state.resolver.resolve(origin, destination)
  return {"success": True, "route": route_payload(plan)}
