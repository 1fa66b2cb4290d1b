"""
Headless viewer: follow the live map from a terminal.

  python -m viewer --server http://localhost:3000 --me North-Truck-1
"""

import argparse
import asyncio

from geo import format_distance
from viewer.engine import ViewState
from viewer.session import ViewerSession


def _print_state(state: ViewState, event) -> None:
  line = f"[viewer] {type(event).__name__}: mode={state.mode} devices={len(state.devices)}"
  if state.selected_device_id:
    line += f" selected={state.selected_device_id}"
  if state.route is not None:
    line += f" route={format_distance(state.route.distance_m)} ({state.route.provenance})"
  if state.center is not None:
    line += f" center={state.center[0]:.4f},{state.center[1]:.4f} zoom={state.zoom}"
  if state.notice is not None:
    line += f" notice={state.notice.text!r}"
  print(line)


async def _run(server: str, me_id: str) -> None:
  async with ViewerSession(server, me_id) as session:
    session.engine.add_listener(_print_state)
    await asyncio.Event().wait()


def main() -> None:
  parser = argparse.ArgumentParser(description="Follow the fleet live map")
  parser.add_argument("--server", default="http://localhost:3000")
  parser.add_argument("--me", required=True, help="device id of this viewer")
  args = parser.parse_args()
  try:
    asyncio.run(_run(args.server, args.me))
  except KeyboardInterrupt:
    pass


if __name__ == "__main__":
  main()
