"""Terminal commands for driving the guide without the browser map."""

import sys

HELP = """Commands:
  <Enter>               enable audio
  listen ID             narrate a POI
  stop                  stop the voice
  reload                reload POIs
  mode walking|driving  switch tracking mode
  cat NAME              filter by category (cat All to clear)
  search [TEXT]         filter by name (empty to clear)
  radius KM             filter by distance (0 = unlimited)
  follow on|off         recenter the map on each position
  quit                  exit"""


def parse_command(line: str) -> dict:
    """Turn a console line into a guide command message"""
    words = line.strip().split(maxsplit=1)
    if not words:
        return {"type": "interact", "data": {"kind": "pointer"}}

    cmd = words[0].lower()
    arg = words[1].strip() if len(words) > 1 else ""

    if cmd == "listen":
        return {"type": "select", "data": {"id": int(arg)}}
    if cmd in ("stop", "reload", "quit"):
        return {"type": cmd, "data": {}}
    if cmd == "mode":
        if arg not in ("walking", "driving"):
            raise ValueError("mode must be walking or driving")
        return {"type": "mode", "data": {"mode": arg}}
    if cmd == "cat":
        return {"type": "criteria", "data": {"category": arg}}
    if cmd == "search":
        return {"type": "criteria", "data": {"search_text": arg}}
    if cmd == "radius":
        return {"type": "criteria", "data": {"radius_km": float(arg)}}
    if cmd == "follow":
        return {"type": "follow", "data": {"enabled": arg != "off"}}
    raise ValueError(f"Unknown command: {cmd}")


class Console:
    """Reads commands from stdin on the event loop (Unix only)"""

    def __init__(self, guide, loop, stream=None):
        self.guide = guide
        self.loop = loop
        self.stream = stream or sys.stdin

    def start(self):
        print(HELP)
        self.loop.add_reader(self.stream, self._on_input)

    def stop(self):
        self.loop.remove_reader(self.stream)

    def _on_input(self):
        line = self.stream.readline()
        if line == "":
            self.stop()  # EOF
            return
        if line.strip() == "help":
            print(HELP)
            return
        try:
            msg = parse_command(line)
        except ValueError as e:
            print(e)
            return
        # Any typed command counts as the user's interaction for audio unlock;
        # listen and stop unlock on their own without the confirmation
        if msg["type"] not in ("select", "stop"):
            self.guide.interact("pointer")
        self.guide.handle_command(msg)
