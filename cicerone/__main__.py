#!/usr/bin/env python3
"""
Cicerone - Location-aware tourist guide with spoken POI descriptions

Usage:
    python -m cicerone [options]

Options:
    --mode MODE          walking (default) or driving
    --category NAME      Initial category filter (default: All)
    --search TEXT        Initial name filter
    --radius KM          Initial radius filter, 0 = unlimited (default: 50)
    --catalog FILE       Load POIs from a JSON file instead of Supabase
    --supabase-url URL   Supabase project URL (or CICERONE_SUPABASE_URL)
    --api-key KEY        Supabase anon key (or CICERONE_SUPABASE_KEY)
    --record FILE        Record GPS trace to JSON file for debugging
    --playback FILE      Playback GPS trace from JSON file
    --speed FACTOR       Playback speed multiplier (default: 1.0)
    --map                Serve the browser map
    --click-gps          Take positions from map clicks (implies --map)
    --lat LAT            Initial latitude
    --lon LON            Initial longitude
    --html FILE          Export a map of the filtered POIs and exit (requires --lat/--lon)
    --no-follow          Do not recenter the map on each position
    --log FILE           Log file path (default: cicerone_TIMESTAMP.log)
"""

import argparse
import asyncio
import sys
import time
from datetime import datetime
from pathlib import Path

from .app import Guide
from .audio import Speech, Tone
from .catalog import FileSource, POICatalog, SupabaseSource
from .config import CONFIG
from .console import Console
from .gps import GPSRecorder, Geolocation, MapClickLocation, TermuxLocation, TracePlayback
from .logger import Logger
from .map_view import MapServer, export_map_html
from .models import FilterCriteria, Location, TrackingMode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cicerone - Location-aware tourist guide"
    )
    parser.add_argument("--mode", choices=[m.value for m in TrackingMode], default="walking",
                        help="Tracking mode (default: walking)")
    parser.add_argument("--category", default=CONFIG["all_categories"],
                        help="Initial category filter")
    parser.add_argument("--search", default="",
                        help="Initial name filter")
    parser.add_argument("--radius", type=float, default=CONFIG["default_radius_km"],
                        help="Initial radius in km, 0 = unlimited")
    parser.add_argument("--catalog", metavar="FILE",
                        help="Load POIs from a JSON file")
    parser.add_argument("--supabase-url", default=CONFIG["supabase_url"],
                        help="Supabase project URL")
    parser.add_argument("--api-key", default=CONFIG["supabase_key"],
                        help="Supabase anon key")
    parser.add_argument("--record", metavar="FILE",
                        help="Record GPS trace to JSON file")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback GPS trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--map", action="store_true",
                        help="Serve the browser map")
    parser.add_argument("--click-gps", action="store_true",
                        help="Take positions from map clicks (implies --map)")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Initial latitude")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Initial longitude")
    parser.add_argument("--html", metavar="FILE",
                        help="Export map of the filtered POIs to HTML and exit")
    parser.add_argument("--no-follow", action="store_true",
                        help="Do not recenter the map on each position")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: cicerone_TIMESTAMP.log)")
    return parser


def build_source(args, parser: argparse.ArgumentParser):
    if args.catalog:
        return FileSource(args.catalog)
    if not args.supabase_url or not args.api_key:
        parser.error("--catalog or both --supabase-url and --api-key are required")
    return SupabaseSource(args.supabase_url, args.api_key)


def build_provider(args):
    if args.click_gps:
        provider = MapClickLocation()
    elif args.playback:
        provider = TracePlayback(args.playback, args.speed)
    else:
        provider = TermuxLocation()
    if args.record:
        provider = GPSRecorder(provider, args.record)
    return provider


async def _export(args, source, logger: Logger) -> int:
    loop = asyncio.get_running_loop()
    guide = Guide(
        POICatalog(source, logger=logger),
        Geolocation(MapClickLocation(), loop),
        loop,
        logger=logger,
        criteria=FilterCriteria(args.category, args.search, args.radius),
    )
    guide.on_position(Location(lat=args.lat, lon=args.lon, timestamp=time.time()))
    if not await guide.load_catalog():
        print(guide.state.status)
        return 1
    export_map_html(guide.get_state(), args.html)
    print(f"Map saved to: {args.html} ({len(guide.state.filtered)} POI)")
    return 0


async def _run(args, source, logger: Logger):
    loop = asyncio.get_running_loop()
    provider = build_provider(args)
    geolocation = Geolocation(provider, loop)
    speech = Speech(loop, logger=logger)
    if not speech.available:
        logger.warning("No speech synthesis found (install espeak or pyttsx3), narration disabled")

    map_server = None
    if args.map or args.click_gps:
        clicks = provider.provider if isinstance(provider, GPSRecorder) else provider
        map_server = MapServer(click_source=clicks if isinstance(clicks, MapClickLocation) else None,
                               logger=logger)
        logger.callback = map_server.send_log

    guide = Guide(
        POICatalog(source, logger=logger),
        geolocation,
        loop,
        speech=speech,
        tone=Tone(),
        logger=logger,
        mode=TrackingMode(args.mode),
        criteria=FilterCriteria(args.category, args.search, args.radius),
        follow=not args.no_follow,
        view=map_server,
    )

    if map_server:
        map_server.on_command = guide.handle_command
        await map_server.start()

    console = Console(guide, loop)
    console.start()

    initial = None
    if args.lat is not None:
        initial = Location(lat=args.lat, lon=args.lon, accuracy=0, timestamp=time.time())
    try:
        await guide.run(initial_location=initial)
    finally:
        console.stop()
        if map_server:
            map_server.stop()


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Validate lat/lon - must provide both or neither
    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")
    if args.html and args.lat is None:
        parser.error("--html requires --lat and --lon")
    if args.playback and not Path(args.playback).exists():
        print(f"Playback file not found: {args.playback}")
        sys.exit(1)

    source = build_source(args, parser)

    if args.html:
        logger = Logger(args.log)
        try:
            sys.exit(asyncio.run(_export(args, source, logger)))
        finally:
            logger.close()

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"cicerone_{timestamp}.log"
    logger = Logger(log_path)

    print("\n=== Cicerone ===")
    print(f"Mode: {args.mode}")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(_run(args, source, logger))
    except KeyboardInterrupt:
        print("\nGuide interrupted")
        logger.log("Guide interrupted by user")
    finally:
        logger.close()


if __name__ == "__main__":
    main()
