"""POI catalog loading from Supabase or a local JSON file."""

import asyncio
import json
from typing import Optional

import requests

from .config import CONFIG
from .errors import CatalogLoadFailure
from .logger import Logger
from .models import POI


def parse_row(row: dict) -> POI:
    """Map a raw catalog row onto a POI.

    Rows carry GeoJSON coordinates, which are ordered [lon, lat].
    """
    try:
        lon, lat = row["geojson"]["coordinates"][:2]
        elevation = row.get("elevation")
        return POI(
            id=int(row["id"]),
            name=row["name"],
            description=row.get("description") or "",
            category=row["category_name"],
            lat=float(lat),
            lon=float(lon),
            elevation=float(elevation) if elevation is not None else None,
            image_url=row.get("image_url") or None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CatalogLoadFailure("Malformed POI row", {"row": row, "reason": repr(e)}) from e


def derive_categories(pois) -> list[str]:
    """Distinct category names, sorted, behind the "All" sentinel"""
    return [CONFIG["all_categories"], *sorted({p.category for p in pois})]


class SupabaseSource:
    """POI rows from a Supabase RPC over the REST API"""

    def __init__(self, url: str, api_key: str, rpc: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.rpc = rpc or CONFIG["catalog_rpc"]
        self.timeout = timeout or CONFIG["catalog_timeout"]

    def describe(self) -> str:
        return f"{self.url} ({self.rpc})"

    def fetch(self) -> list[dict]:
        endpoint = f"{self.url}/rest/v1/rpc/{self.rpc}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(endpoint, headers=headers, json={}, timeout=self.timeout)
            response.raise_for_status()
            rows = response.json()
        except requests.RequestException as e:
            raise CatalogLoadFailure("POI request failed", {"endpoint": endpoint, "reason": str(e)}) from e
        except ValueError as e:
            raise CatalogLoadFailure("POI response is not JSON", {"endpoint": endpoint}) from e

        if not isinstance(rows, list):
            raise CatalogLoadFailure("POI response is not a list of rows", {"endpoint": endpoint})
        return rows


class FileSource:
    """POI rows from a JSON file (same row shape as the remote RPC)"""

    def __init__(self, path: str):
        self.path = path

    def describe(self) -> str:
        return self.path

    def fetch(self) -> list[dict]:
        try:
            with open(self.path) as f:
                rows = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogLoadFailure("Could not read POI file", {"path": self.path, "reason": str(e)}) from e
        if not isinstance(rows, list):
            raise CatalogLoadFailure("POI file must contain a list of rows", {"path": self.path})
        return rows


class POICatalog:
    """Holds the current POI set; each load replaces it as a whole"""

    def __init__(self, source, logger: Optional[Logger] = None):
        self.source = source
        self.logger = logger
        self.pois: tuple[POI, ...] = ()
        self.categories: list[str] = derive_categories(())
        self._issued = 0  # last generation handed out
        self._applied = 0  # generation of the catalog currently held

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def begin(self) -> int:
        """Reserve a generation number for a new load request"""
        self._issued += 1
        return self._issued

    def apply(self, generation: int, rows: list[dict]) -> tuple[POI, ...]:
        """Replace the catalog with parsed rows unless a newer load already landed"""
        pois = tuple(parse_row(row) for row in rows)
        if generation < self._applied:
            self._log("Discarding stale POI load", {"generation": generation, "current": self._applied})
            return self.pois

        self.pois = pois
        self.categories = derive_categories(pois)
        self._applied = generation
        self._log("POI catalog loaded", {"pois": len(pois), "categories": len(self.categories) - 1})
        return self.pois

    def load(self) -> tuple[POI, ...]:
        """Fetch and apply in one blocking call"""
        generation = self.begin()
        try:
            rows = self.source.fetch()
            return self.apply(generation, rows)
        except CatalogLoadFailure as e:
            if self.logger:
                self.logger.error("POI load failed", e)
            raise

    async def load_async(self) -> tuple[POI, ...]:
        """Fetch in an executor so the event loop keeps processing positions"""
        generation = self.begin()
        loop = asyncio.get_running_loop()
        try:
            rows = await loop.run_in_executor(None, self.source.fetch)
            return self.apply(generation, rows)
        except CatalogLoadFailure as e:
            if self.logger:
                self.logger.error("POI load failed", e)
            raise

    def get(self, poi_id: int) -> Optional[POI]:
        for poi in self.pois:
            if poi.id == poi_id:
                return poi
        return None
