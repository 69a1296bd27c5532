"""
Route Calculation Service.

Distance and driving time between two terminals. Uses the GraphHopper
routing API when an API key is configured and falls back to a haversine
estimate otherwise (or when the upstream call fails).

Author: Backend Team
"""

import logging
import math
import os
from typing import Dict, Optional, Tuple

import requests
from cachetools import TTLCache

from ..config_loader import get_settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class RouteService:
    """
    Service for computing road distance/duration between coordinates.
    Results are cached per ordered coordinate pair.
    """

    def __init__(self, settings: Optional[Dict] = None):
        cfg = (settings or get_settings()).get("routing", {})
        self.provider_url = cfg.get("provider_url")
        self.timeout = cfg.get("timeout_seconds", 10)
        self.road_factor = float(cfg.get("road_factor", 1.3))
        self.average_speed_kmh = float(cfg.get("average_speed_kmh", 60))
        self._cache = TTLCache(maxsize=5000, ttl=cfg.get("cache_ttl_seconds", 86400))

        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'CoopBus-Backend/1.0',
            'Accept': 'application/json',
        })

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv("GRAPHHOPPER_API_KEY")

    def _estimate(self, origen: Tuple[float, float], destino: Tuple[float, float]) -> Dict:
        recta = haversine_km(origen[0], origen[1], destino[0], destino[1])
        distancia = recta * self.road_factor
        duracion = distancia / self.average_speed_kmh * 60
        return {
            "distancia_km": round(distancia, 1),
            "duracion_minutos": max(1, int(round(duracion))),
            "provider": "HAVERSINE",
        }

    def _fetch_from_graphhopper(self, origen: Tuple[float, float], destino: Tuple[float, float]) -> Optional[Dict]:
        """
        Ask GraphHopper for the fastest car route.

        Returns:
            Route dict or None if the request fails or returns no path
        """
        try:
            response = self.session.get(
                self.provider_url,
                params=[
                    ("point", f"{origen[0]},{origen[1]}"),
                    ("point", f"{destino[0]},{destino[1]}"),
                    ("vehicle", "car"),
                    ("locale", "es"),
                    ("calc_points", "false"),
                    ("key", self.api_key),
                ],
                timeout=self.timeout,
            )
            response.raise_for_status()
            paths = response.json().get("paths") or []
            if not paths:
                logger.warning(f"GraphHopper returned no path for {origen} -> {destino}")
                return None

            path = paths[0]
            return {
                "distancia_km": round(path["distance"] / 1000, 1),
                "duracion_minutos": max(1, int(round(path["time"] / 1000 / 60))),
                "provider": "GraphHopper",
            }
        except requests.exceptions.RequestException as e:
            logger.error(f"GraphHopper request failed for {origen} -> {destino}: {e}")
            return None
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected GraphHopper payload for {origen} -> {destino}: {e}")
            return None

    def calcular(self, origen: Tuple[float, float], destino: Tuple[float, float]) -> Dict:
        """
        Distance and duration between two (lat, lon) points.

        Returns:
            {"distancia_km": float, "duracion_minutos": int, "provider": str}
        """
        cache_key = (round(origen[0], 5), round(origen[1], 5), round(destino[0], 5), round(destino[1], 5))
        if cache_key in self._cache:
            logger.debug(f"Route cache hit: {cache_key}")
            return self._cache[cache_key]

        result = None
        if self.provider_url and self.api_key:
            result = self._fetch_from_graphhopper(origen, destino)
            if result is None:
                logger.warning("Falling back to haversine estimate")

        if result is None:
            result = self._estimate(origen, destino)

        self._cache[cache_key] = result
        return result

    def calcular_terminales(self, origen, destino) -> Dict:
        return self.calcular((origen.latitud, origen.longitud), (destino.latitud, destino.longitud))

    def clear_cache(self):
        self._cache.clear()
        logger.info("Cleared route cache")

    def get_cache_stats(self) -> Dict:
        return {
            "cache_size": len(self._cache),
            "max_size": self._cache.maxsize,
            "ttl_seconds": self._cache.ttl,
        }


# Global singleton instance
route_service = RouteService()
