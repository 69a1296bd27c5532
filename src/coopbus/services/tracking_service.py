"""
GPS Tracking Service.

Drivers push positions while a viaje is EN_RUTA; clients poll the current
position and the history. The latest position per viaje is cached in
memory; every report is also stored.

Author: Backend Team
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from cachetools import TTLCache
from sqlalchemy.orm import Session

from ..config_loader import get_settings
from ..constants import ViajeEstado
from ..models import PosicionViaje, Viaje
from .horarios import fmt_time, now
from .trip_service import get_viaje

logger = logging.getLogger(__name__)


class TrackingService:
    """
    Service for ingesting and serving GPS positions of viajes.
    """

    def __init__(self):
        ttl = get_settings().get("tracking", {}).get("cache_ttl_seconds", 600)
        self._cache = TTLCache(maxsize=2000, ttl=ttl)

    @staticmethod
    def _to_dict(posicion: PosicionViaje) -> Dict:
        return {
            "viaje_id": posicion.viaje_id,
            "latitud": posicion.latitud,
            "longitud": posicion.longitud,
            "velocidad_kmh": posicion.velocidad_kmh,
            "precision": posicion.precision,
            "timestamp": posicion.timestamp,
            "provider": posicion.provider,
        }

    def actualizar_posicion(self, db: Session, viaje_id: int, datos: Dict) -> Dict:
        """
        Store a position report.

        Args:
            datos: latitud, longitud, velocidad_kmh?, precision?, timestamp?, provider?

        Returns:
            The current position after this report (an older report is
            stored in history but does not replace a newer current position)

        Raises:
            ValueError: viaje not EN_RUTA or coordinates/speed out of range
        """
        viaje = get_viaje(db, viaje_id)
        if viaje.estado != ViajeEstado.EN_RUTA:
            raise ValueError(f"Solo se puede reportar posición de un viaje EN_RUTA (estado {viaje.estado})")

        latitud, longitud = datos.get("latitud"), datos.get("longitud")
        if latitud is None or not -90 <= latitud <= 90:
            raise ValueError("latitud fuera de rango [-90, 90]")
        if longitud is None or not -180 <= longitud <= 180:
            raise ValueError("longitud fuera de rango [-180, 180]")
        velocidad = datos.get("velocidad_kmh")
        if velocidad is not None and velocidad < 0:
            raise ValueError("velocidad_kmh no puede ser negativa")

        timestamp: datetime = datos.get("timestamp") or now()
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)

        posicion = PosicionViaje(
            viaje_id=viaje_id,
            latitud=latitud,
            longitud=longitud,
            velocidad_kmh=velocidad,
            precision=datos.get("precision"),
            timestamp=timestamp,
            provider=(datos.get("provider") or "GPS").upper(),
            recibido_en=now(),
        )
        db.add(posicion)
        db.commit()

        actual = self.posicion_actual(db, viaje_id)
        if actual is None or timestamp >= actual["timestamp"]:
            actual = self._to_dict(posicion)
            self._cache[viaje_id] = actual
        else:
            logger.debug(f"Out-of-order position for viaje {viaje_id} kept only in history")
        return actual

    def posicion_actual(self, db: Session, viaje_id: int) -> Optional[Dict]:
        if viaje_id in self._cache:
            logger.debug(f"Position cache hit: viaje {viaje_id}")
            return self._cache[viaje_id]

        posicion = (
            db.query(PosicionViaje)
            .filter(PosicionViaje.viaje_id == viaje_id)
            .order_by(PosicionViaje.timestamp.desc(), PosicionViaje.id.desc())
            .first()
        )
        if posicion is None:
            return None
        actual = self._to_dict(posicion)
        self._cache[viaje_id] = actual
        return actual

    def historial(self, db: Session, viaje_id: int, desde: Optional[datetime] = None) -> List[Dict]:
        get_viaje(db, viaje_id)
        query = db.query(PosicionViaje).filter(PosicionViaje.viaje_id == viaje_id)
        if desde is not None:
            query = query.filter(PosicionViaje.timestamp >= desde)
        return [
            self._to_dict(p)
            for p in query.order_by(PosicionViaje.timestamp, PosicionViaje.id).all()
        ]

    def panel(self, db: Session, cooperativa_id: Optional[int] = None) -> List[Dict]:
        """Active (EN_RUTA) viajes with their latest position; all cooperatives when none is given."""
        query = db.query(Viaje).filter(Viaje.estado == ViajeEstado.EN_RUTA)
        if cooperativa_id is not None:
            query = query.filter(Viaje.cooperativa_id == cooperativa_id)

        activos = []
        for viaje in query.order_by(Viaje.fecha, Viaje.hora_salida, Viaje.id).all():
            activos.append({
                "viaje_id": viaje.id,
                "cooperativa_id": viaje.cooperativa_id,
                "cooperativa": viaje.cooperativa.nombre,
                "bus_placa": viaje.bus.placa,
                "chofer_nombre": viaje.chofer.nombre_completo if viaje.chofer else None,
                "origen": viaje.origen.nombre,
                "destino": viaje.destino.nombre,
                "hora_salida": fmt_time(viaje.hora_salida),
                "posicion": self.posicion_actual(db, viaje.id),
            })
        return activos

    def clear_cache(self, viaje_id: Optional[int] = None):
        if viaje_id is not None:
            self._cache.pop(viaje_id, None)
            logger.info(f"Cleared position cache for viaje {viaje_id}")
        else:
            self._cache.clear()
            logger.info("Cleared all position cache")

    def get_cache_stats(self) -> Dict:
        return {
            "cache_size": len(self._cache),
            "max_size": self._cache.maxsize,
            "ttl_seconds": self._cache.ttl,
        }


# Global singleton instance
tracking_service = TrackingService()
