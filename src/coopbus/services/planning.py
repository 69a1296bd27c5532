"""
Resource allocation primitives shared by the generators.

Both work on one template day, in minutes since midnight:
- BusTimeline tracks where a bus is and when it is free again.
- DriverRoster tracks driver load and picks a driver for a trip.

Trips already stored for a bus or driver (other frecuencias, rotation
viajes) enter as ``ocupados``: a mapping from a day key (weekday name or
date) to that day's trips. A new trip must fit on every key of the map.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import FrecuenciaConfig

logger = logging.getLogger(__name__)


@dataclass
class Tramo:
    """One trip of the template day."""
    origen_id: int
    destino_id: int
    salida: int
    llegada: int
    # Bus turnaround and driver rest at the destination
    descanso: int = 0
    descanso_chofer: int = 0

    @property
    def duracion(self) -> int:
        return self.llegada - self.salida

    def coincide(self, otro: "Tramo") -> bool:
        """Same route at the same departure time."""
        return (self.origen_id, self.destino_id, self.salida) == (otro.origen_id, otro.destino_id, otro.salida)


def limite_diario_minutos(config: FrecuenciaConfig, dias_por_semana: int) -> int:
    """
    Daily driving limit for a template that runs on dias_por_semana weekdays.

    Every operating weekday of an extended template consumes one extended
    day, so the exceptional limit only fits when the template runs on no
    more weekdays than the weekly allowance.
    """
    if 0 < dias_por_semana <= config.max_dias_excepcionales_semana:
        return config.max_horas_excepcionales * 60
    return config.max_horas_diarias_chofer * 60


def encaja(secuencia: List[Tramo], tramo: Tramo, chofer: bool = False) -> bool:
    """
    Whether tramo fits between its chronological neighbours in secuencia.

    The previous trip must end at the origin of tramo early enough to rest,
    and tramo must end at the origin of the next trip early enough to rest
    before it. Rest is the bus turnaround, or the driver rest when chofer.
    """
    def descanso(t: Tramo) -> int:
        return t.descanso_chofer if chofer else t.descanso

    anterior = siguiente = None
    for otro in secuencia:
        if otro is tramo:
            continue
        if otro.salida <= tramo.salida:
            if anterior is None or otro.salida >= anterior.salida:
                anterior = otro
        elif siguiente is None or otro.salida < siguiente.salida:
            siguiente = otro

    if anterior is not None:
        if anterior.destino_id != tramo.origen_id or anterior.llegada + descanso(anterior) > tramo.salida:
            return False
    if siguiente is not None:
        if tramo.destino_id != siguiente.origen_id or tramo.llegada + descanso(tramo) > siguiente.salida:
            return False
    return True


def agrupar_ocupacion(por_clave: Optional[Dict], claves: Iterable) -> Dict:
    """
    Stored trips of one resource over the planned day keys.

    Keys without trips count as an empty day. Days carrying the same trips
    collapse into one key. Empty when the resource has no stored trips.
    """
    if not por_clave:
        return {}
    distintos: Dict[tuple, tuple] = {}
    for clave in claves:
        tramos = list(por_clave.get(clave, []))
        firma = tuple(sorted((t.origen_id, t.destino_id, t.salida, t.llegada) for t in tramos))
        distintos.setdefault(firma, (clave, tramos))
    return {clave: tramos for clave, tramos in distintos.values()}


def _lapso(tramos: List[Tramo]) -> int:
    return max(t.llegada for t in tramos) - min(t.salida for t in tramos)


@dataclass
class BusTimeline:
    bus_id: int
    max_span_minutos: int
    tramos: List[Tramo] = field(default_factory=list)
    # day key -> trips stored before this planning run
    ocupados: Dict = field(default_factory=dict)

    @property
    def ubicacion(self) -> Optional[int]:
        return self.tramos[-1].destino_id if self.tramos else None

    @property
    def libre_desde(self) -> int:
        if not self.tramos:
            return 0
        ultimo = self.tramos[-1]
        return ultimo.llegada + ultimo.descanso

    @property
    def primera_salida(self) -> Optional[int]:
        return self.tramos[0].salida if self.tramos else None

    @property
    def tiene_ocupacion(self) -> bool:
        return any(self.ocupados.values())

    def _secuencias(self) -> List[List[Tramo]]:
        if not self.ocupados:
            return [self.tramos]
        return [self.tramos + carga for carga in self.ocupados.values()]

    def excede_jornada(self, tramo: Tramo) -> bool:
        return any(_lapso(s + [tramo]) > self.max_span_minutos for s in self._secuencias())

    def puede_tomar(self, tramo: Tramo) -> bool:
        for secuencia in self._secuencias():
            if not encaja(secuencia, tramo):
                return False
        return not self.excede_jornada(tramo)

    def ya_programado(self, tramo: Tramo) -> bool:
        """The same trip is already stored for this bus on every planned day."""
        if not self.ocupados:
            return False
        return all(any(t.coincide(tramo) for t in carga) for carga in self.ocupados.values())

    def compatible_con_ocupados(self) -> bool:
        """
        Whether the planned trips fit around the stored ones.

        Planned trips identical to a stored trip are the same departure and
        are not checked again.
        """
        for carga in self.ocupados.values():
            nuevos = [t for t in self.tramos if not any(t.coincide(o) for o in carga)]
            if not nuevos:
                continue
            if any(not encaja(carga + [t], t) for t in nuevos):
                return False
            if _lapso(carga + nuevos) > self.max_span_minutos:
                return False
        return True

    def agregar(self, tramo: Tramo):
        self.tramos.append(tramo)

    @property
    def minutos(self) -> int:
        return sum(t.duracion for t in self.tramos)


@dataclass
class _Carga:
    chofer_id: int
    minutos: int = 0
    tramos: List[Tramo] = field(default_factory=list)
    ocupados: Dict = field(default_factory=dict)

    def secuencias(self) -> List[List[Tramo]]:
        if not self.ocupados:
            return [self.tramos]
        return [self.tramos + carga for carga in self.ocupados.values()]


class DriverRoster:
    """
    Assigns drivers to trips of one template day.

    Trips must be offered in chronological order of departure. Stored
    trips of a driver (chofer_id -> {day key: [Tramo]}) count against the
    daily limit and block the time around them.
    """

    def __init__(
        self,
        chofer_ids: Iterable[int],
        limite_minutos: int,
        choferes_por_bus: Optional[Dict[int, List[Tuple[int, str]]]] = None,
        ocupados: Optional[Dict[int, Dict]] = None,
    ):
        self.limite_minutos = limite_minutos
        ocupados = ocupados or {}
        self.cargas: Dict[int, _Carga] = {
            cid: _Carga(cid, ocupados=ocupados.get(cid, {})) for cid in sorted(set(chofer_ids))
        }
        # bus_id -> [(chofer_id, "PRINCIPAL" | "ALTERNO")]
        self.choferes_por_bus = choferes_por_bus or {}
        self.ultimo_chofer_bus: Dict[int, int] = {}

    def puede_tomar(self, chofer_id: int, tramo: Tramo) -> bool:
        carga = self.cargas.get(chofer_id)
        if carga is None:
            return False
        for secuencia in carga.secuencias():
            if sum(t.duracion for t in secuencia) + tramo.duracion > self.limite_minutos:
                return False
            if not encaja(secuencia, tramo, chofer=True):
                return False
        return True

    def _prioridad(self, bus_id: int, chofer_id: int) -> tuple:
        rango = 3
        for cid, tipo in self.choferes_por_bus.get(bus_id, []):
            if cid == chofer_id:
                rango = 0 if tipo == "PRINCIPAL" else 1
                break
        if rango == 3 and self.ultimo_chofer_bus.get(bus_id) == chofer_id:
            rango = 2
        return rango, self.cargas[chofer_id].minutos, chofer_id

    def asignar(self, bus_id: int, tramo: Tramo) -> Optional[int]:
        """
        Pick a driver for the trip, record it and return the driver id.

        Returns:
            chofer_id or None when no driver satisfies the limits
        """
        candidatos = [cid for cid in self.cargas if self.puede_tomar(cid, tramo)]
        if not candidatos:
            logger.debug(f"No driver available for bus {bus_id} at minute {tramo.salida}")
            return None

        elegido = min(candidatos, key=lambda cid: self._prioridad(bus_id, cid))
        carga = self.cargas[elegido]
        carga.tramos.append(tramo)
        carga.minutos += tramo.duracion
        self.ultimo_chofer_bus[bus_id] = elegido
        return elegido

    @property
    def choferes_utilizados(self) -> int:
        return sum(1 for c in self.cargas.values() if c.tramos)
