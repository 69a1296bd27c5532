"""
Time and calendar helpers shared by the scheduling services.

The planner works with minutes since midnight; the API speaks "HH:MM" and
weekday names (LUNES..DOMINGO).
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional

from ..constants import DIAS_SEMANA

logger = logging.getLogger(__name__)

MINUTOS_DIA = 24 * 60


def parse_time(time_str: str) -> Optional[time]:
    """
    Parse time string to time object.

    Args:
        time_str: Time string (e.g., "06:00", "6:0", "23:30:00")

    Returns:
        time object or None if parsing fails
    """
    if isinstance(time_str, time):
        return time_str
    try:
        parts = str(time_str).strip().split(':')
        if len(parts) >= 2:
            return time(hour=int(parts[0]), minute=int(parts[1]))
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse time '{time_str}': {e}")
    return None


def require_time(time_str, field: str = "hora") -> time:
    parsed = parse_time(time_str)
    if parsed is None:
        raise ValueError(f"{field} inválida: '{time_str}' (formato HH:MM)")
    return parsed


def to_minutes(value) -> int:
    t = value if isinstance(value, time) else require_time(value)
    return t.hour * 60 + t.minute


def from_minutes(minutes: int) -> time:
    minutes = int(minutes) % MINUTOS_DIA
    return time(hour=minutes // 60, minute=minutes % 60)


def fmt_time(value) -> str:
    if value is None:
        return ""
    if isinstance(value, int):
        value = from_minutes(value)
    return value.strftime("%H:%M")


def fmt_duracion(minutes: int) -> str:
    return f"{minutes // 60}h {minutes % 60:02d}m"


def dia_semana(fecha: date) -> str:
    return DIAS_SEMANA[fecha.weekday()]


def normalizar_dias(dias: Iterable[str]) -> List[str]:
    """Validate weekday names and return them in calendar order without duplicates."""
    seleccion = set()
    for dia in dias or []:
        key = str(dia).strip().upper()
        if key not in DIAS_SEMANA:
            raise ValueError(f"Día de operación inválido: '{dia}'")
        seleccion.add(key)
    return [d for d in DIAS_SEMANA if d in seleccion]


def fechas_operativas(fecha_inicio: date, fecha_fin: date, dias: Iterable[str]) -> List[date]:
    """Dates in [fecha_inicio, fecha_fin] that fall on one of the given weekdays."""
    dias = set(dias)
    fechas = []
    actual = fecha_inicio
    while actual <= fecha_fin:
        if dia_semana(actual) in dias:
            fechas.append(actual)
        actual += timedelta(days=1)
    return fechas


def semana_de(fecha: date) -> List[date]:
    """Monday..Sunday of the week containing fecha."""
    lunes = fecha - timedelta(days=fecha.weekday())
    return [lunes + timedelta(days=i) for i in range(7)]


def now() -> datetime:
    return datetime.now()


def today() -> date:
    return datetime.now().date()
