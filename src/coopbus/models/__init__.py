"""
ORM Models Package

Contains the SQLAlchemy entities backing the cooperative API.
"""

from .entities import (
    AsignacionBusFrecuencia,
    Asiento,
    Boleto,
    Bus,
    BusChofer,
    Cooperativa,
    CooperativaTerminal,
    DiaParadaBus,
    Frecuencia,
    FrecuenciaConfig,
    ParadaIntermedia,
    PlantillaRotacion,
    PosicionViaje,
    Reserva,
    ReservaAsiento,
    Terminal,
    TurnoPlantilla,
    UsuarioApp,
    UsuarioCooperativa,
    Viaje,
)

__all__ = [
    'AsignacionBusFrecuencia',
    'Asiento',
    'Boleto',
    'Bus',
    'BusChofer',
    'Cooperativa',
    'CooperativaTerminal',
    'DiaParadaBus',
    'Frecuencia',
    'FrecuenciaConfig',
    'ParadaIntermedia',
    'PlantillaRotacion',
    'PosicionViaje',
    'Reserva',
    'ReservaAsiento',
    'Terminal',
    'TurnoPlantilla',
    'UsuarioApp',
    'UsuarioCooperativa',
    'Viaje',
]
