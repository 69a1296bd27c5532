from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..constants import ROL_CLIENTE
from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, CountResponse
from ..security import es_personal, solo_admin, usuario_actual, verificar_cooperativa, verificar_reserva
from ..services import booking_service
from ..services.auth_service import Sesion
from ..services.trip_service import get_viaje

router = APIRouter()


class AsientoViaje(CamelModel):
    id: int
    numero_asiento: str
    fila: int
    columna: int
    piso: int
    tipo_asiento: str
    estado: str
    precio: float


class DisponibilidadViaje(CamelModel):
    viaje_id: int
    total_asientos: int
    disponibles: int
    por_tipo: Dict[str, int]


class BusInfo(CamelModel):
    bus_id: int
    placa: str
    numero_interno: str
    chasis_marca: Optional[str] = None
    carroceria_marca: Optional[str] = None
    foto_url: Optional[str] = None
    capacidad_asientos: int
    dos_pisos: bool


class ReservaRequest(CamelModel):
    viaje_id: int
    asientos: List[str]
    cliente_email: Optional[str] = None
    cliente_nombre: Optional[str] = None
    tipo_pasajero: Optional[str] = None


class ReservaOut(CamelModel):
    id: int
    viaje_id: int
    cliente_email: Optional[str] = None
    cliente_nombre: Optional[str] = None
    tipo_pasajero: str
    asientos: List[str]
    monto: float
    estado: str
    metodo_pago: Optional[str] = None
    creada_en: datetime
    fecha_expira: datetime
    fecha_viaje: date
    hora_salida: str
    origen: str
    destino: str
    cooperativa: str


class PagoRequest(CamelModel):
    metodo_pago: str
    referencia: Optional[str] = None


class PagoResponse(CamelModel):
    reserva_id: int
    estado: str
    mensaje: str
    boleto_codigo: Optional[str] = None


class BoletoOut(CamelModel):
    id: int
    codigo: str
    estado: str
    fecha_emision: datetime
    reserva_id: int
    cliente_email: Optional[str] = None
    asientos: List[str]
    monto: float
    viaje_id: int
    fecha_viaje: date
    hora_salida: str
    origen: str
    destino: str
    bus_placa: str
    cooperativa: str


class RutaDisponible(CamelModel):
    viaje_id: int
    frecuencia_id: Optional[int] = None
    cooperativa_id: int
    cooperativa: str
    origen: str
    destino: str
    fecha: date
    hora_salida: str
    duracion_estimada: str
    tipo_viaje: str
    precio: float
    asientos_por_tipo: Dict[str, int]


class BusquedaRutasResponse(CamelModel):
    items: List[RutaDisponible]
    total: int
    page: int
    size: int


# ---------------------------------------------------------------------------
# Asientos de un viaje
# ---------------------------------------------------------------------------

@router.get("/viajes/{viaje_id}/asientos", response_model=List[AsientoViaje])
def get_asientos_viaje(viaje_id: int, db: Session = Depends(get_db)):
    """Seat map of a viaje with DISPONIBLE / RESERVADO / VENDIDO / BLOQUEADO per seat."""
    try:
        return booking_service.asientos_viaje(db, viaje_id)
    except Exception as e:
        raise http_error(e, "get viaje seats")


@router.get("/viajes/{viaje_id}/disponibilidad", response_model=DisponibilidadViaje)
def get_disponibilidad(viaje_id: int, db: Session = Depends(get_db)):
    try:
        return booking_service.disponibilidad(db, viaje_id)
    except Exception as e:
        raise http_error(e, "get seat availability")


@router.get("/viajes/{viaje_id}/bus", response_model=BusInfo)
def get_bus_viaje(viaje_id: int, db: Session = Depends(get_db)):
    try:
        return booking_service.bus_info_viaje(db, viaje_id)
    except Exception as e:
        raise http_error(e, "get viaje bus")


# ---------------------------------------------------------------------------
# Reservas
# ---------------------------------------------------------------------------

@router.post("/reservas", response_model=ReservaOut, status_code=201)
def create_reserva(body: ReservaRequest, sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    """
    Hold seats on a viaje.

    A passenger always books under the email of their account; counter
    staff may book for any clienteEmail on their cooperative's viajes.
    The reservation stays PENDIENTE until paid and expires after the
    configured TTL, releasing its seats.
    """
    try:
        datos = body.model_dump()
        if sesion.rol == ROL_CLIENTE:
            datos["cliente_email"] = sesion.email
        elif sesion.es_admin or es_personal(sesion):
            verificar_cooperativa(sesion, get_viaje(db, body.viaje_id).cooperativa_id)
        else:
            raise PermissionError("Requiere una cuenta de cliente o personal de la cooperativa")
        reserva = booking_service.crear_reserva(db, datos)
        return booking_service.reserva_to_dict(reserva)
    except Exception as e:
        raise http_error(e, "create reserva")


@router.get("/reservas", response_model=List[ReservaOut])
def list_mis_reservas(sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    """Reservas booked under the email of the signed-in account."""
    try:
        return [booking_service.reserva_to_dict(r) for r in booking_service.mis_reservas(db, sesion.email)]
    except Exception as e:
        raise http_error(e, "list reservas")


@router.get("/reservas/{reserva_id}", response_model=ReservaOut)
def get_reserva(reserva_id: int, sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    try:
        reserva = booking_service.get_reserva(db, reserva_id)
        verificar_reserva(sesion, reserva)
        return booking_service.reserva_to_dict(reserva)
    except Exception as e:
        raise http_error(e, "get reserva")


@router.post("/reservas/{reserva_id}/pago", response_model=PagoResponse)
def pay_reserva(
    reserva_id: int,
    body: PagoRequest,
    sesion: Sesion = Depends(usuario_actual),
    db: Session = Depends(get_db),
):
    try:
        verificar_reserva(sesion, booking_service.get_reserva(db, reserva_id))
        return booking_service.confirmar_pago(db, reserva_id, body.metodo_pago, body.referencia)
    except Exception as e:
        raise http_error(e, "confirm payment")


@router.post("/reservas/{reserva_id}/cancelar", response_model=ReservaOut)
def cancel_reserva(reserva_id: int, sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    try:
        verificar_reserva(sesion, booking_service.get_reserva(db, reserva_id))
        return booking_service.reserva_to_dict(booking_service.cancelar_reserva(db, reserva_id))
    except Exception as e:
        raise http_error(e, "cancel reserva")


@router.post("/admin/reservas/expirar", response_model=CountResponse, dependencies=[Depends(solo_admin)])
def expire_reservas(db: Session = Depends(get_db)):
    """
    Sweep every pending reservation past its deadline.
    """
    try:
        return {"count": booking_service.expirar_reservas(db)}
    except Exception as e:
        raise http_error(e, "expire reservas")


# ---------------------------------------------------------------------------
# Boletos
# ---------------------------------------------------------------------------

@router.get("/reservas/{reserva_id}/boleto", response_model=BoletoOut)
def get_boleto_reserva(reserva_id: int, sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    try:
        verificar_reserva(sesion, booking_service.get_reserva(db, reserva_id))
        return booking_service.boleto_to_dict(booking_service.boleto_por_reserva(db, reserva_id))
    except Exception as e:
        raise http_error(e, "get boleto")


@router.get("/boletos/{codigo}", response_model=BoletoOut)
def get_boleto(codigo: str, db: Session = Depends(get_db)):
    try:
        return booking_service.boleto_to_dict(booking_service.boleto_por_codigo(db, codigo))
    except Exception as e:
        raise http_error(e, "get boleto")


# ---------------------------------------------------------------------------
# Búsqueda
# ---------------------------------------------------------------------------

@router.get("/rutas/buscar", response_model=BusquedaRutasResponse)
def search_rutas(
    origen: Optional[str] = None,
    destino: Optional[str] = None,
    fecha: Optional[date] = None,
    cooperativa: Optional[str] = None,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    try:
        return booking_service.buscar_rutas(db, origen, destino, fecha, cooperativa, page, size)
    except Exception as e:
        raise http_error(e, "search rutas")
