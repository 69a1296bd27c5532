"""
Bearer-token dependencies for the routers.

Every guard resolves the token into a Sesion and then checks the role:
the system administrator passes all of them, cooperative staff (ADMIN or
OFICINISTA) only reach their own cooperative, drivers only their own
viajes and hours, passengers only their own reservas.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .constants import ROL_CHOFER, ROL_CLIENTE, ROL_COOPERATIVA, ROLES_GESTION
from .db import get_db
from .errors import AuthenticationError, http_error
from .services.auth_service import Sesion, auth_service
from .services.catalog_service import get_usuario

bearer = HTTPBearer(auto_error=False)


def usuario_actual(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Sesion:
    if credentials is None:
        raise http_error(AuthenticationError("No autenticado"), "authenticate")
    try:
        return auth_service.leer_token(credentials.credentials)
    except Exception as e:
        raise http_error(e, "authenticate")


def es_personal(sesion: Sesion) -> bool:
    return sesion.rol == ROL_COOPERATIVA and sesion.rol_cooperativa in ROLES_GESTION


def es_chofer(sesion: Sesion) -> bool:
    return sesion.rol == ROL_COOPERATIVA and sesion.rol_cooperativa == ROL_CHOFER


def verificar_cooperativa(sesion: Sesion, cooperativa_id: int):
    """
    Raises:
        PermissionError: the account belongs to another cooperative
    """
    if not sesion.es_admin and sesion.cooperativa_id != cooperativa_id:
        raise PermissionError("No tiene acceso a esta cooperativa")


def verificar_viaje(sesion: Sesion, viaje):
    """
    Raises:
        PermissionError: a driver acting on a viaje assigned to someone else,
            or staff of another cooperative
    """
    if es_chofer(sesion) and viaje.chofer_id != sesion.user_id:
        raise PermissionError("El viaje no está asignado a este chofer")
    verificar_cooperativa(sesion, viaje.cooperativa_id)


def _exigir(condicion: bool, mensaje: str):
    if not condicion:
        raise http_error(PermissionError(mensaje), "authorize")


def solo_admin(sesion: Sesion = Depends(usuario_actual)) -> Sesion:
    _exigir(sesion.es_admin, "Requiere administrador del sistema")
    return sesion


def personal_cooperativa(sesion: Sesion = Depends(usuario_actual)) -> Sesion:
    _exigir(sesion.es_admin or es_personal(sesion), "Requiere personal de la cooperativa")
    return sesion


def personal_de_cooperativa(cooperativa_id: int, sesion: Sesion = Depends(personal_cooperativa)) -> Sesion:
    """Staff guard for routes carrying the cooperative in the path."""
    _exigir(sesion.es_admin or sesion.cooperativa_id == cooperativa_id, "No tiene acceso a esta cooperativa")
    return sesion


def chofer_o_personal(sesion: Sesion = Depends(usuario_actual)) -> Sesion:
    _exigir(sesion.es_admin or es_personal(sesion) or es_chofer(sesion), "Requiere chofer o personal de la cooperativa")
    return sesion


def chofer_propio(
    chofer_id: int,
    sesion: Sesion = Depends(chofer_o_personal),
    db: Session = Depends(get_db),
) -> Sesion:
    """A driver sees only their own day; staff see any driver of their cooperative."""
    if es_chofer(sesion):
        _exigir(sesion.user_id == chofer_id, "Solo puede consultar sus propios viajes")
        return sesion
    try:
        verificar_cooperativa(sesion, get_usuario(db, chofer_id).cooperativa_id)
    except Exception as e:
        raise http_error(e, "authorize")
    return sesion


def verificar_reserva(sesion: Sesion, reserva):
    """
    Passengers reach their own reservas, staff those sold on their cooperative's viajes.

    Raises:
        PermissionError: anyone else
    """
    if sesion.rol == ROL_CLIENTE:
        if (reserva.cliente_email or "").lower() != sesion.email.lower():
            raise PermissionError("La reserva pertenece a otro cliente")
        return
    if not sesion.es_admin and not es_personal(sesion):
        raise PermissionError("Requiere una cuenta de cliente o personal de la cooperativa")
    verificar_cooperativa(sesion, reserva.viaje.cooperativa_id)
