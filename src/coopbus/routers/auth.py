from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import http_error
from ..schemas import CamelModel, MessageResponse
from ..security import solo_admin, usuario_actual
from ..services.auth_service import Sesion, auth_service

router = APIRouter()


class LoginRequest(CamelModel):
    email: str
    password: str


class RegisterRequest(CamelModel):
    email: str
    password: str
    nombres: Optional[str] = None
    apellidos: Optional[str] = None
    telefono: Optional[str] = None


class PerfilOut(CamelModel):
    user_id: int
    email: str
    rol: str
    nombres: Optional[str] = None
    apellidos: Optional[str] = None
    rol_cooperativa: Optional[str] = None
    cooperativa_id: Optional[int] = None
    cooperativa_nombre: Optional[str] = None
    cedula: Optional[str] = None
    telefono: Optional[str] = None


class AuthResponse(PerfilOut):
    token: str


@router.post("/auth/login-cliente", response_model=AuthResponse)
def login_cliente(body: LoginRequest, db: Session = Depends(get_db)):
    try:
        return auth_service.login_cliente(db, body.email, body.password)
    except Exception as e:
        raise http_error(e, "log in")


@router.post("/auth/login-cooperativa", response_model=AuthResponse)
def login_cooperativa(body: LoginRequest, db: Session = Depends(get_db)):
    """Staff and drivers sign in with the email and password set on their personal record."""
    try:
        return auth_service.login_cooperativa(db, body.email, body.password)
    except Exception as e:
        raise http_error(e, "log in")


@router.post("/auth/login-admin", response_model=AuthResponse)
def login_admin(body: LoginRequest):
    try:
        return auth_service.login_admin(body.email, body.password)
    except Exception as e:
        raise http_error(e, "log in")


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """Create a passenger account; the response already carries a token."""
    try:
        return auth_service.registrar(db, body.model_dump())
    except Exception as e:
        raise http_error(e, "register")


@router.get("/users/me", response_model=PerfilOut)
def get_me(sesion: Sesion = Depends(usuario_actual), db: Session = Depends(get_db)):
    try:
        return auth_service.perfil(db, sesion)
    except Exception as e:
        raise http_error(e, "get profile")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(sesion: Sesion = Depends(usuario_actual)):
    auth_service.revocar(sesion)
    return {"message": "Sesión cerrada"}


@router.get("/admin/auth/cache-stats", dependencies=[Depends(solo_admin)])
def get_auth_cache_stats():
    return auth_service.get_cache_stats()
