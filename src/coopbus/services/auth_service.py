"""
Authentication Service.

Three kinds of accounts sign in: passengers (UsuarioApp, self-registered),
cooperative staff (UsuarioCooperativa with a password) and the system
administrator configured in the auth settings. Each login returns a signed
JWT; logout revokes the token id until it would have expired anyway.

Author: Backend Team
"""

import logging
import os
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from cachetools import TTLCache
from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config_loader import get_settings
from ..constants import ROL_ADMIN_SISTEMA, ROL_CLIENTE, ROL_COOPERATIVA
from ..errors import AuthenticationError
from ..models import Cooperativa, UsuarioApp, UsuarioCooperativa
from .horarios import now

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().get("auth", {}).get("bcrypt_rounds", 12),
)


@dataclass
class Sesion:
    """Identity resolved from an access token."""
    user_id: int
    email: str
    rol: str
    jti: str
    rol_cooperativa: Optional[str] = None
    cooperativa_id: Optional[int] = None

    @property
    def es_admin(self) -> bool:
        return self.rol == ROL_ADMIN_SISTEMA


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verificar_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


class AuthService:
    """
    Issues, reads and revokes access tokens.
    """

    def __init__(self):
        cfg = get_settings().get("auth", {})
        self.secret = os.getenv("COOPBUS_JWT_SECRET") or cfg.get("jwt_secret")
        self.algorithm = cfg.get("algorithm", "HS256")
        self.ttl_minutes = cfg.get("token_ttl_minutes", 480)
        self.password_min_length = cfg.get("password_min_length", 6)
        self.admin_email = (cfg.get("admin_email") or "").lower()
        self.admin_password = os.getenv("COOPBUS_ADMIN_PASSWORD") or cfg.get("admin_password")
        # jti -> True, kept as long as a token could still be valid
        self._revocados = TTLCache(maxsize=10000, ttl=self.ttl_minutes * 60)

    def emitir_token(
        self,
        user_id: int,
        email: str,
        rol: str,
        rol_cooperativa: Optional[str] = None,
        cooperativa_id: Optional[int] = None,
    ) -> str:
        emitido = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "rol": rol,
            "rol_cooperativa": rol_cooperativa,
            "cooperativa_id": cooperativa_id,
            "jti": uuid.uuid4().hex,
            "iat": emitido,
            "exp": emitido + timedelta(minutes=self.ttl_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def leer_token(self, token: str) -> Sesion:
        """
        Raises:
            AuthenticationError: expired, malformed or revoked token
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("La sesión expiró")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Token inválido")
        if payload.get("jti") in self._revocados:
            raise AuthenticationError("La sesión fue cerrada")
        return Sesion(
            user_id=int(payload["sub"]),
            email=payload.get("email", ""),
            rol=payload.get("rol", ""),
            jti=payload.get("jti", ""),
            rol_cooperativa=payload.get("rol_cooperativa"),
            cooperativa_id=payload.get("cooperativa_id"),
        )

    def revocar(self, sesion: Sesion):
        self._revocados[sesion.jti] = True
        logger.info(f"Token revoked for {sesion.rol} {sesion.user_id}")

    def clear_cache(self):
        self._revocados.clear()

    # -----------------------------------------------------------------------
    # Logins
    # -----------------------------------------------------------------------

    def login_cliente(self, db: Session, email: str, password: str) -> Dict:
        usuario = (
            db.query(UsuarioApp)
            .filter(func.lower(UsuarioApp.email) == (email or "").strip().lower())
            .first()
        )
        if usuario is None or not usuario.activo or not verificar_password(password, usuario.password_hash):
            raise AuthenticationError("Credenciales inválidas")
        return self._respuesta_cliente(usuario)

    def login_cooperativa(self, db: Session, email: str, password: str) -> Dict:
        usuario = (
            db.query(UsuarioCooperativa)
            .filter(func.lower(UsuarioCooperativa.email) == (email or "").strip().lower())
            .first()
        )
        if usuario is None or not usuario.activo or not verificar_password(password, usuario.password_hash):
            raise AuthenticationError("Credenciales inválidas")
        cooperativa = db.query(Cooperativa).filter(Cooperativa.id == usuario.cooperativa_id).first()
        if cooperativa is None or not cooperativa.activo:
            raise AuthenticationError("La cooperativa no está activa")
        return self._respuesta_cooperativa(usuario, cooperativa)

    def login_admin(self, email: str, password: str) -> Dict:
        email = (email or "").strip().lower()
        if not self.admin_password or email != self.admin_email:
            raise AuthenticationError("Credenciales inválidas")
        if not secrets.compare_digest(password or "", self.admin_password):
            raise AuthenticationError("Credenciales inválidas")
        logger.info("System administrator signed in")
        return {
            "token": self.emitir_token(0, self.admin_email, ROL_ADMIN_SISTEMA),
            "user_id": 0,
            "email": self.admin_email,
            "rol": ROL_ADMIN_SISTEMA,
            "nombres": "Administrador",
            "apellidos": "del Sistema",
        }

    def registrar(self, db: Session, datos: Dict) -> Dict:
        """
        Create a passenger account and sign it in.

        Raises:
            ValueError: missing email, short password or email already taken
        """
        email = (datos.get("email") or "").strip().lower()
        password = datos.get("password") or ""
        if not email or "@" not in email:
            raise ValueError("Email inválido")
        if len(password) < self.password_min_length:
            raise ValueError(f"La contraseña debe tener al menos {self.password_min_length} caracteres")
        if email == self.admin_email:
            raise ValueError(f"El email {email} ya está registrado")
        if db.query(UsuarioApp).filter(func.lower(UsuarioApp.email) == email).first():
            raise ValueError(f"El email {email} ya está registrado")

        usuario = UsuarioApp(
            email=email,
            password_hash=hash_password(password),
            nombres=(datos.get("nombres") or "").strip() or None,
            apellidos=(datos.get("apellidos") or "").strip() or None,
            telefono=datos.get("telefono"),
            activo=True,
            creado_en=now(),
        )
        db.add(usuario)
        db.commit()
        db.refresh(usuario)
        logger.info(f"Registered passenger account {usuario.id}")
        return self._respuesta_cliente(usuario)

    # -----------------------------------------------------------------------
    # Profiles
    # -----------------------------------------------------------------------

    def _respuesta_cliente(self, usuario: UsuarioApp) -> Dict:
        return {
            "token": self.emitir_token(usuario.id, usuario.email, ROL_CLIENTE),
            **self._perfil_cliente(usuario),
        }

    def _respuesta_cooperativa(self, usuario: UsuarioCooperativa, cooperativa: Cooperativa) -> Dict:
        token = self.emitir_token(
            usuario.id, usuario.email, ROL_COOPERATIVA, usuario.rol_cooperativa, usuario.cooperativa_id
        )
        return {"token": token, **self._perfil_cooperativa(usuario, cooperativa)}

    @staticmethod
    def _perfil_cliente(usuario: UsuarioApp) -> Dict:
        return {
            "user_id": usuario.id,
            "email": usuario.email,
            "rol": ROL_CLIENTE,
            "nombres": usuario.nombres,
            "apellidos": usuario.apellidos,
            "telefono": usuario.telefono,
        }

    @staticmethod
    def _perfil_cooperativa(usuario: UsuarioCooperativa, cooperativa: Cooperativa) -> Dict:
        return {
            "user_id": usuario.id,
            "email": usuario.email,
            "rol": ROL_COOPERATIVA,
            "nombres": usuario.nombres,
            "apellidos": usuario.apellidos,
            "rol_cooperativa": usuario.rol_cooperativa,
            "cooperativa_id": cooperativa.id,
            "cooperativa_nombre": cooperativa.nombre,
            "cedula": usuario.cedula,
            "telefono": usuario.telefono,
        }

    def perfil(self, db: Session, sesion: Sesion) -> Dict:
        """Current account behind a token, read fresh from the database."""
        if sesion.es_admin:
            return {
                "user_id": 0,
                "email": self.admin_email,
                "rol": ROL_ADMIN_SISTEMA,
                "nombres": "Administrador",
                "apellidos": "del Sistema",
            }
        if sesion.rol == ROL_COOPERATIVA:
            usuario = db.query(UsuarioCooperativa).filter(UsuarioCooperativa.id == sesion.user_id).first()
            if usuario is None or not usuario.activo:
                raise AuthenticationError("La cuenta ya no está activa")
            cooperativa = db.query(Cooperativa).filter(Cooperativa.id == usuario.cooperativa_id).first()
            return self._perfil_cooperativa(usuario, cooperativa)
        usuario = db.query(UsuarioApp).filter(UsuarioApp.id == sesion.user_id).first()
        if usuario is None or not usuario.activo:
            raise AuthenticationError("La cuenta ya no está activa")
        return self._perfil_cliente(usuario)

    def get_cache_stats(self) -> Dict:
        return {
            "revoked_tokens": len(self._revocados),
            "cache_maxsize": self._revocados.maxsize,
            "cache_ttl_seconds": self._revocados.ttl,
        }


# Singleton
auth_service = AuthService()
