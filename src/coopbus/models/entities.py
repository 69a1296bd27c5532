"""
SQLAlchemy ORM models.

Times of day are stored as TIME columns; the generation engine works in
minutes since midnight and converts at the edges.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..constants import (
    AsignacionEstado,
    BusEstado,
    ReservaEstado,
    ViajeEstado,
)
from ..db import Base


class Cooperativa(Base):
    __tablename__ = "cooperativas"

    id = Column(Integer, primary_key=True)
    nombre = Column(String(150), nullable=False)
    ruc = Column(String(13), nullable=False, unique=True)
    logo_url = Column(String(500))
    activo = Column(Boolean, nullable=False, default=True)

    terminales = relationship(
        "Terminal", secondary="cooperativa_terminales", order_by="Terminal.nombre", viewonly=True
    )


class Terminal(Base):
    __tablename__ = "terminales"

    id = Column(Integer, primary_key=True)
    nombre = Column(String(150), nullable=False)
    ciudad = Column(String(100), nullable=False)
    provincia = Column(String(100), nullable=False)
    latitud = Column(Float, nullable=False)
    longitud = Column(Float, nullable=False)
    activo = Column(Boolean, nullable=False, default=True)


class CooperativaTerminal(Base):
    __tablename__ = "cooperativa_terminales"

    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), primary_key=True)
    terminal_id = Column(Integer, ForeignKey("terminales.id"), primary_key=True)


class Bus(Base):
    __tablename__ = "buses"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, index=True)
    numero_interno = Column(String(20), nullable=False)
    placa = Column(String(10), nullable=False, unique=True)
    chasis_marca = Column(String(60))
    carroceria_marca = Column(String(60))
    foto_url = Column(String(500))
    capacidad_piso_1 = Column(Integer, nullable=False, default=40)
    capacidad_piso_2 = Column(Integer, nullable=False, default=0)
    estado = Column(String(20), nullable=False, default=BusEstado.DISPONIBLE)
    activo = Column(Boolean, nullable=False, default=True)

    cooperativa = relationship("Cooperativa")
    choferes = relationship("BusChofer", back_populates="bus", cascade="all, delete-orphan")

    @property
    def capacidad_asientos(self) -> int:
        return (self.capacidad_piso_1 or 0) + (self.capacidad_piso_2 or 0)

    @property
    def dos_pisos(self) -> bool:
        return (self.capacidad_piso_2 or 0) > 0


class UsuarioCooperativa(Base):
    __tablename__ = "usuarios_cooperativa"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, index=True)
    nombres = Column(String(100), nullable=False)
    apellidos = Column(String(100), nullable=False)
    cedula = Column(String(10))
    email = Column(String(150), nullable=False, unique=True)
    telefono = Column(String(20))
    rol_cooperativa = Column(String(20), nullable=False)
    password_hash = Column(String(255))
    activo = Column(Boolean, nullable=False, default=True)

    @property
    def nombre_completo(self) -> str:
        return f"{self.nombres} {self.apellidos}".strip()


class UsuarioApp(Base):
    """Passenger account registered through the public site."""
    __tablename__ = "usuarios_app"

    id = Column(Integer, primary_key=True)
    email = Column(String(150), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    nombres = Column(String(100))
    apellidos = Column(String(100))
    telefono = Column(String(20))
    activo = Column(Boolean, nullable=False, default=True)
    creado_en = Column(DateTime, nullable=False)


class BusChofer(Base):
    __tablename__ = "bus_choferes"
    __table_args__ = (UniqueConstraint("bus_id", "chofer_id"),)

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False)
    chofer_id = Column(Integer, ForeignKey("usuarios_cooperativa.id"), nullable=False)
    tipo = Column(String(20), nullable=False, default="PRINCIPAL")

    bus = relationship("Bus", back_populates="choferes")
    chofer = relationship("UsuarioCooperativa")


class FrecuenciaConfig(Base):
    __tablename__ = "frecuencia_config"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, unique=True)
    precio_base_por_km = Column(Float, nullable=False)
    factor_diesel_por_km = Column(Float, nullable=False)
    precio_diesel = Column(Float, nullable=False)
    margen_ganancia_porcentaje = Column(Float, nullable=False)
    max_horas_diarias_chofer = Column(Integer, nullable=False)
    max_horas_excepcionales = Column(Integer, nullable=False)
    max_dias_excepcionales_semana = Column(Integer, nullable=False)
    tiempo_descanso_entre_viajes_minutos = Column(Integer, nullable=False)
    descanso_interprovincial_minutos = Column(Integer, nullable=False)
    tiempo_minimo_parada_bus_minutos = Column(Integer, nullable=False)
    horas_operacion_max_bus = Column(Integer, nullable=False)
    intervalo_minimo_frecuencias_minutos = Column(Integer, nullable=False)
    hora_inicio_operacion = Column(Time, nullable=False)
    hora_fin_operacion = Column(Time, nullable=False)
    umbral_interprovincial_km = Column(Float, nullable=False)


class Frecuencia(Base):
    __tablename__ = "frecuencias"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, index=True)
    origen_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    destino_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    hora_salida = Column(Time, nullable=False)
    duracion_minutos = Column(Integer, nullable=False)
    # Comma separated weekday names (LUNES,MARTES,...)
    dias_operacion = Column(String(100), nullable=False)
    fecha_inicio = Column(Date)
    fecha_fin = Column(Date)
    bus_id = Column(Integer, ForeignKey("buses.id"))
    chofer_id = Column(Integer, ForeignKey("usuarios_cooperativa.id"))
    tipo_frecuencia = Column(String(20))
    es_viaje_de = Column(String(10))
    precio = Column(Float, nullable=False, default=0.0)
    activa = Column(Boolean, nullable=False, default=True)

    origen = relationship("Terminal", foreign_keys=[origen_id])
    destino = relationship("Terminal", foreign_keys=[destino_id])
    bus = relationship("Bus")
    chofer = relationship("UsuarioCooperativa")
    paradas = relationship(
        "ParadaIntermedia",
        back_populates="frecuencia",
        cascade="all, delete-orphan",
        order_by="ParadaIntermedia.orden_parada",
    )

    @property
    def dias(self) -> list:
        return [d for d in (self.dias_operacion or "").split(",") if d]


class ParadaIntermedia(Base):
    __tablename__ = "paradas_intermedias"

    id = Column(Integer, primary_key=True)
    frecuencia_id = Column(Integer, ForeignKey("frecuencias.id"), nullable=False)
    terminal_id = Column(Integer, ForeignKey("terminales.id"))
    ciudad = Column(String(100), nullable=False)
    orden_parada = Column(Integer, nullable=False)
    minutos_desde_origen = Column(Integer, nullable=False)
    precio_adicional = Column(Float, nullable=False, default=0.0)

    frecuencia = relationship("Frecuencia", back_populates="paradas")


class AsignacionBusFrecuencia(Base):
    __tablename__ = "asignaciones_bus_frecuencia"

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False)
    frecuencia_id = Column(Integer, ForeignKey("frecuencias.id"), nullable=False)
    fecha_inicio = Column(Date, nullable=False)
    fecha_fin = Column(Date)
    estado = Column(String(20), nullable=False, default=AsignacionEstado.ACTIVA)
    observaciones = Column(Text)

    bus = relationship("Bus")
    frecuencia = relationship("Frecuencia")


class DiaParadaBus(Base):
    __tablename__ = "dias_parada_bus"
    __table_args__ = (UniqueConstraint("bus_id", "fecha"),)

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False)
    fecha = Column(Date, nullable=False)
    motivo = Column(String(30), nullable=False)
    observaciones = Column(Text)

    bus = relationship("Bus")


class PlantillaRotacion(Base):
    __tablename__ = "plantillas_rotacion"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, index=True)
    nombre = Column(String(150), nullable=False)
    descripcion = Column(Text)
    creada_en = Column(DateTime, nullable=False, default=datetime.now)

    turnos = relationship(
        "TurnoPlantilla",
        back_populates="plantilla",
        cascade="all, delete-orphan",
        order_by=lambda: [TurnoPlantilla.numero_turno, TurnoPlantilla.hora_salida],
    )


class TurnoPlantilla(Base):
    __tablename__ = "turnos_plantilla"

    id = Column(Integer, primary_key=True)
    plantilla_id = Column(Integer, ForeignKey("plantillas_rotacion.id"), nullable=False)
    numero_turno = Column(Integer, nullable=False)
    hora_salida = Column(Time, nullable=False)
    origen_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    destino_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    duracion_minutos = Column(Integer, nullable=False)

    plantilla = relationship("PlantillaRotacion", back_populates="turnos")
    origen = relationship("Terminal", foreign_keys=[origen_id])
    destino = relationship("Terminal", foreign_keys=[destino_id])


class Viaje(Base):
    __tablename__ = "viajes"

    id = Column(Integer, primary_key=True)
    cooperativa_id = Column(Integer, ForeignKey("cooperativas.id"), nullable=False, index=True)
    frecuencia_id = Column(Integer, ForeignKey("frecuencias.id"))
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False)
    chofer_id = Column(Integer, ForeignKey("usuarios_cooperativa.id"))
    fecha = Column(Date, nullable=False, index=True)
    hora_salida = Column(Time, nullable=False)
    hora_llegada = Column(Time, nullable=False)
    origen_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    destino_id = Column(Integer, ForeignKey("terminales.id"), nullable=False)
    precio = Column(Float, nullable=False, default=0.0)
    estado = Column(String(20), nullable=False, default=ViajeEstado.PROGRAMADO)
    observaciones = Column(Text)
    iniciado_en = Column(DateTime)
    finalizado_en = Column(DateTime)

    cooperativa = relationship("Cooperativa")
    frecuencia = relationship("Frecuencia")
    bus = relationship("Bus")
    chofer = relationship("UsuarioCooperativa")
    origen = relationship("Terminal", foreign_keys=[origen_id])
    destino = relationship("Terminal", foreign_keys=[destino_id])


class Asiento(Base):
    __tablename__ = "asientos"
    __table_args__ = (UniqueConstraint("bus_id", "numero_asiento"),)

    id = Column(Integer, primary_key=True)
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False, index=True)
    numero_asiento = Column(String(5), nullable=False)
    fila = Column(Integer, nullable=False)
    columna = Column(Integer, nullable=False)
    piso = Column(Integer, nullable=False, default=1)
    tipo_asiento = Column(String(20), nullable=False, default="NORMAL")
    habilitado = Column(Boolean, nullable=False, default=True)


class Reserva(Base):
    __tablename__ = "reservas"

    id = Column(Integer, primary_key=True)
    viaje_id = Column(Integer, ForeignKey("viajes.id"), nullable=False, index=True)
    cliente_email = Column(String(150))
    cliente_nombre = Column(String(150))
    tipo_pasajero = Column(String(20), nullable=False, default="REGULAR")
    # Comma separated seat numbers, kept after the seat locks are released
    asientos = Column(String(500), nullable=False)
    monto = Column(Float, nullable=False)
    estado = Column(String(20), nullable=False, default=ReservaEstado.PENDIENTE)
    metodo_pago = Column(String(20))
    referencia_pago = Column(String(100))
    creada_en = Column(DateTime, nullable=False, default=datetime.now)
    fecha_expira = Column(DateTime, nullable=False)

    viaje = relationship("Viaje")
    bloqueos = relationship("ReservaAsiento", back_populates="reserva", cascade="all, delete-orphan")

    @property
    def lista_asientos(self) -> list:
        return [a for a in self.asientos.split(",") if a]


class ReservaAsiento(Base):
    """Seat lock; the unique key is what prevents double booking."""

    __tablename__ = "reserva_asientos"
    __table_args__ = (UniqueConstraint("viaje_id", "numero_asiento"),)

    id = Column(Integer, primary_key=True)
    reserva_id = Column(Integer, ForeignKey("reservas.id"), nullable=False)
    viaje_id = Column(Integer, ForeignKey("viajes.id"), nullable=False)
    numero_asiento = Column(String(5), nullable=False)

    reserva = relationship("Reserva", back_populates="bloqueos")


class Boleto(Base):
    __tablename__ = "boletos"

    id = Column(Integer, primary_key=True)
    codigo = Column(String(20), nullable=False, unique=True)
    reserva_id = Column(Integer, ForeignKey("reservas.id"), nullable=False, unique=True)
    estado = Column(String(20), nullable=False, default="EMITIDO")
    fecha_emision = Column(DateTime, nullable=False, default=datetime.now)

    reserva = relationship("Reserva")


class PosicionViaje(Base):
    __tablename__ = "posiciones_viaje"

    id = Column(Integer, primary_key=True)
    viaje_id = Column(Integer, ForeignKey("viajes.id"), nullable=False, index=True)
    latitud = Column(Float, nullable=False)
    longitud = Column(Float, nullable=False)
    velocidad_kmh = Column(Float)
    precision = Column(Float)
    timestamp = Column(DateTime, nullable=False, index=True)
    provider = Column(String(20), nullable=False, default="GPS")
    recibido_en = Column(DateTime, nullable=False, default=datetime.now)
