"""Shared constants for API business rules."""

# Weekday names as sent by the client, indexed like date.weekday()
DIAS_SEMANA = ["LUNES", "MARTES", "MIERCOLES", "JUEVES", "VIERNES", "SABADO", "DOMINGO"]

TIPO_INTERPROVINCIAL = "INTERPROVINCIAL"
TIPO_INTRAPROVINCIAL = "INTRAPROVINCIAL"

VIAJE_IDA = "IDA"
VIAJE_VUELTA = "VUELTA"

# Row states of generation previews
ESTADO_OK = "OK"
ESTADO_SIN_BUS = "SIN_BUS"
ESTADO_SIN_CHOFER = "SIN_CHOFER"

# Detour tolerance when picking intermediate stops between two terminals.
PARADA_DETOUR_FACTOR = 1.25

MAX_CHOFERES_POR_BUS = 3

SEAT_LETTERS = "ABCDE"

MIN_PRECIO = 0.50

BOLETO_PREFIX = "AB"


class BusEstado:
    DISPONIBLE = "DISPONIBLE"
    EN_SERVICIO = "EN_SERVICIO"
    MANTENIMIENTO = "MANTENIMIENTO"
    PARADA = "PARADA"

    ALL = (DISPONIBLE, EN_SERVICIO, MANTENIMIENTO, PARADA)


class ViajeEstado:
    PROGRAMADO = "PROGRAMADO"
    EN_RUTA = "EN_RUTA"
    FINALIZADO = "FINALIZADO"
    CANCELADO = "CANCELADO"


class ReservaEstado:
    PENDIENTE = "PENDIENTE"
    PAGADO = "PAGADO"
    CANCELADO = "CANCELADO"
    EXPIRADO = "EXPIRADO"


class AsientoEstado:
    DISPONIBLE = "DISPONIBLE"
    RESERVADO = "RESERVADO"
    VENDIDO = "VENDIDO"
    BLOQUEADO = "BLOQUEADO"


class AsignacionEstado:
    ACTIVA = "ACTIVA"
    SUSPENDIDA = "SUSPENDIDA"
    FINALIZADA = "FINALIZADA"


TIPOS_ASIENTO = ("NORMAL", "VIP", "ACONDICIONADO")
MOTIVOS_PARADA = ("MANTENIMIENTO", "EXCESO_CAPACIDAD", "OTRO")
METODOS_PAGO = ("EFECTIVO", "TARJETA", "PAYPAL", "TRANSFERENCIA")
ROLES_COOPERATIVA = ("ADMIN", "OFICINISTA", "CHOFER")
# Cooperative roles that manage fleet, schedules and sales
ROLES_GESTION = ("ADMIN", "OFICINISTA")
ROL_CHOFER = "CHOFER"

# Account kinds carried in access tokens
ROL_CLIENTE = "CLIENTE"
ROL_COOPERATIVA = "COOPERATIVA"
ROL_ADMIN_SISTEMA = "ADMIN"

TIPOS_CHOFER_BUS = ("PRINCIPAL", "ALTERNO")
