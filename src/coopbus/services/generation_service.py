"""
Frequency Generation Service.

Two generators build a weekly template day of departures for a
cooperative and turn it into Frecuencias plus dated Viajes:

- Intelligent (circuit) generation: buses shuttle back and forth on
  terminal pairs A <-> B, staggered so departures on each directed route
  keep the minimum headway.
- Automatic (interval) generation: fixed departures every N minutes per
  directed route, each served by whichever bus can reach it.

Both share BusTimeline / DriverRoster from planning.py and never write
anything when the preview reports errors.

Author: Backend Team
"""

import heapq
import logging
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..constants import (
    ESTADO_OK,
    ESTADO_SIN_BUS,
    ESTADO_SIN_CHOFER,
    TIPO_INTERPROVINCIAL,
    VIAJE_IDA,
    VIAJE_VUELTA,
    ViajeEstado,
)
from ..models import Bus, Frecuencia, ParadaIntermedia, Viaje
from .catalog_service import (
    buses_operativos,
    choferes_activos,
    choferes_por_bus,
    contar_choferes,
)
from .circuit_service import (
    calcular_circuitos,
    calcular_precio,
    construir_circuito,
    descanso_minutos,
    estado_cache,
    get_config,
    invalidar_estado,
    max_paradas_permitidas,
    paradas_intermedias,
    terminales_habilitadas,
    tipo_frecuencia,
    tramo_programado,
    tramo_viaje,
    turnaround_minutos,
    ventana_operacion,
)
from .horarios import (
    MINUTOS_DIA,
    dia_semana,
    fechas_operativas,
    fmt_time,
    from_minutes,
    normalizar_dias,
    parse_time,
    to_minutes,
    today,
)
from .planning import BusTimeline, DriverRoster, Tramo, agrupar_ocupacion, limite_diario_minutos
from .trip_service import materializar_viajes, tiene_ventas

logger = logging.getLogger(__name__)

ULTIMO_MINUTO = MINUTOS_DIA - 1


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _validar_rango(fecha_inicio: Optional[date], fecha_fin: Optional[date], dias, errores: List[str]):
    """Validate dates and weekdays; returns (dias normalizados, fechas) or ([], [])."""
    if fecha_inicio is None or fecha_fin is None:
        errores.append("Debe indicar fecha de inicio y fecha de fin")
        return [], []
    if fecha_fin < fecha_inicio:
        errores.append("La fecha de fin no puede ser anterior a la fecha de inicio")
        return [], []
    try:
        dias = normalizar_dias(dias)
    except ValueError as e:
        errores.append(str(e))
        return [], []
    if not dias:
        errores.append("Debe seleccionar al menos un día de operación")
        return [], []
    fechas = fechas_operativas(fecha_inicio, fecha_fin, dias)
    if not fechas:
        errores.append("Ninguna fecha del rango coincide con los días de operación seleccionados")
    return dias, fechas


def _contexto_flota(db: Session, cooperativa_id: int) -> Dict:
    buses = buses_operativos(db, cooperativa_id)
    choferes = choferes_activos(db, cooperativa_id)
    return {
        "buses": buses,
        "choferes": choferes,
        "nombres_chofer": {c.id: c.nombre_completo for c in choferes},
        "choferes_por_bus": choferes_por_bus(db, cooperativa_id),
    }


def _ocupacion_existente(
    db: Session,
    cooperativa_id: int,
    fechas: List[date],
    fecha_inicio: date,
    fecha_fin: date,
    config,
) -> Dict:
    """
    Trips the cooperative already runs on the planned dates, per bus and
    per driver: active frecuencias in force on each date plus stored viajes
    that no frecuencia generated (rotations, manual trips).

    Returns:
        {"buses": {bus_id: {fecha: [Tramo]}}, "choferes": {chofer_id: {fecha: [Tramo]}},
         "frecuencias": {(origen_id, destino_id, salida, bus_id): chofer_id}}
    """
    ocupacion: Dict = {"buses": {}, "choferes": {}, "frecuencias": {}}

    def registrar(bus_id, chofer_id, fecha, tramo):
        if bus_id is not None:
            ocupacion["buses"].setdefault(bus_id, {}).setdefault(fecha, []).append(tramo)
        if chofer_id is not None:
            ocupacion["choferes"].setdefault(chofer_id, {}).setdefault(fecha, []).append(tramo)

    frecuencias = (
        db.query(Frecuencia)
        .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
        .all()
    )
    for frecuencia in frecuencias:
        if frecuencia.bus_id is None and frecuencia.chofer_id is None:
            continue
        vigentes = [
            fecha for fecha in fechas
            if dia_semana(fecha) in frecuencia.dias
            and (frecuencia.fecha_inicio is None or frecuencia.fecha_inicio <= fecha)
            and (frecuencia.fecha_fin is None or fecha <= frecuencia.fecha_fin)
        ]
        if not vigentes:
            continue
        tramo = tramo_programado(
            frecuencia.origen,
            frecuencia.destino,
            to_minutes(frecuencia.hora_salida),
            frecuencia.duracion_minutos,
            config,
            frecuencia.tipo_frecuencia,
        )
        for fecha in vigentes:
            registrar(frecuencia.bus_id, frecuencia.chofer_id, fecha, tramo)
        if frecuencia.bus_id is not None:
            clave = (frecuencia.origen_id, frecuencia.destino_id, tramo.salida, frecuencia.bus_id)
            ocupacion["frecuencias"][clave] = frecuencia.chofer_id

    planificadas = set(fechas)
    sueltos = (
        db.query(Viaje)
        .filter(
            Viaje.cooperativa_id == cooperativa_id,
            Viaje.frecuencia_id.is_(None),
            Viaje.estado != ViajeEstado.CANCELADO,
            Viaje.fecha >= fecha_inicio,
            Viaje.fecha <= fecha_fin,
        )
        .all()
    )
    for viaje in sueltos:
        if viaje.fecha not in planificadas:
            continue
        registrar(viaje.bus_id, viaje.chofer_id, viaje.fecha, tramo_viaje(viaje, config))
    return ocupacion


def _frecuencia_duplicada(db: Session, cooperativa_id: int, fila: Dict) -> bool:
    return (
        db.query(Frecuencia)
        .filter(
            Frecuencia.cooperativa_id == cooperativa_id,
            Frecuencia.origen_id == fila["terminal_origen_id"],
            Frecuencia.destino_id == fila["terminal_destino_id"],
            Frecuencia.hora_salida == from_minutes(fila["salida"]),
            Frecuencia.bus_id == fila["bus_id"],
            Frecuencia.activa.is_(True),
        )
        .first()
        is not None
    )


def _persistir(
    db: Session,
    cooperativa_id: int,
    filas: List[Dict],
    dias: List[str],
    fecha_inicio: date,
    fecha_fin: date,
) -> Dict:
    """Create one Frecuencia per template row and materialize its viajes (single transaction)."""
    creadas: List[Frecuencia] = []
    omitidas = 0
    try:
        for fila in filas:
            if _frecuencia_duplicada(db, cooperativa_id, fila):
                omitidas += 1
                continue
            frecuencia = Frecuencia(
                cooperativa_id=cooperativa_id,
                origen_id=fila["terminal_origen_id"],
                destino_id=fila["terminal_destino_id"],
                hora_salida=from_minutes(fila["salida"]),
                duracion_minutos=fila["duracion_minutos"],
                dias_operacion=",".join(dias),
                fecha_inicio=fecha_inicio,
                fecha_fin=fecha_fin,
                bus_id=fila["bus_id"],
                chofer_id=fila.get("chofer_id"),
                tipo_frecuencia=fila.get("tipo_frecuencia"),
                es_viaje_de=fila.get("es_viaje_de"),
                precio=fila["precio"],
                activa=True,
            )
            frecuencia.paradas = [ParadaIntermedia(**p) for p in fila.get("paradas", [])]
            db.add(frecuencia)
            creadas.append(frecuencia)
        db.flush()

        viajes = materializar_viajes(
            db, cooperativa_id, fecha_inicio, fecha_fin, frecuencias=creadas, commit=False
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Generation rolled back for cooperativa {cooperativa_id}", exc_info=True)
        raise

    invalidar_estado(cooperativa_id)
    return {"creadas": len(creadas), "omitidas": omitidas, "viajes": viajes}


# ---------------------------------------------------------------------------
# Intelligent (circuit) generation
# ---------------------------------------------------------------------------

def estado_inteligente(db: Session, cooperativa_id: int) -> Dict:
    """
    Snapshot for the intelligent generation screen.

    Cached for a minute per cooperative; mutations of fleet, staff,
    terminals, configuration or frecuencias drop the entry.
    """
    cache_key = ("inteligente", cooperativa_id)
    if cache_key in estado_cache:
        logger.debug(f"Generation state cache hit: {cache_key}")
        return estado_cache[cache_key]

    config = get_config(db, cooperativa_id)
    contexto = _contexto_flota(db, cooperativa_id)
    circuitos = calcular_circuitos(db, cooperativa_id, config)
    inicio, fin = ventana_operacion(config)

    buses_totales = db.query(Bus).filter(Bus.cooperativa_id == cooperativa_id).count()

    capacidad = 0
    if circuitos:
        ciclos = [
            c["duracion_minutos"] + turnaround_minutos(c["tipo_frecuencia"], config)
            for c in circuitos
        ]
        promedio = sum(ciclos) / len(ciclos)
        capacidad = len(contexto["buses"]) * int((fin - inicio) // promedio)

    frecuencias_existentes = (
        db.query(Frecuencia)
        .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
        .count()
    )

    estado = {
        "buses_totales": buses_totales,
        "buses_disponibles": len(contexto["buses"]),
        "choferes_totales": contar_choferes(db, cooperativa_id),
        "choferes_disponibles": len(contexto["choferes"]),
        "terminales_habilitados": len(terminales_habilitadas(db, cooperativa_id)),
        "rutas_circuito": circuitos,
        "capacidad_estimada_diaria": capacidad,
        "frecuencias_existentes": frecuencias_existentes,
        "configuracion": {
            "descanso_intraprovincial_min": config.tiempo_descanso_entre_viajes_minutos,
            "descanso_interprovincial_min": config.descanso_interprovincial_minutos,
            "max_horas_chofer": config.max_horas_diarias_chofer,
            "max_horas_excepcionales": config.max_horas_excepcionales,
            "umbral_interprovincial_km": config.umbral_interprovincial_km,
            "hora_inicio": fmt_time(config.hora_inicio_operacion),
            "hora_fin": fmt_time(config.hora_fin_operacion),
            "intervalo_minimo_frecuencias": config.intervalo_minimo_frecuencias_minutos,
        },
    }
    estado_cache[cache_key] = estado
    return estado


def _resolver_circuitos(
    solicitados: List[Dict],
    terminales: Dict[int, object],
    config,
    permitir_paradas: bool,
    max_paradas_personalizado: Optional[int],
    errores: List[str],
) -> List[Dict]:
    """
    Turn the requested circuits into ida/vuelta legs with duration,
    turnaround, price and stops. Request values override computed ones.
    """
    circuitos = []
    vistos = set()
    for solicitud in solicitados:
        origen = terminales.get(solicitud.get("terminal_origen_id"))
        destino = terminales.get(solicitud.get("terminal_destino_id"))
        if origen is None or destino is None:
            errores.append(
                f"Terminal no habilitado para la cooperativa en el circuito "
                f"{solicitud.get('terminal_origen_id')} → {solicitud.get('terminal_destino_id')}"
            )
            continue
        if origen.id == destino.id:
            errores.append(f"El circuito {origen.nombre} → {destino.nombre} tiene el mismo origen y destino")
            continue
        clave = frozenset((origen.id, destino.id))
        if clave in vistos:
            continue
        vistos.add(clave)

        base = construir_circuito(origen, destino, config)
        distancia = solicitud.get("distancia_km") or base["distancia_km"]
        duracion = int(solicitud.get("duracion_minutos") or base["duracion_minutos"])
        if duracion <= 0:
            errores.append(f"Duración inválida para {origen.nombre} → {destino.nombre}")
            continue
        tipo = tipo_frecuencia(origen, destino, distancia, config)
        precio = solicitud.get("precio_base") or calcular_precio(distancia, config)

        n_paradas = 0
        habilitar = solicitud.get("habilitar_paradas")
        if tipo == TIPO_INTERPROVINCIAL and permitir_paradas and habilitar is not False:
            n_paradas = (
                max_paradas_personalizado
                or solicitud.get("max_paradas")
                or max_paradas_permitidas(tipo, duracion)
            )
        candidatos = list(terminales.values())

        circuitos.append({
            "a": origen,
            "b": destino,
            "duracion": duracion,
            "tipo": tipo,
            "precio": round(float(precio), 2),
            "turnaround": turnaround_minutos(tipo, config),
            "descanso": descanso_minutos(tipo, config),
            "paradas_ida": paradas_intermedias(origen, destino, candidatos, n_paradas, duracion),
            "paradas_vuelta": paradas_intermedias(destino, origen, candidatos, n_paradas, duracion),
        })
    return circuitos


def _simular_circuitos(
    circuitos: List[Dict],
    buses: List,
    config,
    ocupados_por_bus: Optional[Dict[int, Dict]] = None,
) -> Tuple[List[Dict], List[str], Dict[int, BusTimeline]]:
    """
    Discrete-event simulation of buses shuttling on their circuits.

    Returns:
        (template rows sorted by departure, warnings, timeline per bus)
    """
    ocupados_por_bus = ocupados_por_bus or {}
    advertencias: List[str] = []
    inicio, fin = ventana_operacion(config)
    intervalo = config.intervalo_minimo_frecuencias_minutos
    max_span = config.horas_operacion_max_bus * 60

    asignados: Dict[int, List] = {i: [] for i in range(len(circuitos))}
    for i, bus in enumerate(buses):
        asignados[i % len(circuitos)].append(bus)

    heap = []
    secuencia = 0
    timelines: Dict[int, BusTimeline] = {}
    for idx, circuito in enumerate(circuitos):
        grupo = asignados[idx]
        if not grupo:
            advertencias.append(
                f"El circuito {circuito['a'].nombre} ↔ {circuito['b'].nombre} quedó sin bus asignado"
            )
            continue
        ciclo = 2 * (circuito["duracion"] + circuito["turnaround"])
        desde_a = grupo[0::2]
        desde_b = grupo[1::2]
        for salen_de, subgrupo in (("a", desde_a), ("b", desde_b)):
            if not subgrupo:
                continue
            escalon = max(intervalo, ciclo // len(subgrupo))
            for k, bus in enumerate(subgrupo):
                timelines[bus.id] = BusTimeline(
                    bus_id=bus.id, max_span_minutos=max_span, ocupados=ocupados_por_bus.get(bus.id, {})
                )
                heapq.heappush(heap, (inicio + k * escalon, secuencia, bus, idx, salen_de))
                secuencia += 1

    ultima_salida: Dict[Tuple[int, int], int] = {}
    filas: List[Dict] = []
    descartados_jornada = 0

    while heap:
        deseada, _, bus, idx, lado = heapq.heappop(heap)
        circuito = circuitos[idx]
        origen, destino = (circuito["a"], circuito["b"]) if lado == "a" else (circuito["b"], circuito["a"])
        ruta = (origen.id, destino.id)

        salida = deseada
        if ruta in ultima_salida:
            salida = max(salida, ultima_salida[ruta] + intervalo)
        llegada = salida + circuito["duracion"]
        if salida > fin or llegada > ULTIMO_MINUTO:
            continue

        tramo = Tramo(
            origen_id=origen.id,
            destino_id=destino.id,
            salida=salida,
            llegada=llegada,
            descanso=circuito["turnaround"],
            descanso_chofer=circuito["descanso"],
        )
        timeline = timelines[bus.id]
        if timeline.excede_jornada(tramo):
            descartados_jornada += 1
            continue

        timeline.agregar(tramo)
        ultima_salida[ruta] = salida
        es_ida = lado == "a"
        filas.append({
            "tramo": tramo,
            "bus": bus,
            "terminal_origen_id": origen.id,
            "terminal_origen_nombre": origen.nombre,
            "terminal_destino_id": destino.id,
            "terminal_destino_nombre": destino.nombre,
            "salida": salida,
            "llegada": llegada,
            "duracion_minutos": circuito["duracion"],
            "tipo_frecuencia": circuito["tipo"],
            "es_viaje_de": VIAJE_IDA if es_ida else VIAJE_VUELTA,
            "precio": circuito["precio"],
            "paradas": circuito["paradas_ida"] if es_ida else circuito["paradas_vuelta"],
        })
        heapq.heappush(heap, (llegada + circuito["turnaround"], secuencia, bus, idx, "b" if es_ida else "a"))
        secuencia += 1

    if descartados_jornada:
        advertencias.append(
            f"{descartados_jornada} salidas descartadas por superar {config.horas_operacion_max_bus} h "
            f"de operación por bus"
        )
    filas.sort(key=lambda f: (f["salida"], f["bus"].numero_interno, f["bus"].id))
    return filas, advertencias, timelines


def _asignar_choferes(
    filas: List[Dict],
    contexto: Dict,
    limite_minutos: int,
    ocupados_por_chofer: Optional[Dict[int, Dict]] = None,
    existentes: Optional[Dict[Tuple, Optional[int]]] = None,
) -> int:
    """
    Roster drivers over chronologically sorted rows; returns rows left without driver.

    A row that repeats a stored frecuencia of the same bus keeps that
    frecuencia's driver, whose time is already part of the stored load.
    """
    roster = DriverRoster(
        [c.id for c in contexto["choferes"]],
        limite_minutos,
        contexto["choferes_por_bus"],
        ocupados=ocupados_por_chofer,
    )
    existentes = existentes or {}
    sin_chofer = 0
    for fila in filas:
        clave = (fila["terminal_origen_id"], fila["terminal_destino_id"], fila["salida"], fila["bus"].id)
        if clave in existentes:
            chofer_id = existentes[clave]
        else:
            chofer_id = roster.asignar(fila["bus"].id, fila["tramo"])
        fila["chofer_id"] = chofer_id
        fila["chofer_nombre"] = contexto["nombres_chofer"].get(chofer_id)
        if chofer_id is None:
            fila["estado"] = ESTADO_SIN_CHOFER
            sin_chofer += 1
        elif fila.get("estado") is None:
            fila["estado"] = ESTADO_OK
    return sin_chofer


def _planificar_inteligente(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    config = get_config(db, cooperativa_id)
    errores: List[str] = []
    advertencias: List[str] = []

    dias, fechas = _validar_rango(
        solicitud.get("fecha_inicio"), solicitud.get("fecha_fin"), solicitud.get("dias_operacion"), errores
    )
    solicitados = solicitud.get("rutas_circuito") or []
    if not solicitados:
        errores.append("Debe seleccionar al menos un circuito")

    terminales = {t.id: t for t in terminales_habilitadas(db, cooperativa_id)}
    circuitos = _resolver_circuitos(
        solicitados,
        terminales,
        config,
        bool(solicitud.get("permitir_paradas", True)),
        solicitud.get("max_paradas_personalizado"),
        errores,
    )
    contexto = _contexto_flota(db, cooperativa_id)
    if not contexto["buses"]:
        errores.append("No hay buses disponibles para generar frecuencias")

    plan = {"config": config, "dias": dias, "fechas": fechas, "filas": [], "contexto": contexto,
            "errores": errores, "advertencias": advertencias}
    if errores or not circuitos:
        return plan

    ocupacion = _ocupacion_existente(
        db, cooperativa_id, fechas, solicitud["fecha_inicio"], solicitud["fecha_fin"], config
    )
    ocupados_bus = {
        bus_id: agrupar_ocupacion(por_fecha, fechas) for bus_id, por_fecha in ocupacion["buses"].items()
    }
    ocupados_chofer = {
        chofer_id: agrupar_ocupacion(por_fecha, fechas)
        for chofer_id, por_fecha in ocupacion["choferes"].items()
    }

    # Buses whose circuit day collides with their stored trips leave the
    # pool and the circuits are simulated again without them.
    disponibles = list(contexto["buses"])
    excluidos = []
    while True:
        filas, avisos, timelines = _simular_circuitos(circuitos, disponibles, config, ocupados_bus)
        en_conflicto = [
            bus for bus in disponibles
            if bus.id in timelines and not timelines[bus.id].compatible_con_ocupados()
        ]
        if not en_conflicto:
            break
        excluidos.extend(en_conflicto)
        disponibles = [bus for bus in disponibles if bus not in en_conflicto]
    if excluidos:
        placas = ", ".join(bus.placa for bus in excluidos)
        advertencias.append(
            f"Buses excluidos por viajes ya programados en las fechas seleccionadas: {placas}"
        )
        logger.info(f"Cooperativa {cooperativa_id}: {len(excluidos)} buses busy with stored trips")
    advertencias.extend(avisos)

    sin_chofer = _asignar_choferes(
        filas,
        contexto,
        limite_diario_minutos(config, len(dias)),
        ocupados_chofer,
        ocupacion["frecuencias"],
    )
    if sin_chofer:
        advertencias.append(f"{sin_chofer} frecuencias quedaron sin chofer asignado")
    if not filas:
        advertencias.append("No se pudo programar ninguna salida dentro de la ventana de operación")

    plan["filas"] = filas
    return plan


def _fila_preview(fila: Dict, fecha: date) -> Dict:
    return {
        "fecha": fecha,
        "hora_salida": fmt_time(fila["salida"]),
        "hora_llegada": fmt_time(fila["llegada"]),
        "terminal_origen_id": fila["terminal_origen_id"],
        "terminal_origen_nombre": fila["terminal_origen_nombre"],
        "terminal_destino_id": fila["terminal_destino_id"],
        "terminal_destino_nombre": fila["terminal_destino_nombre"],
        "bus_id": fila["bus"].id,
        "bus_placa": fila["bus"].placa,
        "chofer_id": fila.get("chofer_id"),
        "chofer_nombre": fila.get("chofer_nombre"),
        "duracion_minutos": fila["duracion_minutos"],
        "tipo_frecuencia": fila["tipo_frecuencia"],
        "es_viaje_de": fila["es_viaje_de"],
        "precio": fila["precio"],
        "paradas": fila["paradas"],
        "estado": fila.get("estado", ESTADO_OK),
    }


def preview_inteligente(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    """
    Preview of the intelligent generation.

    Args:
        solicitud: fecha_inicio, fecha_fin, dias_operacion, rutas_circuito,
            permitir_paradas, max_paradas_personalizado

    Returns:
        PreviewGeneracionInteligente as a snake_case dict. frecuencias holds
        one row per dated trip; the per-route and per-bus counts are per
        template day.
    """
    plan = _planificar_inteligente(db, cooperativa_id, solicitud)
    filas = plan["filas"]

    por_ruta: Dict[str, int] = {}
    por_bus: Dict[str, int] = {}
    for fila in filas:
        clave = f"{fila['terminal_origen_nombre']} → {fila['terminal_destino_nombre']}"
        por_ruta[clave] = por_ruta.get(clave, 0) + 1
        por_bus[fila["bus"].placa] = por_bus.get(fila["bus"].placa, 0) + 1

    choferes = {f["chofer_id"] for f in filas if f.get("chofer_id")}
    return {
        "frecuencias": [_fila_preview(fila, fecha) for fecha in plan["fechas"] for fila in filas],
        "frecuencias_por_dia": len(filas),
        "dias_operacion": len(plan["dias"]),
        "total_frecuencias": len(filas) * len(plan["fechas"]),
        "frecuencias_por_ruta": por_ruta,
        "frecuencias_por_bus": por_bus,
        "buses_utilizados": len(por_bus),
        "buses_disponibles": len(plan["contexto"]["buses"]),
        "choferes_utilizados": len(choferes),
        "advertencias": plan["advertencias"],
        "errores": plan["errores"],
    }


def generar_inteligente(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    """
    Run the intelligent generation and persist it.

    Returns:
        ResultadoGeneracionInteligente as a snake_case dict
    """
    plan = _planificar_inteligente(db, cooperativa_id, solicitud)
    if plan["errores"]:
        logger.warning(f"Intelligent generation refused for cooperativa {cooperativa_id}: {plan['errores']}")
        return {
            "exito": False,
            "frecuencias_creadas": 0,
            "frecuencias_omitidas": 0,
            "viajes_creados": 0,
            "mensajes": [],
            "advertencias": plan["advertencias"],
            "errores": plan["errores"],
        }

    filas = [dict(f, bus_id=f["bus"].id) for f in plan["filas"]]
    resultado = _persistir(
        db, cooperativa_id, filas, plan["dias"], solicitud["fecha_inicio"], solicitud["fecha_fin"]
    )
    logger.info(
        f"Intelligent generation for cooperativa {cooperativa_id}: "
        f"{resultado['creadas']} frecuencias, {resultado['viajes']['creados']} viajes"
    )

    mensajes = [
        f"Se crearon {resultado['creadas']} frecuencias",
        f"Se programaron {resultado['viajes']['creados']} viajes entre "
        f"{solicitud['fecha_inicio'].isoformat()} y {solicitud['fecha_fin'].isoformat()}",
    ]
    if resultado["omitidas"]:
        mensajes.append(f"{resultado['omitidas']} frecuencias ya existían y se omitieron")
    return {
        "exito": True,
        "frecuencias_creadas": resultado["creadas"],
        "frecuencias_omitidas": resultado["omitidas"],
        "viajes_creados": resultado["viajes"]["creados"],
        "mensajes": mensajes,
        "advertencias": plan["advertencias"],
        "errores": [],
    }


# ---------------------------------------------------------------------------
# Automatic (interval) generation
# ---------------------------------------------------------------------------

def estado_automatico(db: Session, cooperativa_id: int) -> Dict:
    cache_key = ("automatico", cooperativa_id)
    if cache_key in estado_cache:
        logger.debug(f"Generation state cache hit: {cache_key}")
        return estado_cache[cache_key]

    inteligente = estado_inteligente(db, cooperativa_id)
    config = get_config(db, cooperativa_id)
    estado = {
        "buses_totales": inteligente["buses_totales"],
        "buses_disponibles": inteligente["buses_disponibles"],
        "choferes_totales": inteligente["choferes_totales"],
        "choferes_disponibles": inteligente["choferes_disponibles"],
        "rutas_disponibles": [
            {
                "terminal_origen_id": c["terminal_origen_id"],
                "terminal_origen_nombre": c["terminal_origen_nombre"],
                "terminal_destino_id": c["terminal_destino_id"],
                "terminal_destino_nombre": c["terminal_destino_nombre"],
                "distancia_km": c["distancia_km"],
                "duracion_estimada_minutos": c["duracion_minutos"],
                "precio_sugerido": c["precio_sugerido"],
            }
            for c in inteligente["rutas_circuito"]
        ],
        "configuracion": {
            "hora_inicio": fmt_time(config.hora_inicio_operacion),
            "hora_fin": fmt_time(config.hora_fin_operacion),
            "intervalo_minimo_frecuencias": config.intervalo_minimo_frecuencias_minutos,
            "max_horas_chofer": config.max_horas_diarias_chofer,
            "max_horas_excepcionales": config.max_horas_excepcionales,
        },
    }
    estado_cache[cache_key] = estado
    return estado


def _rutas_automaticas(db: Session, cooperativa_id: int, solicitud: Dict, config, errores: List[str]) -> List[Dict]:
    terminales = {t.id: t for t in terminales_habilitadas(db, cooperativa_id)}
    if solicitud.get("generar_todas_las_rutas"):
        pares = [
            {"terminal_origen_id": a, "terminal_destino_id": b}
            for a in terminales for b in terminales if a != b
        ]
    else:
        pares = solicitud.get("rutas_seleccionadas") or []
    if not pares:
        errores.append("Debe seleccionar al menos una ruta")
        return []

    rutas = []
    for par in pares:
        origen = terminales.get(par.get("terminal_origen_id"))
        destino = terminales.get(par.get("terminal_destino_id"))
        if origen is None or destino is None or origen.id == destino.id:
            errores.append(
                f"Ruta inválida {par.get('terminal_origen_id')} → {par.get('terminal_destino_id')}"
            )
            continue
        base = construir_circuito(origen, destino, config)
        duracion = int(par.get("duracion_minutos") or base["duracion_minutos"])
        precio = par.get("precio_base") or solicitud.get("precio_base") or base["precio_sugerido"]
        rutas.append({
            "origen": origen,
            "destino": destino,
            "duracion": duracion,
            "tipo": base["tipo_frecuencia"],
            "precio": round(float(precio), 2),
            "turnaround": turnaround_minutos(base["tipo_frecuencia"], config),
            "descanso": base["descanso_minutos"],
        })
    return rutas


def _elegir_bus(timelines: List[BusTimeline], tramo: Tramo) -> Optional[BusTimeline]:
    """Prefer the bus that already runs this departure, then one waiting at the origin, then an unused one."""
    for timeline in timelines:
        if timeline.ya_programado(tramo) and not any(t.coincide(tramo) for t in timeline.tramos):
            return timeline
    en_origen = [t for t in timelines if t.tramos and t.puede_tomar(tramo)]
    if en_origen:
        return min(en_origen, key=lambda t: (t.libre_desde, t.bus_id))
    for timeline in timelines:
        if not timeline.tramos and timeline.puede_tomar(tramo):
            return timeline
    return None


def _planificar_automatico(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    config = get_config(db, cooperativa_id)
    errores: List[str] = []
    advertencias: List[str] = []

    dias, fechas = _validar_rango(
        solicitud.get("fecha_inicio"), solicitud.get("fecha_fin"), solicitud.get("dias_operacion"), errores
    )
    hora_inicio = parse_time(solicitud.get("hora_inicio") or config.hora_inicio_operacion)
    hora_fin = parse_time(solicitud.get("hora_fin") or config.hora_fin_operacion)
    if hora_inicio is None or hora_fin is None:
        errores.append("Horas de operación inválidas (formato HH:MM)")
    elif hora_inicio > hora_fin:
        errores.append("La hora de inicio no puede ser posterior a la hora de fin")

    intervalo = solicitud.get("intervalo_minutos")
    if intervalo is None:
        intervalo = config.intervalo_minimo_frecuencias_minutos
    if intervalo < config.intervalo_minimo_frecuencias_minutos:
        errores.append(
            f"El intervalo ({intervalo} min) es menor al mínimo configurado "
            f"({config.intervalo_minimo_frecuencias_minutos} min)"
        )

    rutas = _rutas_automaticas(db, cooperativa_id, solicitud, config, errores)
    contexto = _contexto_flota(db, cooperativa_id)
    plan = {"config": config, "dias": dias, "fechas": fechas, "filas": [], "contexto": contexto,
            "errores": errores, "advertencias": advertencias}
    if errores:
        return plan

    inicio, fin = to_minutes(hora_inicio), to_minutes(hora_fin)
    salidas = []
    for orden, ruta in enumerate(rutas):
        minuto = inicio
        while minuto <= fin:
            salidas.append((minuto, orden, ruta))
            minuto += intervalo
    salidas.sort(key=lambda s: (s[0], s[1]))

    max_span = config.horas_operacion_max_bus * 60
    ocupacion = _ocupacion_existente(
        db, cooperativa_id, fechas, solicitud["fecha_inicio"], solicitud["fecha_fin"], config
    )
    timelines = [
        BusTimeline(
            bus_id=b.id,
            max_span_minutos=max_span,
            ocupados=agrupar_ocupacion(ocupacion["buses"].get(b.id), fechas),
        )
        for b in contexto["buses"]
    ]
    ocupados = sum(1 for t in timelines if t.tiene_ocupacion)
    if ocupados:
        advertencias.append(
            f"{ocupados} buses ya tienen viajes programados en las fechas seleccionadas; "
            f"solo reciben salidas que encajan con ellos"
        )
    buses = {b.id: b for b in contexto["buses"]}
    asignar_choferes = bool(solicitud.get("asignar_choferes_automaticamente", True))
    roster = DriverRoster(
        [c.id for c in contexto["choferes"]],
        limite_diario_minutos(config, len(dias)),
        contexto["choferes_por_bus"],
        ocupados={
            chofer_id: agrupar_ocupacion(por_fecha, fechas)
            for chofer_id, por_fecha in ocupacion["choferes"].items()
        },
    )

    fuera_de_dia = 0
    for salida, _, ruta in salidas:
        llegada = salida + ruta["duracion"]
        if llegada > ULTIMO_MINUTO:
            fuera_de_dia += 1
            continue
        tramo = Tramo(
            origen_id=ruta["origen"].id,
            destino_id=ruta["destino"].id,
            salida=salida,
            llegada=llegada,
            descanso=ruta["turnaround"],
            descanso_chofer=ruta["descanso"],
        )
        fila = {
            "tramo": tramo,
            "terminal_origen_id": ruta["origen"].id,
            "terminal_origen_nombre": ruta["origen"].nombre,
            "terminal_destino_id": ruta["destino"].id,
            "terminal_destino_nombre": ruta["destino"].nombre,
            "salida": salida,
            "llegada": llegada,
            "duracion_minutos": ruta["duracion"],
            "tipo_frecuencia": ruta["tipo"],
            "es_viaje_de": None,
            "precio": ruta["precio"],
            "paradas": [],
            "bus_id": None,
            "bus_placa": None,
            "chofer_id": None,
            "chofer_nombre": None,
            "estado": ESTADO_OK,
        }

        timeline = _elegir_bus(timelines, tramo)
        if timeline is None:
            fila["estado"] = ESTADO_SIN_BUS
        else:
            timeline.agregar(tramo)
            fila["bus_id"] = timeline.bus_id
            fila["bus_placa"] = buses[timeline.bus_id].placa
            clave = (tramo.origen_id, tramo.destino_id, salida, timeline.bus_id)
            if asignar_choferes:
                if clave in ocupacion["frecuencias"]:
                    chofer_id = ocupacion["frecuencias"][clave]
                else:
                    chofer_id = roster.asignar(timeline.bus_id, tramo)
                fila["chofer_id"] = chofer_id
                fila["chofer_nombre"] = contexto["nombres_chofer"].get(chofer_id)
                if chofer_id is None:
                    fila["estado"] = ESTADO_SIN_CHOFER
        plan["filas"].append(fila)

    sin_bus = sum(1 for f in plan["filas"] if f["estado"] == ESTADO_SIN_BUS)
    sin_chofer = sum(1 for f in plan["filas"] if f["estado"] == ESTADO_SIN_CHOFER)
    if fuera_de_dia:
        advertencias.append(f"{fuera_de_dia} salidas descartadas porque llegarían después de las 23:59")
    if sin_bus:
        advertencias.append(f"{sin_bus} salidas sin bus disponible")
    if sin_chofer:
        advertencias.append(f"{sin_chofer} salidas sin chofer disponible")
    return plan


def preview_automatico(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    plan = _planificar_automatico(db, cooperativa_id, solicitud)
    filas = plan["filas"]
    usados = {f["bus_id"] for f in filas if f["bus_id"]}
    sin_bus = sum(1 for f in filas if f["estado"] == ESTADO_SIN_BUS)
    return {
        "frecuencias": [
            {
                "origen": f["terminal_origen_nombre"],
                "destino": f["terminal_destino_nombre"],
                "hora_salida": fmt_time(f["salida"]),
                "hora_llegada": fmt_time(f["llegada"]),
                "bus_placa": f["bus_placa"],
                "chofer_nombre": f["chofer_nombre"],
                "precio": f["precio"],
                "estado": f["estado"],
            }
            for f in filas
        ],
        "total_frecuencias": len(filas),
        "buses_necesarios": len(usados) + sin_bus,
        "buses_disponibles": len(plan["contexto"]["buses"]),
        "tiene_capacidad_suficiente": sin_bus == 0,
        "advertencias": plan["advertencias"],
        "errores": plan["errores"],
    }


def generar_automatico(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    plan = _planificar_automatico(db, cooperativa_id, solicitud)
    if plan["errores"]:
        logger.warning(f"Automatic generation refused for cooperativa {cooperativa_id}: {plan['errores']}")
        return {
            "exito": False,
            "frecuencias_creadas": 0,
            "frecuencias_omitidas": 0,
            "viajes_creados": 0,
            "mensajes": [],
            "advertencias": plan["advertencias"],
            "errores": plan["errores"],
        }

    con_bus = [f for f in plan["filas"] if f["bus_id"] is not None]
    sin_bus = len(plan["filas"]) - len(con_bus)
    resultado = _persistir(
        db, cooperativa_id, con_bus, plan["dias"], solicitud["fecha_inicio"], solicitud["fecha_fin"]
    )
    logger.info(
        f"Automatic generation for cooperativa {cooperativa_id}: "
        f"{resultado['creadas']} frecuencias, {sin_bus} departures without bus"
    )
    return {
        "exito": True,
        "frecuencias_creadas": resultado["creadas"],
        "frecuencias_omitidas": resultado["omitidas"] + sin_bus,
        "viajes_creados": resultado["viajes"]["creados"],
        "mensajes": [
            f"Se crearon {resultado['creadas']} frecuencias",
            f"Se programaron {resultado['viajes']['creados']} viajes",
        ],
        "advertencias": plan["advertencias"],
        "errores": [],
    }


def eliminar_todas(db: Session, cooperativa_id: int) -> Dict:
    """
    Deactivate every active frecuencia of the cooperative and cancel their
    future PROGRAMADO viajes that have no sold seats.
    """
    frecuencias = (
        db.query(Frecuencia)
        .filter(Frecuencia.cooperativa_id == cooperativa_id, Frecuencia.activa.is_(True))
        .all()
    )
    ids = [f.id for f in frecuencias]
    cancelados = 0
    if ids:
        viajes = (
            db.query(Viaje)
            .filter(
                Viaje.frecuencia_id.in_(ids),
                Viaje.fecha >= today(),
                Viaje.estado == ViajeEstado.PROGRAMADO,
            )
            .all()
        )
        for viaje in viajes:
            if tiene_ventas(db, viaje.id):
                continue
            viaje.estado = ViajeEstado.CANCELADO
            cancelados += 1
    for frecuencia in frecuencias:
        frecuencia.activa = False
    db.commit()
    invalidar_estado(cooperativa_id)
    logger.info(
        f"Deactivated {len(frecuencias)} frecuencias of cooperativa {cooperativa_id}, cancelled {cancelados} viajes"
    )
    return {"count": len(frecuencias), "viajes_cancelados": cancelados}
