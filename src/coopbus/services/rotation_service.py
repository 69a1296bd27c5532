"""
Rotation Template Service.

Rotation templates are imported from CSV: each "turno" is one bus-day of
trips. Applying a template over a date range rotates the turnos across the
selected buses (bus i on day d runs turno (i + d) mod n) and creates dated
viajes directly.

Author: Backend Team
"""

import io
import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from ..constants import ViajeEstado
from ..models import PlantillaRotacion, TurnoPlantilla, Viaje
from .catalog_service import choferes_activos, choferes_por_bus, get_bus
from .circuit_service import (
    calcular_precio,
    descanso_minutos,
    get_config,
    get_cooperativa,
    terminales_habilitadas,
    tipo_frecuencia,
    tramo_viaje,
    turnaround_minutos,
)
from .horarios import fmt_time, from_minutes, parse_time, to_minutes
from .planning import BusTimeline, DriverRoster, Tramo, limite_diario_minutos
from .route_service import route_service
from .trip_service import dias_parada, tiene_ventas, viajes_programados

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["turno", "hora_salida", "origen", "destino", "duracion_minutos"]


def get_plantilla(db: Session, plantilla_id: int, cooperativa_id: Optional[int] = None) -> PlantillaRotacion:
    query = db.query(PlantillaRotacion).filter(PlantillaRotacion.id == plantilla_id)
    if cooperativa_id is not None:
        query = query.filter(PlantillaRotacion.cooperativa_id == cooperativa_id)
    plantilla = query.first()
    if plantilla is None:
        raise LookupError(f"Plantilla {plantilla_id} no encontrada")
    return plantilla


def listar_plantillas(db: Session, cooperativa_id: int) -> List[PlantillaRotacion]:
    get_cooperativa(db, cooperativa_id)
    return (
        db.query(PlantillaRotacion)
        .filter(PlantillaRotacion.cooperativa_id == cooperativa_id)
        .order_by(PlantillaRotacion.creada_en.desc(), PlantillaRotacion.id.desc())
        .all()
    )


def plantilla_to_dict(plantilla: PlantillaRotacion) -> Dict:
    return {
        "id": plantilla.id,
        "nombre": plantilla.nombre,
        "descripcion": plantilla.descripcion,
        "creada_en": plantilla.creada_en,
        "total_turnos": len({t.numero_turno for t in plantilla.turnos}),
        "turnos": [
            {
                "numero_turno": t.numero_turno,
                "hora_salida": fmt_time(t.hora_salida),
                "origen": t.origen.nombre,
                "destino": t.destino.nombre,
                "duracion_minutos": t.duracion_minutos,
            }
            for t in plantilla.turnos
        ],
    }


def eliminar_plantilla(db: Session, cooperativa_id: int, plantilla_id: int):
    plantilla = get_plantilla(db, plantilla_id, cooperativa_id)
    db.delete(plantilla)
    db.commit()
    logger.info(f"Deleted rotation template {plantilla_id}")


def _buscar_terminal(valor: str, terminales) -> Optional[object]:
    clave = valor.strip().lower()
    for terminal in terminales:
        if terminal.nombre.strip().lower() == clave:
            return terminal
    for terminal in terminales:
        if terminal.ciudad.strip().lower() == clave:
            return terminal
    return None


def importar_csv(
    db: Session,
    cooperativa_id: int,
    contenido_csv: str,
    nombre_plantilla: str,
    descripcion: Optional[str] = None,
) -> Dict:
    """
    Parse a rotation CSV and store it as a template.

    Rows are validated first; any error means nothing is stored.

    Returns:
        {"exitoso": bool, "plantilla_id": int | None, "turnos_importados": int, "errores": [...]}
    """
    get_cooperativa(db, cooperativa_id)
    errores: List[str] = []
    resultado = {"exitoso": False, "plantilla_id": None, "turnos_importados": 0, "errores": errores}

    if not (nombre_plantilla or "").strip():
        errores.append("El nombre de la plantilla es obligatorio")
        return resultado
    if not (contenido_csv or "").strip():
        errores.append("El archivo CSV está vacío")
        return resultado

    try:
        df = pd.read_csv(io.StringIO(contenido_csv), dtype=str, skipinitialspace=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning(f"Rotation CSV could not be parsed: {e}")
        errores.append(f"CSV inválido: {e}")
        return resultado

    df.columns = [str(c).strip().lower() for c in df.columns]
    faltantes = [c for c in CSV_COLUMNS if c not in df.columns]
    if faltantes:
        errores.append(f"Columnas faltantes: {', '.join(faltantes)}")
        return resultado
    df = df.dropna(how="all")
    if df.empty:
        errores.append("El CSV no contiene filas")
        return resultado

    terminales = terminales_habilitadas(db, cooperativa_id)
    turnos: List[TurnoPlantilla] = []
    # Header is line 1
    for linea, row in zip(range(2, len(df) + 2), df.itertuples(index=False)):
        fila = row._asdict()
        prefijo = f"Fila {linea}"

        try:
            numero = int(str(fila["turno"]).strip())
            if numero < 1:
                raise ValueError
        except (TypeError, ValueError):
            errores.append(f"{prefijo}: turno inválido '{fila['turno']}'")
            continue

        hora = parse_time(str(fila["hora_salida"] or ""))
        if hora is None:
            errores.append(f"{prefijo}: hora_salida inválida '{fila['hora_salida']}'")
            continue

        origen = _buscar_terminal(str(fila["origen"] or ""), terminales)
        destino = _buscar_terminal(str(fila["destino"] or ""), terminales)
        if origen is None:
            errores.append(f"{prefijo}: origen '{fila['origen']}' no es un terminal habilitado")
        if destino is None:
            errores.append(f"{prefijo}: destino '{fila['destino']}' no es un terminal habilitado")
        if origen is None or destino is None:
            continue
        if origen.id == destino.id:
            errores.append(f"{prefijo}: origen y destino son el mismo terminal")
            continue

        try:
            duracion = int(float(str(fila["duracion_minutos"]).strip()))
            if duracion <= 0:
                raise ValueError
        except (TypeError, ValueError):
            errores.append(f"{prefijo}: duracion_minutos inválida '{fila['duracion_minutos']}'")
            continue

        turnos.append(TurnoPlantilla(
            numero_turno=numero,
            hora_salida=hora,
            origen_id=origen.id,
            destino_id=destino.id,
            duracion_minutos=duracion,
        ))

    if errores:
        logger.warning(f"Rotation CSV for cooperativa {cooperativa_id} rejected with {len(errores)} errors")
        return resultado

    plantilla = PlantillaRotacion(
        cooperativa_id=cooperativa_id,
        nombre=nombre_plantilla.strip(),
        descripcion=descripcion,
    )
    plantilla.turnos = turnos
    db.add(plantilla)
    db.commit()
    db.refresh(plantilla)
    logger.info(f"Imported rotation template {plantilla.id} with {len(turnos)} rows")

    resultado.update({
        "exitoso": True,
        "plantilla_id": plantilla.id,
        "turnos_importados": len({t.numero_turno for t in turnos}),
    })
    return resultado


def _planificar(db: Session, cooperativa_id: int, solicitud: Dict, aplicar: bool) -> Dict:
    plantilla = get_plantilla(db, solicitud["plantilla_id"], cooperativa_id)
    fecha_inicio: date = solicitud["fecha_inicio"]
    fecha_fin: date = solicitud["fecha_fin"]
    if fecha_fin < fecha_inicio:
        raise ValueError("La fecha fin no puede ser anterior a la fecha inicio")

    bus_ids = solicitud.get("bus_ids") or []
    if not bus_ids:
        raise ValueError("Debe seleccionar al menos un bus")
    buses = []
    for bus_id in bus_ids:
        bus = get_bus(db, bus_id)
        if bus.cooperativa_id != cooperativa_id:
            raise ValueError(f"El bus {bus.placa} no pertenece a la cooperativa")
        buses.append(bus)

    numeros = sorted({t.numero_turno for t in plantilla.turnos})
    if not numeros:
        raise ValueError("La plantilla no tiene turnos")
    por_turno = {n: [t for t in plantilla.turnos if t.numero_turno == n] for n in numeros}

    config = get_config(db, cooperativa_id)
    paradas = dias_parada(db, bus_ids, fecha_inicio, fecha_fin)
    asignar = bool(solicitud.get("asignar_choferes_automaticamente"))
    sobreescribir = bool(solicitud.get("sobreescribir_existentes"))
    choferes = [c.id for c in choferes_activos(db, cooperativa_id)] if asignar else []
    enlaces = choferes_por_bus(db, cooperativa_id) if asignar else {}

    rutas: Dict[tuple, Dict] = {}

    def ruta_info(turno: TurnoPlantilla) -> Dict:
        key = (turno.origen_id, turno.destino_id)
        if key not in rutas:
            distancia = route_service.calcular_terminales(turno.origen, turno.destino)["distancia_km"]
            tipo = tipo_frecuencia(turno.origen, turno.destino, distancia, config)
            rutas[key] = {
                "precio": calcular_precio(distancia, config),
                "turnaround": turnaround_minutos(tipo, config),
                "descanso": descanso_minutos(tipo, config),
            }
        return rutas[key]

    asignaciones, conflictos = [], []
    creadas = omitidas = con_advertencias = a_generar = 0
    dias_totales = (fecha_fin - fecha_inicio).days + 1
    max_span = config.horas_operacion_max_bus * 60

    for d in range(dias_totales):
        fecha = fecha_inicio + timedelta(days=d)
        guardados = viajes_programados(db, cooperativa_id, fecha)
        tramos_guardados = {v.id: tramo_viaje(v, config) for v in guardados}
        reemplazados = set()
        del_dia = []

        for i, bus in enumerate(buses):
            numero = numeros[(i + d) % len(numeros)]
            if (bus.id, fecha) in paradas:
                conflictos.append(f"{fecha.isoformat()}: bus {bus.placa} tiene día de parada registrado")
                omitidas += len(por_turno[numero])
                continue

            propios = [v for v in guardados if v.bus_id == bus.id]
            nuevos, repetidos, reemplazos = [], [], []
            for turno in por_turno[numero]:
                existente = next((v for v in propios if v.hora_salida == turno.hora_salida), None)
                if existente is not None:
                    reemplazable = (
                        sobreescribir
                        and existente.estado == ViajeEstado.PROGRAMADO
                        and not tiene_ventas(db, existente.id)
                    )
                    if not reemplazable:
                        repetidos.append(
                            f"{fecha.isoformat()}: bus {bus.placa} ya tiene un viaje a las {fmt_time(turno.hora_salida)}"
                        )
                        continue
                    reemplazos.append(existente.id)
                info = ruta_info(turno)
                salida = to_minutes(turno.hora_salida)
                tramo = Tramo(
                    origen_id=turno.origen_id,
                    destino_id=turno.destino_id,
                    salida=salida,
                    llegada=salida + turno.duracion_minutos,
                    descanso=info["turnaround"],
                    descanso_chofer=info["descanso"],
                )
                nuevos.append((salida, bus, turno, tramo, info))

            fijos = [tramos_guardados[v.id] for v in propios if v.id not in reemplazos]
            timeline = BusTimeline(
                bus_id=bus.id,
                max_span_minutos=max_span,
                tramos=[item[3] for item in nuevos],
                ocupados={fecha: fijos} if fijos else {},
            )
            if not timeline.compatible_con_ocupados():
                conflictos.append(
                    f"{fecha.isoformat()}: el turno {numero} del bus {bus.placa} no encaja con sus viajes ya programados"
                )
                omitidas += len(por_turno[numero])
                continue

            conflictos.extend(repetidos)
            omitidas += len(repetidos)
            reemplazados.update(reemplazos)
            asignaciones.append({
                "fecha": fecha,
                "bus_id": bus.id,
                "bus_placa": bus.placa,
                "turno": numero,
                "viajes": len(por_turno[numero]),
            })
            del_dia.extend(nuevos)

        roster = None
        if asignar:
            ocupados: Dict[int, Dict] = {}
            for viaje in guardados:
                if viaje.chofer_id is not None and viaje.id not in reemplazados:
                    ocupados.setdefault(viaje.chofer_id, {fecha: []})[fecha].append(tramos_guardados[viaje.id])
            roster = DriverRoster(choferes, limite_diario_minutos(config, 7), enlaces, ocupados=ocupados)

        if aplicar:
            for viaje in guardados:
                if viaje.id in reemplazados:
                    viaje.estado = ViajeEstado.CANCELADO
                    viaje.observaciones = "Reemplazado por rotación"

        del_dia.sort(key=lambda item: (item[0], item[1].id))
        for salida, bus, turno, tramo, info in del_dia:
            chofer_id = roster.asignar(bus.id, tramo) if roster else None
            if roster and chofer_id is None:
                con_advertencias += 1
            a_generar += 1

            if aplicar:
                db.add(Viaje(
                    cooperativa_id=cooperativa_id,
                    bus_id=bus.id,
                    chofer_id=chofer_id,
                    fecha=fecha,
                    hora_salida=turno.hora_salida,
                    hora_llegada=from_minutes(tramo.llegada),
                    origen_id=turno.origen_id,
                    destino_id=turno.destino_id,
                    precio=info["precio"],
                    estado=ViajeEstado.PROGRAMADO,
                ))
                creadas += 1

    return {
        "asignaciones": asignaciones,
        "dias_totales": dias_totales,
        "buses_participantes": len(buses),
        "frecuencias_a_generar": a_generar,
        "conflictos": conflictos,
        "creadas": creadas,
        "omitidas": omitidas,
        "con_advertencias": con_advertencias,
    }


def preview_rotacion(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    """
    Args:
        solicitud: plantilla_id, fecha_inicio, fecha_fin, bus_ids,
            asignar_choferes_automaticamente, sobreescribir_existentes
    """
    plan = _planificar(db, cooperativa_id, solicitud, aplicar=False)
    return {
        "asignaciones": plan["asignaciones"],
        "dias_totales": plan["dias_totales"],
        "buses_participantes": plan["buses_participantes"],
        "frecuencias_a_generar": plan["frecuencias_a_generar"],
        "conflictos": plan["conflictos"],
    }


def generar_rotacion(db: Session, cooperativa_id: int, solicitud: Dict) -> Dict:
    try:
        plan = _planificar(db, cooperativa_id, solicitud, aplicar=True)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        f"Rotation applied for cooperativa {cooperativa_id}: {plan['creadas']} viajes created, "
        f"{plan['omitidas']} skipped"
    )
    errores = []
    if plan["con_advertencias"]:
        errores.append(f"{plan['con_advertencias']} viajes quedaron sin chofer asignado")
    return {
        "frecuencias_creadas": plan["creadas"],
        "frecuencias_omitidas": plan["omitidas"],
        "frecuencias_con_advertencias": plan["con_advertencias"],
        "errores": errores,
    }
