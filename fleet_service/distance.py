"""
Distância até o cliente (Google Maps Directions) e pedágio estimado por IA.

As distâncias e pedágios devolvidos aqui são só de ida; quem aplica na OS
converte para ida e volta.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Tuple

import google.generativeai as genai
import httpx

from fleet_service import config

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
REQUEST_TIMEOUT = 15.0


class DistanceStatus(str, Enum):
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    ERROR_NO_ADDRESS = "ERROR_NO_ADDRESS"
    ERROR_GOOGLE_API_FAILED = "ERROR_GOOGLE_API_FAILED"
    ERROR_GOOGLE_API_KEY_MISSING = "ERROR_GOOGLE_API_KEY_MISSING"
    ERROR_NO_ROUTE_FOUND = "ERROR_NO_ROUTE_FOUND"
    ERROR_AI_TOLL_ESTIMATION_FAILED = "ERROR_AI_TOLL_ESTIMATION_FAILED"


@dataclass
class DistanceEstimate:
    distance_km: Optional[float]
    status: DistanceStatus
    error_message: Optional[str] = None
    estimated_toll_cost: Optional[float] = None
    route_has_tolls: Optional[bool] = None

    @property
    def ok(self) -> bool:
        return self.status is DistanceStatus.SUCCESS and self.distance_km is not None


class RouteError(Exception):
    def __init__(self, status: DistanceStatus, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@lru_cache(maxsize=1)
def get_model():
    if not config.GOOGLE_API_KEY:
        logger.warning("ALERTA: GOOGLE_API_KEY não encontrada no arquivo .env")
    genai.configure(api_key=config.GOOGLE_API_KEY)
    return genai.GenerativeModel(config.GEMINI_MODEL)


def fetch_route(origin: str, destination: str) -> Tuple[float, bool]:
    """Distância de ida em km (uma casa decimal) e se a rota tem pedágio."""
    if not config.GOOGLE_MAPS_API_KEY:
        raise RouteError(DistanceStatus.ERROR_GOOGLE_API_KEY_MISSING,
                         "GOOGLE_MAPS_API_KEY não configurada.")
    params = {
        "origin": origin,
        "destination": destination,
        "key": config.GOOGLE_MAPS_API_KEY,
        "language": "pt-BR",
        "units": "metric",
    }
    try:
        response = httpx.get(DIRECTIONS_URL, params=params, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise RouteError(DistanceStatus.ERROR_GOOGLE_API_FAILED,
                         f"Falha ao consultar o Google Maps: {exc}") from exc

    if data.get("status") != "OK" or not data.get("routes"):
        message = data.get("error_message") or (
            f"Nenhuma rota entre {origin} e {destination}. Status: {data.get('status')}"
        )
        raise RouteError(DistanceStatus.ERROR_NO_ROUTE_FOUND, message)

    route = data["routes"][0]
    leg = route["legs"][0]
    if not leg.get("distance"):
        raise RouteError(DistanceStatus.ERROR_GOOGLE_API_FAILED,
                         "Resposta do Google Maps sem distância.")
    distance_km = round(leg["distance"]["value"] / 1000, 1)

    has_tolls = any("pedágio" in w.lower() or "toll" in w.lower()
                    for w in route.get("warnings", []))
    summary = (route.get("summary") or "").lower()
    if leg.get("tolls_info") or "toll" in summary or "pedágio" in summary:
        has_tolls = True
    return distance_km, has_tolls


def estimate_tolls(origin: str, destination: str, distance_km: float) -> Optional[float]:
    """Pedágio de ida em R$ estimado pelo Gemini; ``None`` se não houver."""
    prompt = f"""
    Você é um especialista em estimar custos de pedágio para rotas no Brasil.
    Estime o custo de pedágio APENAS DE IDA em BRL para um carro de passeio.
    Se não houver pedágios ou a estimativa não for confiável, use null.

    Origem: {origin}
    Destino: {destination}
    Distância: {distance_km} km

    Responda somente JSON no formato:
    {{"estimatedTollOneWay": 25.50, "reasoning": "justificativa breve"}}
    """
    response = get_model().generate_content(
        prompt, generation_config={"response_mime_type": "application/json"}
    )
    payload = json.loads(response.text)
    value = payload.get("estimatedTollOneWay")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"estimatedTollOneWay inválido: {value!r}")
    return float(value)


def calculate_distance(origin: str, destination: str) -> DistanceEstimate:
    if not origin or not destination:
        return DistanceEstimate(None, DistanceStatus.ERROR_NO_ADDRESS,
                                "Endereço de origem ou destino ausente.")
    try:
        distance_km, has_tolls = fetch_route(origin, destination)
    except RouteError as exc:
        logger.warning("Rota não calculada (%s): %s", exc.status.value, exc.message)
        return DistanceEstimate(None, exc.status, exc.message)

    logger.info("Rota: %.1f km, pedágio indicado: %s", distance_km, has_tolls)
    if not has_tolls:
        return DistanceEstimate(distance_km, DistanceStatus.SUCCESS, route_has_tolls=False)

    try:
        tolls = estimate_tolls(origin, destination, distance_km)
    except Exception as e:
        logger.error("Erro IA na estimativa de pedágio: %s", e)
        return DistanceEstimate(distance_km, DistanceStatus.ERROR_AI_TOLL_ESTIMATION_FAILED,
                                "Falha na estimativa de pedágio pela IA.",
                                estimated_toll_cost=0.0, route_has_tolls=True)
    return DistanceEstimate(distance_km, DistanceStatus.SUCCESS,
                            estimated_toll_cost=tolls, route_has_tolls=True)
