from numbers import Real
from typing import Optional


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def estimate_travel_cost(
    distance_km: Optional[float],
    vehicle_cost_per_km: Optional[float],
    toll_costs: Optional[float],
) -> Optional[float]:
    """
    Custo estimado de deslocamento da OS.

    distância * custo/km do veículo + pedágios; sem veículo (ou sem custo/km),
    apenas os pedágios; sem nenhum dos dois, ``None`` (desconhecido).
    """
    if _is_number(distance_km) and _is_number(vehicle_cost_per_km):
        tolls = toll_costs if _is_number(toll_costs) else 0
        return round(distance_km * vehicle_cost_per_km + tolls, 2)
    if _is_number(toll_costs):
        return round(toll_costs, 2)
    return None


def round_trip_distance(one_way_km: float) -> float:
    """Distância de ida e volta, com uma casa decimal."""
    return round(one_way_km * 2, 1)


def round_trip_tolls(one_way_tolls: float) -> float:
    return round(one_way_tolls * 2, 2)
