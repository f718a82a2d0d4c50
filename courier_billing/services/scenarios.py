"""
courier_billing/services/scenarios.py

Scenario generator: every shipment_type x mode x service_type x distance_slab x
weight_slab combination, cross-referenced with a party's active rate slabs so an
operator can see which price points are still missing.

The product is deliberately unfiltered: every service type is offered for both
shipment types. Catalogs are tens of rows each, so the full product is cheap.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models import SHIPMENT_TYPES, DistanceSlab, Mode, PartyRateSlab, ServiceType, WeightSlab


@dataclass
class Catalogs:
    """Master catalog rows used to span the scenario space."""

    modes: Sequence[Any] = field(default_factory=list)
    service_types: Sequence[Any] = field(default_factory=list)
    distance_slabs: Sequence[Any] = field(default_factory=list)
    weight_slabs: Sequence[Any] = field(default_factory=list)
    shipment_types: Sequence[str] = SHIPMENT_TYPES

    @classmethod
    def load(cls, active_only: bool = True) -> "Catalogs":
        def rows(model, order_by):
            query = model.query
            if active_only:
                query = query.filter(model.is_active.is_(True))
            return query.order_by(order_by).all()

        return cls(
            modes=rows(Mode, Mode.id.asc()),
            service_types=rows(ServiceType, ServiceType.id.asc()),
            distance_slabs=rows(DistanceSlab, DistanceSlab.id.asc()),
            weight_slabs=rows(WeightSlab, WeightSlab.min_weight_grams.asc()),
        )

    @property
    def expected_total(self) -> int:
        return (
            len(self.shipment_types)
            * len(self.modes)
            * len(self.service_types)
            * len(self.distance_slabs)
            * len(self.weight_slabs)
        )


@dataclass
class Scenario:
    shipment_type: str
    mode_id: int
    service_type_id: int
    distance_slab_id: int
    slab_id: int
    existing: Optional[PartyRateSlab] = None

    @property
    def key(self) -> tuple:
        return (self.shipment_type, self.mode_id, self.service_type_id, self.distance_slab_id, self.slab_id)

    @property
    def is_active(self) -> bool:
        return self.existing is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shipment_type": self.shipment_type,
            "mode_id": self.mode_id,
            "service_type_id": self.service_type_id,
            "distance_slab_id": self.distance_slab_id,
            "slab_id": self.slab_id,
            "status": "Active" if self.is_active else "Inactive",
            "existing": self.existing.to_dict() if self.existing is not None else None,
        }


def generate_scenarios(catalogs: Catalogs, existing_rows: Iterable[PartyRateSlab]) -> List[Scenario]:
    """
    Nested product, shipment type outermost and weight slab innermost.

    Only rows with is_active != False count as `existing`.
    """
    by_key: Dict[tuple, PartyRateSlab] = {}
    for row in existing_rows:
        if row.is_active is False:
            continue
        by_key.setdefault(row.key, row)

    scenarios: List[Scenario] = []
    for shipment_type in catalogs.shipment_types:
        for mode in catalogs.modes:
            for service_type in catalogs.service_types:
                for distance_slab in catalogs.distance_slabs:
                    for weight_slab in catalogs.weight_slabs:
                        scenario = Scenario(
                            shipment_type=shipment_type,
                            mode_id=mode.id,
                            service_type_id=service_type.id,
                            distance_slab_id=distance_slab.id,
                            slab_id=weight_slab.id,
                        )
                        scenario.existing = by_key.get(scenario.key)
                        scenarios.append(scenario)
    return scenarios


def scenario_counts(scenarios: Sequence[Scenario]) -> Dict[str, int]:
    active = sum(1 for s in scenarios if s.is_active)
    return {"total": len(scenarios), "active": active, "inactive": len(scenarios) - active}


def prefill_from_scenario(scenario: Scenario, party_id: Optional[int] = None) -> Dict[str, Any]:
    """Edit-form values for one scenario: the stored prices when priced, blanks otherwise."""
    existing = scenario.existing
    form: Dict[str, Any] = {
        "id": existing.id if existing is not None else None,
        "party_id": party_id if party_id is not None else (existing.party_id if existing is not None else None),
        "shipment_type": scenario.shipment_type,
        "mode_id": scenario.mode_id,
        "service_type_id": scenario.service_type_id,
        "distance_slab_id": scenario.distance_slab_id,
        "slab_id": scenario.slab_id,
        "rate": "",
        "fuel_pct": "0",
        "packing": "0",
        "handling": "0",
        "gst_pct": "0",
        "is_active": True,
    }
    if existing is not None:
        form.update(
            rate=str(existing.rate),
            fuel_pct=str(existing.fuel_pct),
            packing=str(existing.packing),
            handling=str(existing.handling),
            gst_pct=str(existing.gst_pct),
            is_active=existing.is_active,
        )
    return form


def scenarios_for_party(party_id: int) -> Dict[str, Any]:
    """Scenario listing plus counts, as served by the API."""
    catalogs = Catalogs.load()
    rows = PartyRateSlab.query.filter_by(party_id=party_id, is_active=True).all()
    scenarios = generate_scenarios(catalogs, rows)
    return {
        "counts": scenario_counts(scenarios),
        "scenarios": [
            dict(s.to_dict(), prefill=prefill_from_scenario(s, party_id)) for s in scenarios
        ],
    }
