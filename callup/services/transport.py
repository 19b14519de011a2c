from __future__ import annotations

import logging
from dataclasses import dataclass
from math import floor

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session, selectinload

from callup.errors import ApiError
from callup.models import BatchUser, TransportEstimateStatus, Unit, User, UserTransportAllowance
from callup.schemas import TransportAllowanceRecord
from callup.services.geocoding import GeocodingError, GeoPoint, NaverMapClient, RouteSummary

logger = logging.getLogger("callup.transport")

FLAT_FARE = 4000
FLAT_FARE_MAX_KM = 30
FUEL_PRICE_PER_LITER = 1486
FUEL_EFFICIENCY_KM_PER_LITER = 13.3
TOLL_BASE_FARE = 900
TOLL_PER_KM = 44.3


@dataclass(frozen=True, slots=True)
class TransportCost:
    total: int
    fuel: int
    toll: int


@dataclass(frozen=True, slots=True)
class TransportEstimateItem:
    user_id: int
    name: str
    rank: str | None
    address: str | None
    distance_km: int | None
    calculated_amount: int | None
    saved_amount: int | None
    status: TransportEstimateStatus


@dataclass(frozen=True, slots=True)
class AddressEstimate:
    route: RouteSummary
    cost: TransportCost
    origin: GeoPoint
    destination: GeoPoint


def _round_half_up(value: float) -> int:
    return int(floor(value + 0.5))


def calc_transport(km: float, has_toll: bool) -> TransportCost:
    if km <= FLAT_FARE_MAX_KM:
        return TransportCost(total=FLAT_FARE, fuel=0, toll=0)

    fuel_raw = km * (FUEL_PRICE_PER_LITER / FUEL_EFFICIENCY_KM_PER_LITER)
    toll_raw = TOLL_BASE_FARE + TOLL_PER_KM * km if has_toll else 0.0
    total = int(floor((fuel_raw + toll_raw) / 10) * 10)
    return TransportCost(total=total, fuel=_round_half_up(fuel_raw), toll=_round_half_up(toll_raw))


def _full_address(user: User) -> str | None:
    if not user.address:
        return None
    if user.address_detail:
        return f"{user.address} {user.address_detail}"
    return user.address


def _unit_point(unit: Unit) -> GeoPoint:
    return GeoPoint(lat=float(unit.latitude), lng=float(unit.longitude))


def estimate_member_transport(
    client: NaverMapClient,
    *,
    user: User,
    destination: GeoPoint,
    saved_amount: int | None,
) -> TransportEstimateItem:
    full_address = _full_address(user)

    def _item(
        status: TransportEstimateStatus,
        *,
        distance_km: int | None = None,
        amount: int | None = None,
    ) -> TransportEstimateItem:
        return TransportEstimateItem(
            user_id=user.id,
            name=user.name,
            rank=user.rank,
            address=full_address,
            distance_km=distance_km,
            calculated_amount=amount,
            saved_amount=saved_amount,
            status=status,
        )

    if full_address is None:
        return _item(TransportEstimateStatus.NO_ADDRESS)

    try:
        origin = client.geocode_with_fallback(user.address or "")
        if origin is None:
            return _item(TransportEstimateStatus.GEO_FAIL)

        route = client.driving_route(origin, destination)
        if route is None:
            return _item(TransportEstimateStatus.ROUTE_FAIL)

        cost = calc_transport(route.distance_km, route.has_toll)
        return _item(TransportEstimateStatus.OK, distance_km=route.distance_km, amount=cost.total)
    except Exception:
        logger.warning(
            "transport_estimate_member_failed",
            extra={"user_id": user.id},
            exc_info=True,
        )
        return _item(TransportEstimateStatus.ERROR)


def _first_unit_with_coordinates(db: Session) -> Unit:
    unit = db.scalar(
        select(Unit)
        .where(Unit.latitude.is_not(None), Unit.longitude.is_not(None))
        .order_by(Unit.id.asc())
        .limit(1)
    )
    if unit is None:
        raise ApiError(
            status_code=400,
            code="UNIT_COORDINATES_MISSING",
            message="No unit has registered coordinates.",
        )
    return unit


def estimate_batch_transport(
    db: Session,
    *,
    batch_id: int,
    client: NaverMapClient,
) -> tuple[Unit, list[TransportEstimateItem]]:
    unit = _first_unit_with_coordinates(db)
    members = list(
        db.scalars(
            select(BatchUser)
            .where(BatchUser.batch_id == batch_id)
            .options(selectinload(BatchUser.user))
        ).all()
    )
    if not members:
        raise ApiError(
            status_code=400,
            code="BATCH_HAS_NO_MEMBERS",
            message="The batch has no members.",
        )

    saved_amounts = {
        allowance.user_id: allowance.amount
        for allowance in db.scalars(
            select(UserTransportAllowance).where(UserTransportAllowance.batch_id == batch_id)
        ).all()
    }
    destination = _unit_point(unit)

    results = [
        estimate_member_transport(
            client,
            user=member.user,
            destination=destination,
            saved_amount=saved_amounts.get(member.user_id),
        )
        for member in members
    ]
    failed = sum(1 for item in results if item.status != TransportEstimateStatus.OK)
    logger.info(
        "transport_bulk_estimate_complete",
        extra={"batch_id": batch_id, "members": len(results), "failed": failed},
    )
    return unit, results


def estimate_address_transport(
    db: Session,
    *,
    address: str,
    unit_name: str,
    client: NaverMapClient,
) -> AddressEstimate:
    unit = db.scalar(select(Unit).where(Unit.name == unit_name))
    if unit is None or unit.latitude is None or unit.longitude is None:
        raise ApiError(
            status_code=404,
            code="UNIT_COORDINATES_MISSING",
            message="Unit coordinates are not registered.",
        )
    destination = _unit_point(unit)

    try:
        origin = client.geocode_with_fallback(address)
        if origin is None:
            raise ApiError(
                status_code=400,
                code="ADDRESS_NOT_FOUND",
                message="Address could not be found. Enter a full street or lot address.",
            )
        route = client.driving_route(origin, destination)
    except GeocodingError as exc:
        logger.warning("transport_estimate_provider_failed", extra={"error": str(exc)})
        raise ApiError(
            status_code=502,
            code="GEOCODER_UNAVAILABLE",
            message="Map provider request failed.",
        ) from exc

    if route is None:
        raise ApiError(status_code=400, code="ROUTE_NOT_FOUND", message="No driving route was found.")

    return AddressEstimate(
        route=route,
        cost=calc_transport(route.distance_km, route.has_toll),
        origin=origin,
        destination=destination,
    )


def save_transport_allowances(
    db: Session,
    *,
    batch_id: int,
    records: list[TransportAllowanceRecord],
) -> list[UserTransportAllowance]:
    statement = pg_insert(UserTransportAllowance).values(
        [
            {
                "user_id": record.user_id,
                "batch_id": batch_id,
                "amount": record.amount,
                "address": record.address,
                "note": record.note,
            }
            for record in records
        ]
    )
    statement = statement.on_conflict_do_update(
        index_elements=[UserTransportAllowance.user_id, UserTransportAllowance.batch_id],
        set_={
            "amount": statement.excluded.amount,
            "address": func.coalesce(statement.excluded.address, UserTransportAllowance.address),
            "note": func.coalesce(statement.excluded.note, UserTransportAllowance.note),
            "updated_at": func.now(),
        },
    ).returning(UserTransportAllowance)

    allowances = list(db.scalars(statement, execution_options={"populate_existing": True}).all())
    db.commit()
    return allowances
