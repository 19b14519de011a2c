from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from callup.db import get_db
from callup.errors import ApiError
from callup.schemas import (
    BulkTransportItemRead,
    BulkTransportRequest,
    BulkTransportResponse,
    CoordinateRead,
    GeocodeResponse,
    TransportEstimateResponse,
)
from callup.security import require_staff, require_user
from callup.services.geocoding import GeocodingError, NaverMapClient, get_geocoding_client
from callup.services.payments import get_batch
from callup.services.transport import estimate_address_transport, estimate_batch_transport

router = APIRouter(tags=["transport"])


@router.get(
    "/api/transport/estimate",
    response_model=TransportEstimateResponse,
    dependencies=[Depends(require_user)],
)
def transport_estimate(
    address: str = Query(min_length=1, max_length=512),
    unit: str = Query(min_length=1, max_length=255),
    db: Session = Depends(get_db),
    client: NaverMapClient = Depends(get_geocoding_client),
) -> TransportEstimateResponse:
    estimate = estimate_address_transport(db, address=address.strip(), unit_name=unit.strip(), client=client)
    return TransportEstimateResponse(
        distance_m=estimate.route.distance_m,
        km=estimate.route.distance_km,
        has_toll=estimate.route.has_toll,
        toll_fare=estimate.route.toll_fare,
        total=estimate.cost.total,
        fuel=estimate.cost.fuel,
        toll=estimate.cost.toll,
        origin=CoordinateRead(lat=estimate.origin.lat, lng=estimate.origin.lng),
        destination=CoordinateRead(lat=estimate.destination.lat, lng=estimate.destination.lng),
        route_coords=[CoordinateRead(lat=point.lat, lng=point.lng) for point in estimate.route.path],
    )


@router.post(
    "/api/transport/bulk",
    response_model=BulkTransportResponse,
    dependencies=[Depends(require_staff)],
)
def transport_bulk(
    payload: BulkTransportRequest,
    db: Session = Depends(get_db),
    client: NaverMapClient = Depends(get_geocoding_client),
) -> BulkTransportResponse:
    get_batch(db, payload.batch_id)
    unit, items = estimate_batch_transport(db, batch_id=payload.batch_id, client=client)
    return BulkTransportResponse(
        unit_name=unit.name,
        results=[
            BulkTransportItemRead(
                user_id=item.user_id,
                name=item.name,
                rank=item.rank,
                address=item.address,
                distance_km=item.distance_km,
                calculated_amount=item.calculated_amount,
                saved_amount=item.saved_amount,
                status=item.status,
            )
            for item in items
        ],
    )


@router.get(
    "/api/geocode",
    response_model=GeocodeResponse,
    dependencies=[Depends(require_user)],
)
def geocode(
    address: str = Query(min_length=1, max_length=512),
    client: NaverMapClient = Depends(get_geocoding_client),
) -> GeocodeResponse:
    try:
        point = client.geocode_with_fallback(address.strip())
    except GeocodingError as exc:
        raise ApiError(
            status_code=502,
            code="GEOCODER_UNAVAILABLE",
            message="Map provider request failed.",
        ) from exc
    if point is None:
        return GeocodeResponse()
    return GeocodeResponse(lat=point.lat, lng=point.lng)
