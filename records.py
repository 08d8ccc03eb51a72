"""
Vaccination record lifecycle.

Records are written once and never updated. Alongside each record the service
keeps two derived counters, one per state and one per (state, district), which
back the dashboard heat maps. The record write and the counter updates are
separate store operations; each is atomic on its own, the three together are not.
"""

import random
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from pydantic import ValidationError as PayloadError
from pydantic.alias_generators import to_camel

from errors import GenerationExhausted, NotFound, StoreFailure, ValidationError
from logging_config import get_logger
from models import (
    BulkImportResult,
    BulkVaccinationPayload,
    DashboardStats,
    DistrictCount,
    StateCount,
    VaccinationPayload,
    VaccinationRecord,
)
from utils import new_cert_id, redact_email
from vaccine_data import DOSE_BUCKETS

logger = get_logger(__name__)

MAX_ID_ATTEMPTS = 10

REQUIRED_FIELDS = (
    "name",
    "email",
    "state",
    "district",
    "vaccine_type",
    "dose",
    "date_administered",
)

RECORD_PREFIX = "vaccination:"
STATE_PREFIX = "state:"
DISTRICT_PREFIX = "district:"
KEY_SEPARATOR = ":"


def record_key(cert_id: str) -> str:
    return f"{RECORD_PREFIX}{cert_id}"


def state_key(state: str) -> str:
    return f"{STATE_PREFIX}{state}"


def district_key(state: str, district: str) -> str:
    return f"{DISTRICT_PREFIX}{state}{KEY_SEPARATOR}{district}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def missing_fields(payload: VaccinationPayload) -> List[str]:
    """Wire names of required fields that are absent or blank."""
    return [to_camel(name) for name in REQUIRED_FIELDS if getattr(payload, name) is None]


def bad_location_fields(payload: VaccinationPayload) -> List[str]:
    """Counter keys join state and district with ':', so neither may contain one."""
    return [name for name in ("state", "district") if KEY_SEPARATOR in (getattr(payload, name) or "")]


async def claim_cert_id(
    try_claim: Callable[[str], Awaitable[bool]],
    today: Optional[date] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Find a free certificate ID.

    ``try_claim`` is called with each candidate and returns True once the
    candidate has been taken for the caller (for the store this is an
    insert-if-absent of the record itself). Gives up after MAX_ID_ATTEMPTS.
    """
    for attempt in range(1, MAX_ID_ATTEMPTS + 1):
        cert_id = new_cert_id(today, rng)
        if await try_claim(cert_id):
            return cert_id
        logger.info("Certificate ID collision", cert_id=cert_id, attempt=attempt)

    raise GenerationExhausted(
        "Failed to generate unique certificate ID",
        details=f"{MAX_ID_ATTEMPTS} candidates already taken",
    )


class RecordService:
    def __init__(self, store, notifier=None, rng: Optional[random.Random] = None):
        self.store = store
        self.notifier = notifier
        self.rng = rng

    async def register(self, payload: VaccinationPayload) -> VaccinationRecord:
        missing = missing_fields(payload)
        if missing:
            raise ValidationError("Missing required fields", details=", ".join(missing))
        bad = bad_location_fields(payload)
        if bad:
            raise ValidationError("State and district must not contain ':'", details=", ".join(bad))

        fields = payload.model_dump()
        created_at = utc_timestamp()
        claimed: dict = {}

        async def try_claim(cert_id: str) -> bool:
            record = VaccinationRecord(cert_id=cert_id, created_at=created_at, **fields)
            if await self.store.insert_if_absent(record_key(cert_id), record.to_wire()):
                claimed["record"] = record
                return True
            return False

        await claim_cert_id(try_claim, rng=self.rng)
        record = claimed["record"]
        await self._count_in(record)

        logger.info(
            "Vaccination registered",
            cert_id=record.cert_id,
            state=record.state,
            district=record.district,
            recipient=redact_email(record.email),
        )
        if self.notifier is not None:
            self.notifier.enqueue(record)
        return record

    async def get(self, cert_id: str) -> VaccinationRecord:
        value = await self.store.get(record_key(cert_id))
        if value is None:
            raise NotFound("Certificate not found", details=cert_id)
        return VaccinationRecord.model_validate(value)

    async def list_records(self) -> List[VaccinationRecord]:
        values = await self.store.get_by_prefix(RECORD_PREFIX)
        records = [VaccinationRecord.model_validate(v) for v in values]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def delete(self, cert_id: str) -> VaccinationRecord:
        record = await self.get(cert_id)
        if not await self.store.delete(record_key(cert_id)):
            # Removed by someone else between the read and the delete
            raise NotFound("Certificate not found", details=cert_id)
        await self._count_out(record)
        logger.info("Vaccination deleted", cert_id=cert_id, state=record.state, district=record.district)
        return record

    async def bulk_import(self, items: Iterable[Any]) -> BulkImportResult:
        """Insert records that already carry a certId. Duplicates and bad rows are counted, not raised."""
        inserted = 0
        errors = 0

        for index, item in enumerate(items):
            try:
                payload = BulkVaccinationPayload.model_validate(item)
            except PayloadError as e:
                errors += 1
                logger.warning("Bulk row rejected", row=index, error=str(e))
                continue

            if not (payload.cert_id and payload.state and payload.district):
                errors += 1
                logger.warning("Bulk row missing certId, state or district", row=index)
                continue

            if bad_location_fields(payload):
                errors += 1
                logger.warning("Bulk row has ':' in state or district", row=index, cert_id=payload.cert_id)
                continue

            record = VaccinationRecord(created_at=utc_timestamp(), **payload.model_dump())
            try:
                if not await self.store.insert_if_absent(record_key(record.cert_id), record.to_wire()):
                    errors += 1
                    logger.info("Bulk row skipped, certId exists", row=index, cert_id=record.cert_id)
                    continue
                await self._count_in(record)
            except StoreFailure as e:
                errors += 1
                logger.error("Bulk row failed", row=index, cert_id=record.cert_id, error=e.message, details=e.details)
                continue
            except Exception:
                # One bad row must not abort the batch.
                errors += 1
                logger.exception("Bulk row failed", row=index, cert_id=record.cert_id)
                continue

            inserted += 1

        result = BulkImportResult(inserted=inserted, errors=errors)
        logger.info("Bulk import finished", inserted=inserted, errors=errors)
        return result

    async def dashboard(self) -> DashboardStats:
        records = await self.store.get_by_prefix(RECORD_PREFIX)
        states = await self.store.get_by_prefix(STATE_PREFIX)
        districts = await self.store.get_by_prefix(DISTRICT_PREFIX)

        vaccine_types: Counter = Counter()
        dose_distribution = {bucket: 0 for bucket in DOSE_BUCKETS}
        monthly_data: Counter = Counter()

        for record in records:
            if record.get("vaccineType"):
                vaccine_types[record["vaccineType"]] += 1
            if record.get("dose") is not None:
                dose = str(record["dose"])
                dose_distribution[dose] = dose_distribution.get(dose, 0) + 1
            if record.get("dateAdministered"):
                monthly_data[record["dateAdministered"][:7]] += 1

        state_counts = sorted((StateCount.model_validate(s) for s in states), key=lambda s: s.state)
        district_counts = sorted(
            (DistrictCount.model_validate(d) for d in districts),
            key=lambda d: (d.state, d.district),
        )

        return DashboardStats(
            total_vaccinations=len(records),
            vaccine_types=dict(vaccine_types),
            dose_distribution=dose_distribution,
            monthly_data=dict(sorted(monthly_data.items())),
            state_heatmap_data=state_counts,
            district_heatmap_data=district_counts,
        )

    async def _count_in(self, record: VaccinationRecord) -> None:
        await self.store.increment(state_key(record.state), "count", {"state": record.state})
        await self.store.increment(
            district_key(record.state, record.district),
            "count",
            {"state": record.state, "district": record.district},
        )

    async def _count_out(self, record: VaccinationRecord) -> None:
        await self.store.decrement(state_key(record.state), "count")
        await self.store.decrement(district_key(record.state, record.district), "count")
