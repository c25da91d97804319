from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from patientflow.domain.beds import BedStatus
from patientflow.infrastructure.db.models_sqlalchemy import Bed, Ward


class WardRepository:
    def list_wards(self, session: Session) -> list[Ward]:
        return list(session.execute(select(Ward).order_by(Ward.id)).scalars())

    def get_ward(self, session: Session, ward_id: int) -> Ward | None:
        return session.get(Ward, ward_id)

    def get_ward_by_code(self, session: Session, code: str) -> Ward | None:
        stmt = select(Ward).where(Ward.code == code)
        return session.execute(stmt).scalar_one_or_none()

    def list_beds(self, session: Session, ward_id: int, status: str | None = None) -> list[Bed]:
        stmt = select(Bed).where(Bed.ward_id == ward_id)
        if status:
            stmt = stmt.where(Bed.status == status)
        stmt = stmt.order_by(Bed.id)
        return list(session.execute(stmt).scalars())

    def get_bed(self, session: Session, bed_id: int) -> Bed | None:
        return session.get(Bed, bed_id)

    def read_bed_status(self, session: Session, bed_id: int) -> str | None:
        """Fresh status straight from the store, bypassing the identity map."""
        stmt = select(Bed.status).where(Bed.id == bed_id)
        value = session.execute(stmt).scalar_one_or_none()
        return None if value is None else str(value)

    def update_bed_status(
        self,
        session: Session,
        *,
        bed_id: int,
        expected_status: str,
        new_status: str,
        now: datetime,
    ) -> bool:
        result = session.execute(
            update(Bed)
            .where(Bed.id == bed_id, Bed.status == expected_status)
            .values(status=new_status, version=Bed.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return cast(Any, result).rowcount == 1

    def occupancy(self, session: Session) -> dict[int, dict[str, int]]:
        stmt = select(Bed.ward_id, Bed.status, func.count(Bed.id)).group_by(Bed.ward_id, Bed.status)
        counts: dict[int, dict[str, int]] = {}
        for ward_id, status, count in session.execute(stmt):
            counts.setdefault(int(ward_id), {s: 0 for s in BedStatus.values()})[str(status)] = int(count)
        return counts

    def has_inventory(self, session: Session) -> bool:
        return session.execute(select(Ward.id).limit(1)).first() is not None

    def upsert_ward(self, session: Session, payload: dict[str, Any]) -> Ward:
        ward = self.get_ward_by_code(session, str(payload["code"]))
        if ward is None:
            ward = Ward(code=payload["code"])
            session.add(ward)
        ward_obj = cast(Any, ward)
        ward_obj.name = payload.get("name") or payload["code"]
        ward_obj.ward_type = payload.get("ward_type") or "general"
        ward_obj.floor = payload.get("floor")
        session.flush()
        return ward

    def ensure_beds(self, session: Session, ward: Ward, beds: Iterable[dict[str, Any]]) -> int:
        existing = {str(b.number) for b in self.list_beds(session, cast(int, ward.id))}
        added = 0
        for item in beds:
            number = str(item["number"])
            if number in existing:
                continue
            session.add(
                Bed(
                    ward_id=ward.id,
                    number=number,
                    bed_type=item.get("bed_type") or "general",
                    price_per_day=item.get("price_per_day") or 0,
                    status=item.get("status") or BedStatus.AVAILABLE.value,
                )
            )
            existing.add(number)
            added += 1
        session.flush()
        return added
