from __future__ import annotations

from datetime import date
from typing import Any, cast

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from patientflow.infrastructure.db.models_sqlalchemy import MrNumberSequence, Patient, utc_now


class PatientRepository:
    def get_by_id(self, session: Session, patient_id: int) -> Patient | None:
        return session.get(Patient, patient_id)

    def get_by_mr_number(self, session: Session, mr_number: str) -> Patient | None:
        stmt = select(Patient).where(Patient.mr_number == mr_number)
        return session.execute(stmt).scalar_one_or_none()

    def mr_number_exists(self, session: Session, mr_number: str) -> bool:
        stmt = select(Patient.id).where(Patient.mr_number == mr_number).limit(1)
        return session.execute(stmt).first() is not None

    def next_mr_sequence(self, session: Session, year: int) -> int:
        # Increment first: the UPDATE takes the write lock before anything is read.
        if not self._increment_sequence(session, year):
            try:
                with session.begin_nested():
                    session.add(MrNumberSequence(year=year, last_number=1))
                    session.flush()
                return 1
            except IntegrityError:
                # another writer opened the year first
                self._increment_sequence(session, year)
        stmt = select(MrNumberSequence.last_number).where(MrNumberSequence.year == year)
        return int(session.execute(stmt).scalar_one())

    def _increment_sequence(self, session: Session, year: int) -> bool:
        result = session.execute(
            update(MrNumberSequence)
            .where(MrNumberSequence.year == year)
            .values(last_number=MrNumberSequence.last_number + 1)
        )
        return cast(Any, result).rowcount == 1

    def create(
        self,
        session: Session,
        *,
        mr_number: str,
        first_name: str,
        last_name: str,
        dob: date | None,
        gender: str,
        identification_type: str,
        identification_number: str | None,
        phone: str | None,
        email: str | None,
        address: str | None,
        is_unknown: bool,
    ) -> Patient:
        patient = Patient(
            mr_number=mr_number,
            first_name=first_name,
            last_name=last_name,
            dob=dob,
            gender=gender,
            identification_type=identification_type,
            identification_number=identification_number,
            phone=phone,
            email=email,
            address=address,
            is_unknown=is_unknown,
        )
        session.add(patient)
        session.flush()
        return patient

    def search(self, session: Session, query: str, limit: int | None = None) -> list[Patient]:
        clean = query.strip()
        if not clean:
            return []
        if not clean.isascii():
            return self._search_casefolded(session, clean, limit)
        full_name = Patient.first_name + " " + Patient.last_name
        stmt = (
            select(Patient)
            .where(
                or_(
                    Patient.mr_number.icontains(clean, autoescape=True),
                    Patient.phone.icontains(clean, autoescape=True),
                    full_name.icontains(clean, autoescape=True),
                    Patient.identification_number.icontains(clean, autoescape=True),
                )
            )
            .order_by(Patient.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.execute(stmt).scalars())

    def _search_casefolded(self, session: Session, query: str, limit: int | None) -> list[Patient]:
        # SQL lower() only folds ASCII, so non-ASCII queries are matched in Python.
        needle = query.casefold()
        found: list[Patient] = []
        for patient in self.list_all(session):
            fields = (
                patient.mr_number,
                patient.phone,
                f"{patient.first_name} {patient.last_name}",
                patient.identification_number,
            )
            if any(needle in str(value).casefold() for value in fields if value):
                found.append(patient)
                if limit is not None and len(found) >= limit:
                    break
        return found

    def find_identity_candidates(
        self,
        session: Session,
        *,
        identification_number: str | None,
        phone: str | None,
        full_name_key: str | None,
    ) -> list[Patient]:
        """Records sharing at least one exact identity field, in insertion order."""
        clauses = []
        if identification_number:
            clauses.append(Patient.identification_number == identification_number)
        if phone:
            clauses.append(Patient.phone == phone)
        if full_name_key:
            clauses.append(func.lower(Patient.first_name + " " + Patient.last_name) == full_name_key)
        if not clauses:
            return []
        stmt = select(Patient).where(or_(*clauses)).order_by(Patient.id)
        return list(session.execute(stmt).scalars())

    def list_all(self, session: Session) -> list[Patient]:
        return list(session.execute(select(Patient).order_by(Patient.id)).scalars())

    def update_contact(
        self,
        session: Session,
        patient_id: int,
        *,
        phone: str | None = None,
        email: str | None = None,
        address: str | None = None,
    ) -> Patient | None:
        patient = session.get(Patient, patient_id)
        if patient:
            patient_obj = cast(Any, patient)
            if phone is not None:
                patient_obj.phone = phone
            if email is not None:
                patient_obj.email = email
            if address is not None:
                patient_obj.address = address
            patient_obj.updated_at = utc_now()
            session.flush()
        return patient

    def set_status(self, session: Session, patient_id: int, status: str) -> Patient | None:
        patient = session.get(Patient, patient_id)
        if patient:
            patient_obj = cast(Any, patient)
            patient_obj.status = status
            patient_obj.updated_at = utc_now()
            session.flush()
        return patient
