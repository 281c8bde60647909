from __future__ import annotations

from datetime import date
from typing import Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from clinic_backend.models.appointment import COMPLETED_STATUS, Appointment
from clinic_backend.models.patient import Patient
from clinic_backend.models.time_block import TimeBlock


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def query_by_owner_and_date(self, owner_id: str, day: date) -> Sequence[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.owner_id == owner_id,
            Appointment.date == day,
        ).all()

    def get(self, owner_id: str, appointment_id: str) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.owner_id == owner_id,
        ).first()

    def get_for_patient(self, patient_id: str, appointment_id: str) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.patient_id == patient_id,
        ).first()

    def list(
        self,
        owner_id: str | None = None,
        *,
        patient_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        statuses: list[str] | None = None,
        limit: int = 100,
    ) -> Sequence[Appointment]:
        query = self.db.query(Appointment)
        if owner_id is not None:
            query = query.filter(Appointment.owner_id == owner_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if start_date is not None:
            query = query.filter(Appointment.date >= start_date)
        if end_date is not None:
            query = query.filter(Appointment.date <= end_date)
        if statuses:
            query = query.filter(Appointment.status.in_(statuses))

        return query.order_by(Appointment.date.asc(), Appointment.time.asc()).limit(limit).all()

    def add(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.flush()
        return appointment


class TimeBlockStore:
    def __init__(self, db: Session):
        self.db = db

    def query_by_owner_and_date(self, owner_id: str, day: date) -> Sequence[TimeBlock]:
        return self.db.query(TimeBlock).filter(
            TimeBlock.owner_id == owner_id,
            TimeBlock.date == day,
        ).all()

    def get(self, owner_id: str, time_block_id: str) -> TimeBlock | None:
        return self.db.query(TimeBlock).filter(
            TimeBlock.id == time_block_id,
            TimeBlock.owner_id == owner_id,
        ).first()

    def list(
        self,
        owner_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        block_type: str | None = None,
        limit: int = 100,
    ) -> Sequence[TimeBlock]:
        query = self.db.query(TimeBlock).filter(TimeBlock.owner_id == owner_id)
        if start_date is not None:
            query = query.filter(TimeBlock.date >= start_date)
        if end_date is not None:
            query = query.filter(TimeBlock.date <= end_date)
        if block_type:
            query = query.filter(TimeBlock.type == block_type)

        return query.order_by(TimeBlock.date.asc(), TimeBlock.start_time.asc()).limit(limit).all()

    def add(self, time_block: TimeBlock) -> TimeBlock:
        self.db.add(time_block)
        self.db.flush()
        return time_block

    def delete(self, time_block: TimeBlock) -> None:
        self.db.delete(time_block)


class PatientStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, owner_id: str, patient_id: str) -> Patient | None:
        return self.db.query(Patient).filter(
            Patient.id == patient_id,
            Patient.owner_id == owner_id,
        ).first()

    def get_by_account(self, account_id: str) -> Patient | None:
        return self.db.query(Patient).filter(Patient.account_id == account_id).first()

    def get_by_mrn(self, mrn: str) -> Patient | None:
        return self.db.query(Patient).filter(Patient.mrn == mrn).first()

    def list(
        self,
        owner_id: str,
        *,
        search: str | None = None,
        patient_status: str | None = None,
        limit: int = 100,
    ) -> Sequence[Patient]:
        query = self.db.query(Patient).filter(Patient.owner_id == owner_id)
        if patient_status:
            query = query.filter(Patient.status == patient_status)
        if search:
            pattern = f'%{search.strip()}%'
            query = query.filter(
                or_(
                    Patient.first_name.ilike(pattern),
                    Patient.last_name.ilike(pattern),
                    Patient.mrn.ilike(pattern),
                    Patient.email.ilike(pattern),
                )
            )

        return query.order_by(Patient.last_name.asc(), Patient.first_name.asc()).limit(limit).all()

    def add(self, patient: Patient) -> Patient:
        self.db.add(patient)
        self.db.flush()
        return patient

    def completed_visit_dates(self, patient_id: str) -> list[date]:
        """Dates of the patient's completed appointments, most recent first."""
        rows = self.db.query(Appointment.date).filter(
            Appointment.patient_id == patient_id,
            Appointment.status == COMPLETED_STATUS,
        ).order_by(Appointment.date.desc(), Appointment.time.desc()).all()
        return [row.date for row in rows]
