"""
API dependencies.

The patient service is built once by the app factory and kept on
``app.state``; routes receive it through ``Depends(get_patient_service)``.
"""

from fastapi import Request

from rfiv.services.patient_service import PatientService


def get_patient_service(request: Request) -> PatientService:
    return request.app.state.patient_service
