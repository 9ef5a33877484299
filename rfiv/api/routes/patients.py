"""Patient routes.

Mounted under the API version prefix (``/v1`` by default):

    POST /patient                    create a patient
    GET  /patients                   search by name / id / tagId
    GET  /patient/{id}               fetch one patient
    PUT  /patient/{id}               update name and/or tagId
    POST /patient/{tagId}/location   report a location ping
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from fastapi.concurrency import run_in_threadpool

from rfiv.api.deps import get_patient_service
from rfiv.models.patient import LocationPing, Patient, PatientCreate, PatientUpdate
from rfiv.models.search import PatientQuery
from rfiv.services.patient_service import PatientService

router = APIRouter(tags=["patients"])


def _to_response(record: dict) -> dict:
    return Patient(**record).model_dump()


@router.post("/patient", status_code=204)
async def create_patient(
    payload: PatientCreate = Body(...),
    service: PatientService = Depends(get_patient_service),
):
    await run_in_threadpool(service.create_patient, payload.name, payload.id, payload.tagId)
    return Response(status_code=204)


@router.get("/patients")
async def search_patients(
    name: Optional[str] = Query(None),
    id: Optional[str] = Query(None),
    tagId: Optional[str] = Query(None),
    service: PatientService = Depends(get_patient_service),
):
    query = PatientQuery(name=name, id=id, tagId=tagId).normalized()
    patients = await run_in_threadpool(service.search_patients, query)
    return {"patients": [_to_response(p) for p in patients], "query": query}


@router.get("/patient/{patient_id}")
async def get_patient(
    patient_id: str,
    service: PatientService = Depends(get_patient_service),
):
    patient = await run_in_threadpool(service.get_patient, patient_id)
    return {"patient": _to_response(patient)}


@router.put("/patient/{patient_id}", status_code=204)
async def update_patient(
    patient_id: str,
    payload: PatientUpdate = Body(...),
    service: PatientService = Depends(get_patient_service),
):
    await run_in_threadpool(service.update_patient, patient_id, payload.name, payload.tagId)
    return Response(status_code=204)


@router.post("/patient/{tag_id}/location", status_code=204)
async def add_location(
    tag_id: str,
    ping: LocationPing = Body(...),
    service: PatientService = Depends(get_patient_service),
):
    await run_in_threadpool(service.add_location, tag_id, ping.timestamp, ping.location)
    return Response(status_code=204)
