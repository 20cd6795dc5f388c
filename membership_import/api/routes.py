import json
from fastapi import APIRouter, BackgroundTasks, Body, UploadFile, File, Form, HTTPException, Query
from typing import List, Optional
from pydantic import ValidationError

from membership_import.core.config import settings
from membership_import.models.errors import ErrorResponse
from membership_import.models.mapping import (
    FieldMapping,
    ImportOptions,
    ImportRequest,
    ImportJobInfo,
    PreviewResult,
)
from membership_import.services import csv_loader, import_service, stores

router = APIRouter()

@router.get("/fields")
async def get_fields(contact_type: Optional[str] = Query(None)):
    fields = import_service.field_catalog.get_fields(contact_type or settings.DEFAULT_CONTACT_TYPE)
    return {"fields": [f.model_dump() for f in fields.values()]}

@router.get("/required-fields")
async def get_required_fields():
    return import_service.field_catalog.get_required_fields()

@router.post("/imports/preview", response_model=PreviewResult)
def preview_import(request: ImportRequest):
    return import_service.preview_import(request.rows, request.mapping, request.options)

# Import routes return the job right away; rows are imported in a background
# task so the job can be polled and cancelled while it runs.

@router.post(
    "/imports",
    response_model=ImportJobInfo,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
)
def create_import(
    request: ImportRequest,
    background_tasks: BackgroundTasks,
    workers: int = Query(1, ge=1, le=16),
):
    if not request.mapping:
        raise HTTPException(status_code=400, detail="Column mapping is empty")
    job = import_service.create_import(request.mapping, request.options)
    background_tasks.add_task(import_service.run_import, job.id, request.rows, workers=workers)
    return job

@router.post(
    "/imports/upload",
    response_model=ImportJobInfo,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
)
def upload_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    mapping_json: str = Form(...),
    options_json: Optional[str] = Form(None),
    has_header: bool = Form(True),
    delimiter: str = Form(","),
    encoding: str = Form("utf-8"),
):
    try:
        mapping = [FieldMapping(**m) for m in json.loads(mapping_json)]
        options = ImportOptions(**json.loads(options_json)) if options_json else ImportOptions()
    except (ValueError, TypeError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid mapping_json or options_json payload")

    try:
        file_id = csv_loader.save_uploaded_file(file)
        try:
            rows = csv_loader.read_rows(file_id, has_header=has_header, delimiter=delimiter, encoding=encoding)
        finally:
            csv_loader.delete_file(file_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job = import_service.create_import(mapping, options)
    background_tasks.add_task(import_service.run_import, job.id, rows)
    return job

@router.post(
    "/imports/{job_id}/resume",
    response_model=ImportJobInfo,
    status_code=202,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def resume_import(
    job_id: str,
    background_tasks: BackgroundTasks,
    rows: List[List[Optional[str]]] = Body(...),
):
    try:
        job = import_service.resume_import(job_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    background_tasks.add_task(import_service.run_import, job_id, rows)
    return job

@router.post("/imports/{job_id}/cancel")
def cancel_import(job_id: str):
    try:
        import_service.cancel_import(job_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"job_id": job_id, "status": "cancelled"}

@router.get("/imports/{job_id}")
def get_import(job_id: str):
    try:
        return stores.get_job(job_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.get("/imports/{job_id}/rows")
def get_import_rows(job_id: str):
    try:
        stores.get_job(job_id)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"rows": [o.model_dump() for o in stores.list_outcomes(job_id)]}
