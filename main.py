"""
FastAPI application for dual-model document extraction.

This module provides REST API endpoints for managing document templates,
detecting their fields, test-running documents through both extraction
backends and batch-processing documents with the preferred backend.
"""
import logging
import mimetypes
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from dualscan.config import config
from dualscan.constants import API_PREFIX, EXPORT_CSV, EXPORT_JSON, USER_HEADER
from dualscan.exceptions import (
    AuthorizationError,
    ExtractionBackendError,
    FieldDetectionError,
    NotFoundError,
    ProcessingError,
    ReconciliationError,
    ValidationError,
)
from dualscan.exporter import export_results
from dualscan.logging_config import setup_app_logging
from dualscan.models import ImageUpload
from dualscan.schemas import SaveFieldsRequest, SelectWinnerRequest, TemplateInfoRequest
from dualscan.services import Services, build_services

# Setup logging with daily rotation
setup_app_logging()
logger = logging.getLogger(__name__)

EXPORT_MEDIA_TYPES = {
    EXPORT_JSON: "application/json",
    EXPORT_CSV: "text/csv",
}

router = APIRouter(prefix=API_PREFIX)


def error_status(error: ProcessingError) -> int:
    """Map a pipeline error onto an HTTP status code."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AuthorizationError):
        return 403
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, FieldDetectionError):
        return 422
    if isinstance(error, (ExtractionBackendError, ReconciliationError)):
        return 502
    return 500


async def processing_error_handler(request: Request, exc: ProcessingError) -> JSONResponse:
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {str(exc)}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({status_code}): {str(exc)}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(x_user_id: Optional[str] = Header(default=None, alias=USER_HEADER)) -> int:
    """
    Resolve the calling user from the request header.

    Raises:
        HTTPException: 401 if the header is missing or not a user id
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")


async def read_upload(file: UploadFile) -> ImageUpload:
    """
    Read an uploaded file into memory.

    The MIME type comes from the request part, falling back to a guess from
    the file name.
    """
    content = await file.read()
    filename = file.filename or "upload"
    mime_type = file.content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    logger.debug(f"Read file {filename}: {len(content)} bytes ({mime_type})")
    return ImageUpload(filename=filename, content=content, mime_type=mime_type)


@router.post("/templates", status_code=201)
async def create_template(
    body: TemplateInfoRequest,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """Create a template in the drafting state."""
    template = services.templates.create_template(
        user_id, body.name, body.description, body.custom_prompt
    )
    return template.to_dict()


@router.get("/templates")
async def list_templates(
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> List[dict]:
    return [t.to_dict() for t in services.templates.list_templates(user_id)]


@router.get("/templates/{template_id}")
async def get_template(
    template_id: int,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    return services.templates.get_template(user_id, template_id).to_dict()


@router.put("/templates/{template_id}")
async def update_template(
    template_id: int,
    body: TemplateInfoRequest,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """Replace a template's name, description and custom instruction."""
    template = services.templates.update_template(
        user_id, template_id, body.name, body.description, body.custom_prompt
    )
    return template.to_dict()


@router.delete("/templates/{template_id}", status_code=204)
async def delete_template(
    template_id: int,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Response:
    """Delete a template and its results."""
    services.templates.delete_template(user_id, template_id)
    return Response(status_code=204)


@router.post("/templates/{template_id}/detect-fields")
async def detect_fields(
    template_id: int,
    image: UploadFile = File(...),
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """
    Detect the form fields of an example document image.

    Returns:
        dict: The detected fields and the updated template
    """
    upload = await read_upload(image)
    logger.info(f"Field detection requested for template {template_id}: {upload.filename}")
    fields, template = await services.detector.detect_fields(user_id, template_id, upload)
    return {
        "fields": [f.to_dict() for f in fields],
        "template": template.to_dict(),
    }


@router.put("/templates/{template_id}/fields")
async def save_fields(
    template_id: int,
    body: SaveFieldsRequest,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """Store an edited field list."""
    template = services.templates.save_fields(
        user_id, template_id, [f.model_dump() for f in body.fields]
    )
    return template.to_dict()


@router.post("/templates/{template_id}/test")
async def test_document(
    template_id: int,
    image: UploadFile = File(...),
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """
    Run one document through both backends and both reconciliations.

    Returns:
        dict: The completed result with both merged candidates
    """
    upload = await read_upload(image)
    logger.info(f"Test processing requested for template {template_id}: {upload.filename}")
    result = await services.processor.test_document(user_id, template_id, upload)
    return result.to_dict()


@router.post("/templates/{template_id}/results/{result_id}/select")
async def select_winner(
    template_id: int,
    result_id: int,
    body: SelectWinnerRequest,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """Adopt one backend's merged candidate and complete the template."""
    result = services.processor.select_winner(user_id, template_id, result_id, body.backend)
    return result.to_dict()


@router.post("/templates/{template_id}/batch", status_code=202)
async def process_batch(
    template_id: int,
    images: List[UploadFile] = File(...),
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    """
    Start background processing of a batch of documents.

    Returns:
        dict: Identifiers of the results to poll
    """
    logger.info(f"Received batch of {len(images)} files for template {template_id}")
    uploads = [await read_upload(image) for image in images]
    total_size = sum(upload.size for upload in uploads)
    logger.info(f"Total upload size: {total_size} bytes ({total_size / 1024 / 1024:.2f} MB)")

    result_ids = await services.processor.start_batch(user_id, template_id, uploads)
    return {"message": "Processing started", "result_ids": result_ids}


@router.get("/templates/{template_id}/results")
async def get_results(
    template_id: int,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> List[dict]:
    """List a template's results; poll this until every result is terminal."""
    return [r.to_dict() for r in services.processor.get_results(user_id, template_id)]


@router.get("/templates/{template_id}/results/{result_id}")
async def get_result(
    template_id: int,
    result_id: int,
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> dict:
    return services.processor.get_result(user_id, template_id, result_id).to_dict()


@router.get("/templates/{template_id}/export")
async def export_template_results(
    template_id: int,
    export_format: str = Query(default=EXPORT_JSON, alias="format"),
    user_id: int = Depends(get_current_user),
    services: Services = Depends(get_services)
) -> Response:
    """
    Export the completed results of a template.

    Returns:
        Response: JSON or CSV document served as an attachment
    """
    results = services.processor.get_results(user_id, template_id)
    content = export_results(results, export_format)
    logger.info(f"Exported results of template {template_id} as {export_format}")
    return Response(
        content=content,
        media_type=EXPORT_MEDIA_TYPES[export_format],
        headers={
            "Content-Disposition": f'attachment; filename="template-{template_id}-results.{export_format}"'
        },
    )


@router.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Health status
    """
    return {"status": "healthy"}


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Service container (built from the configuration when omitted)

    Returns:
        FastAPI: The configured application
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.services.shutdown()

    app = FastAPI(
        title="Dual-Model Document Extraction",
        version="1.0.0",
        description="Extract form data from document images with two vision models and reconcile the results",
        lifespan=lifespan
    )
    app.state.services = services or build_services()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify allowed origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ProcessingError, processing_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=config.host,
        port=config.port
    )
