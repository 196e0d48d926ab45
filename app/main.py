import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.routers import departments, internal_requests, purchase_requests, uploads
from app.security.headers import install_security_headers
from app.security.identity import install_identity_middleware
from app.services.errors import InfrastructureError, ValidationError, WorkflowError
from app.services.schemas import validation_fields

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

app = FastAPI(title='Purchase Approval Portal')

install_security_headers(app)
install_identity_middleware(app)

app.include_router(purchase_requests.router)
app.include_router(internal_requests.router)
app.include_router(departments.router)
app.include_router(uploads.router)

# Stored documents are served from the same prefix LocalDocumentStore puts in their URLs.
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
app.mount(settings.upload_base_url.rstrip('/'), StaticFiles(directory=settings.upload_dir), name='uploads')


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_result(), status_code=exc.http_status)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = validation_fields(exc.errors())
    first_field, first_message = next(iter(fields.items()), ('request', 'invalid'))
    error = ValidationError(f'Invalid {first_field}: {first_message}', fields=fields)
    return JSONResponse(error.to_result(), status_code=error.http_status)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Storage failure on %s %s', request.method, request.url.path, exc_info=exc)
    error = InfrastructureError('Storage failure, please retry')
    return JSONResponse(error.to_result(), status_code=error.http_status)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
