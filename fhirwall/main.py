import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from . import models, schemas, database
from .config import settings
from .context import FhirContext, get_context
from .errors import FhirError, MissingBodyError, MissingCriteriaError, UnknownResourceTypeError, UnparseableBodyError
from .fhir.assembler import ResponseAssembler
from .fhir.codec import CodecError
from .fhir.negotiation import Negotiation, input_format
from .fhir.outcomes import FhirResult
from .fhir.versioning import base_url, parse_etag
from .services.interactions import InteractionService
from .store.base import ResourceStore
from .store.factory import StoreFactory

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the resource table on startup when the SQL store is used"""
    if settings.store_backend.lower() == "sql":
        models.Base.metadata.create_all(bind=database.engine)
    context = get_context()
    logger.info(
        "Serving %d resource types from the '%s' store",
        len(context.known_resources), settings.store_backend
    )
    yield

# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="FHIR REST interaction layer over an external resource store",
    version="1.0.0",
    lifespan=lifespan
)

# ============================================================================
# ERROR HANDLERS
# ============================================================================

def register_error_handlers(app: FastAPI) -> None:
    """Render protocol errors through the same assembler as any other result."""

    @app.exception_handler(FhirError)
    async def fhir_error_handler(request: Request, exc: FhirError):
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        context = get_context()
        assembler = ResponseAssembler(context.codec, context.canned)
        return assembler.assemble(exc.result, Negotiation.from_request(request))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all, never leaks internal details."""
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        context = get_context()
        assembler = ResponseAssembler(context.codec, context.canned)
        return assembler.assemble(context.canned.result("internal_error"), Negotiation())

register_error_handlers(app)

# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_store(
    db: Session = Depends(database.get_db),
    context: FhirContext = Depends(get_context)
) -> ResourceStore:
    """Resource store bound to the request's database session"""
    return StoreFactory.create(db, context)


def get_service(
    request: Request,
    store: ResourceStore = Depends(get_store),
    context: FhirContext = Depends(get_context)
) -> InteractionService:
    return InteractionService(store, context, base_url(request))


def known_resource_type(resource_type: str, context: FhirContext = Depends(get_context)) -> str:
    """Reject resource types this deployment does not serve"""
    if resource_type not in context.known_resources:
        raise UnknownResourceTypeError(resource_type, context)
    return resource_type


async def resource_body(request: Request, context: FhirContext = Depends(get_context)) -> Optional[dict]:
    """Decoded request body, None when the request has no body"""
    raw = await request.body()
    if not raw or not raw.strip():
        return None
    fmt = input_format(request.headers.get("content-type"), raw)
    try:
        return context.codec.decode(raw, fmt)
    except CodecError as e:
        raise UnparseableBodyError(str(e), context)


def render(request: Request, context: FhirContext, result: FhirResult) -> Response:
    assembler = ResponseAssembler(context.codec, context.canned)
    return assembler.assemble(result, Negotiation.from_request(request), request.headers.get("prefer"))

# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health", response_model=schemas.HealthResponse)
def health_check(store: ResourceStore = Depends(get_store)):
    """
    Health check endpoint

    Verifies the server is running and reports which store it talks to.
    """
    return {"status": "ok", "store": store.get_store_name()}

@app.get("/metadata")
def metadata(
    request: Request,
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """CapabilityStatement (http://hl7.org/fhir/http.html#capabilities)"""
    return render(request, context, service.capabilities())

@app.get("/{resource_type}")
def search(
    request: Request,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Search (http://hl7.org/fhir/http.html#search)"""
    return render(request, context, service.search(resource_type, request.url.query))

@app.post("/{resource_type}")
def create_resource(
    request: Request,
    resource_type: str = Depends(known_resource_type),
    resource: Optional[dict] = Depends(resource_body),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """
    Create (http://hl7.org/fhir/http.html#create)

    With an If-None-Exist header the create only happens when no single
    resource already matches the header's search criteria.
    """
    if resource is None:
        raise MissingBodyError(context)
    result = service.create(resource_type, resource, request.headers.get("if-none-exist"))
    return render(request, context, result)

@app.put("/{resource_type}")
def conditional_update(
    request: Request,
    resource_type: str = Depends(known_resource_type),
    resource: Optional[dict] = Depends(resource_body),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Conditional update (http://hl7.org/fhir/http.html#cond-update)"""
    if resource is None:
        raise MissingBodyError(context)
    if not request.url.query:
        raise MissingCriteriaError("update", context)
    result = service.conditional_update(
        resource_type, request.url.query, resource, parse_etag(request.headers.get("if-match"))
    )
    return render(request, context, result)

@app.delete("/{resource_type}")
def conditional_delete(
    request: Request,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Conditional delete (http://hl7.org/fhir/http.html#cdelete)"""
    if not request.url.query:
        raise MissingCriteriaError("delete", context)
    return render(request, context, service.conditional_delete(resource_type, request.url.query))

@app.get("/{resource_type}/{resource_id}")
def read_resource(
    request: Request,
    resource_id: str,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Read (http://hl7.org/fhir/http.html#read), honouring _summary"""
    result = service.read(resource_type, resource_id, request.query_params.get("_summary"))
    return render(request, context, result)

@app.put("/{resource_type}/{resource_id}")
def update_resource(
    request: Request,
    resource_id: str,
    resource_type: str = Depends(known_resource_type),
    resource: Optional[dict] = Depends(resource_body),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """
    Update (http://hl7.org/fhir/http.html#update)

    Returns 200 when the resource existed and 201 when the update created
    it. An If-Match header is passed to the store as the expected version.
    """
    if resource is None:
        raise MissingBodyError(context)
    result = service.update(resource_type, resource_id, resource, parse_etag(request.headers.get("if-match")))
    return render(request, context, result)

@app.delete("/{resource_type}/{resource_id}")
def delete_resource(
    request: Request,
    resource_id: str,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Delete (http://hl7.org/fhir/http.html#delete), idempotent"""
    return render(request, context, service.delete(resource_type, resource_id))

@app.get("/{resource_type}/{resource_id}/_history")
def resource_history(
    request: Request,
    resource_id: str,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Instance history (http://hl7.org/fhir/http.html#history)"""
    return render(request, context, service.history(resource_type, resource_id))

@app.get("/{resource_type}/{resource_id}/_history/{version_id}")
def vread_resource(
    request: Request,
    resource_id: str,
    version_id: str,
    resource_type: str = Depends(known_resource_type),
    service: InteractionService = Depends(get_service),
    context: FhirContext = Depends(get_context)
):
    """Version read (http://hl7.org/fhir/http.html#vread)"""
    return render(request, context, service.vread(resource_type, resource_id, version_id))
