import os
import re
import time
import uuid
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from dotenv import load_dotenv
from pydantic import ValidationError
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import ClientDisconnect
from starlette.routing import Match
from errors import APIError, InvalidProductId, describe_validation_error
from models import Product, ProductNotFound, ProductStore, seeded_store
from schemas import ErrorResponse, ProductPayload

# Chargement des variables d'environnement
load_dotenv()

SERVICE_NAME = "products-service"
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
LOG_FILE = os.getenv("LOG_FILE", "logs.json")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

JSON_CONTENT_TYPE = "application/json"
GREETING = "Hello word \n"
GREETING_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
PRODUCTS_PREFIX = "/products"

_ID_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2 ** 63), 2 ** 63 - 1

# Config logging JSON (niveaux INFO, WARNING, ERROR)
logger.remove()
logger.add(
    sink=LOG_FILE,
    format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message} | {extra}",
    level=LOG_LEVEL,
    serialize=True,
    rotation="1 day",
)

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["service", "method", "endpoint"]
)
ERROR_COUNT = Counter(
    "http_errors_total",
    "Total HTTP errors",
    ["service", "endpoint", "error_type"]
)
PRODUCT_COUNT = Gauge(
    "products_in_store",
    "Number of products currently held in memory",
    ["service"]
)

app = FastAPI(title="Products Service")
app.state.store = seeded_store()


def get_store(request: Request) -> ProductStore:
    """Store injected into the product routes (overridable in tests)."""
    return request.app.state.store


def json_response(status_code: int, content) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


def error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    body = ErrorResponse(error=message).model_dump()
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def product_id_from_target(target: str) -> int:
    """
    Extract the product position from a request target such as ``/products/3``.

    The target must split on ``/`` into exactly three parts and the last one
    must be a base-10 integer; the query string, when present, is part of the
    target, so ``/products/3?x=1`` carries no identifier.
    """
    parts = target.split("/")
    if len(parts) != 3:
        raise InvalidProductId("not found")
    raw = parts[-1]
    if not _ID_PATTERN.fullmatch(raw):
        raise InvalidProductId("not id")
    product_id = int(raw)
    if product_id < _INT64_MIN or product_id > _INT64_MAX:
        raise InvalidProductId("not id")
    return product_id


def product_id_from_request(request: Request) -> int:
    # Chemin brut: "/products/%31" ne doit pas devenir l'id 1
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        target = request.url.path
    else:
        target = raw_path.decode("latin-1").split("?", 1)[0]
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return product_id_from_target(target)


async def read_payload(request: Request) -> ProductPayload:
    """Body read, content type check then JSON decoding, in that order."""
    try:
        body = await request.body()
    except ClientDisconnect:
        raise APIError(500, "client disconnected while sending the request body", "body_read")
    if request.headers.get("content-type") != JSON_CONTENT_TYPE:
        raise APIError(415, "content type 'application/json required", "unsupported_media_type")
    try:
        return ProductPayload.model_validate_json(body)
    except ValidationError as e:
        raise APIError(400, describe_validation_error(e), "bad_request")


def endpoint_label(request: Request) -> str:
    """Route template used as the metrics label, e.g. ``/products/{tail:path}``."""
    route = request.scope.get("route")
    if route is not None:
        return route.path
    partial = None
    for candidate in request.app.router.routes:
        match, _ = candidate.matches(request.scope)
        if match == Match.FULL:
            return candidate.path
        if match == Match.PARTIAL and partial is None:
            partial = candidate.path
    return partial or "unmatched"


def is_product_path(path: str) -> bool:
    return path == PRODUCTS_PREFIX or path.startswith(PRODUCTS_PREFIX + "/")


def record_store_size(store: ProductStore):
    PRODUCT_COUNT.labels(service=SERVICE_NAME).set(len(store))


record_store_size(app.state.store)


# Middleware pour logger les requests avec correlation ID
@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Generate or propagate correlation ID (trace-id)
    trace_id = request.headers.get("X-Trace-ID", str(uuid.uuid4()))
    start_time = time.time()

    with logger.contextualize(trace_id=trace_id, service=SERVICE_NAME):
        logger.bind(method=request.method, url=str(request.url)).info(
            f"Request: {request.method} {request.url.path}"
        )

        response = await call_next(request)

        latency = time.time() - start_time
        endpoint = endpoint_label(request)

        REQUEST_COUNT.labels(
            service=SERVICE_NAME,
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        REQUEST_LATENCY.labels(
            service=SERVICE_NAME,
            method=request.method,
            endpoint=endpoint
        ).observe(latency)

        logger.bind(status=response.status_code, latency=latency).info(
            f"Response status: {response.status_code}"
        )

        response.headers["X-Trace-ID"] = trace_id
        return response


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    logger.bind(status=exc.status_code, error_type=exc.error_type).warning(
        f"{request.method} {request.url.path} failed: {exc.message}"
    )
    ERROR_COUNT.labels(service=SERVICE_NAME, endpoint=endpoint_label(request), error_type=exc.error_type).inc()
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405 and not is_product_path(request.url.path):
        # Hors /products, toute méthode reçoit le message d'accueil
        return PlainTextResponse(GREETING)
    if exc.status_code == 405:
        message, error_type = "invalid method", "method_not_allowed"
    else:
        message, error_type = str(exc.detail), "http_error"
    logger.warning(f"{request.method} {request.url.path} rejected with {exc.status_code}")
    ERROR_COUNT.labels(service=SERVICE_NAME, endpoint=endpoint_label(request), error_type=error_type).inc()
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.get("/metrics")
async def metrics():
    """Endpoint /metrics compatible Prometheus"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health(store: ProductStore = Depends(get_store)):
    """Health check endpoint"""
    return {"status": "healthy", "service": SERVICE_NAME, "products": len(store)}


@app.get("/products")
@app.get("/products/{tail:path}")
async def get_products(request: Request, store: ProductStore = Depends(get_store)):
    """List every product, or return one when the path carries a valid position."""
    try:
        product_id = product_id_from_request(request)
    except InvalidProductId:
        logger.info("Fetching all products")
        return json_response(200, [p.model_dump() for p in store.list_all()])

    logger.info(f"Fetching product {product_id}")
    try:
        product = store.get(product_id)
    except ProductNotFound:
        raise APIError(404, "doesn't exist", "not_found")
    return json_response(200, product.model_dump())


@app.post("/products")
@app.post("/products/{tail:path}")
async def create_product(request: Request, store: ProductStore = Depends(get_store)):
    payload = await read_payload(request)
    product = store.append(Product(name=payload.name, price=payload.price))
    record_store_size(store)
    logger.info(f"Product created: {product.name}")
    return json_response(201, product.model_dump())


@app.api_route("/products", methods=["PUT", "PATCH"])
@app.api_route("/products/{tail:path}", methods=["PUT", "PATCH"])
async def update_product(request: Request, store: ProductStore = Depends(get_store)):
    """Partial update: only a non-empty name and a non-zero price are applied."""
    try:
        product_id = product_id_from_request(request)
    except InvalidProductId as e:
        raise APIError(404, str(e), "not_found")

    payload = await read_payload(request)
    try:
        product = store.merge(product_id, name=payload.name, price=payload.price)
    except ProductNotFound:
        raise APIError(404, "doesn't exist", "not_found")
    logger.info(f"Product {product_id} updated")
    return json_response(200, product.model_dump())


@app.delete("/products")
@app.delete("/products/{tail:path}")
async def delete_product(request: Request, store: ProductStore = Depends(get_store)):
    try:
        product_id = product_id_from_request(request)
    except InvalidProductId:
        raise APIError(404, "doesn't exist", "not_found")

    try:
        store.delete(product_id)
    except ProductNotFound:
        raise APIError(404, "doesn't exist", "not_found")
    record_store_size(store)
    logger.info(f"Product {product_id} deleted")
    return Response(status_code=204, media_type=JSON_CONTENT_TYPE)


# Route par défaut, doit rester la dernière
@app.api_route("/{full_path:path}", methods=GREETING_METHODS)
async def greeting():
    return PlainTextResponse(GREETING)


if __name__ == "__main__":
    logger.info(f"Starting Products Service on port {PORT}")
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
