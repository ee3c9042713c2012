import logging
from contextlib import asynccontextmanager

import stripe
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from core.config import settings  # noqa: E402
from core.database import FirestoreError, close_gateway, create_gateway  # noqa: E402
from core.errors import AppError, UpstreamError  # noqa: E402
from core.security import build_token_verifier  # noqa: E402
from routes.admin import router as admin_router  # noqa: E402
from routes.checkout import router as checkout_router  # noqa: E402
from routes.deliverables import router as deliverables_router  # noqa: E402
from routes.invoices import router as invoices_router  # noqa: E402
from routes.organizations import router as organizations_router  # noqa: E402
from routes.payments import router as payments_router  # noqa: E402
from routes.projects import router as projects_router  # noqa: E402
from routes.public import router as public_router  # noqa: E402
from routes.subscriptions import router as subscriptions_router  # noqa: E402
from routes.webhooks import router as webhooks_router  # noqa: E402

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (store client + token verifier)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.gateway = create_gateway()
    app.state.token_verifier = build_token_verifier(app.state.gateway.client)
    logger.info(f"✅ Portal API started ({settings.ENVIRONMENT})")
    yield
    await close_gateway(app.state.gateway)
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Ownly Portal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# 🚨 Error rendering: always {"error": message}
# =========================================
@app.exception_handler(AppError)
async def handle_app_error(request: Request, exc: AppError):
    if isinstance(exc, UpstreamError):
        logger.error(f"❌ Upstream failure on {request.method} {request.url.path}: {exc.message} {exc.detail or ''}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    names = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        name = str(loc[-1]) if loc else "body"
        if name not in names:
            names.append(name)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"Missing or invalid fields: {', '.join(names)}"},
    )


@app.exception_handler(FirestoreError)
async def handle_store_error(request: Request, exc: FirestoreError):
    logger.error(f"❌ Firestore {exc.status_code} on {request.method} {request.url.path}: {exc.body}")
    return JSONResponse(
        status_code=UpstreamError.status_code,
        content={"error": UpstreamError.default_message},
    )


@app.exception_handler(stripe.StripeError)
async def handle_stripe_error(request: Request, exc: stripe.StripeError):
    logger.error(f"❌ Stripe error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=UpstreamError.status_code,
        content={"error": UpstreamError.default_message},
    )


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# =========================================
# 📦 Routers
# =========================================
app.include_router(organizations_router, prefix="/api/organizations")
app.include_router(projects_router, prefix="/api/projects")
app.include_router(deliverables_router, prefix="/api/deliverables")
app.include_router(invoices_router, prefix="/api/invoices")
app.include_router(payments_router, prefix="/api/payments")
app.include_router(subscriptions_router, prefix="/api/subscriptions")
app.include_router(admin_router, prefix="/api/admin")
app.include_router(checkout_router, prefix="/api/checkout")
app.include_router(public_router, prefix="/api/public")
app.include_router(webhooks_router, prefix="/api/hooks")  # ✅ Stripe webhooks


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Portal API is running"}
