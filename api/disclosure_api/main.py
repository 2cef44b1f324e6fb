import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from .routers import disclosures, buyer, analytics
from .config import LOG_LEVEL
from .db import init_db
from .errors import DisclosureError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Seller Disclosure API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(DisclosureError)
def handle_disclosure_error(request: Request, exc: DisclosureError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(disclosures.router, prefix="/api/disclosures", tags=["disclosures"])
app.include_router(buyer.router, prefix="/api/buyer", tags=["buyer"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])

@app.get("/")
def root():
    return {"ok": True, "service": "disclosure-api"}
