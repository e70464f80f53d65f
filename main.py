from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from config import configure_logging, settings
from db import create_db_and_tables, engine
from responses import install_exception_handlers
from routers import admin, aadhaar, auth, donor, logistics, ngo, notifications

configure_logging()

app = FastAPI(
    title="GiveBridge",
    description="Surplus donation marketplace: donors list, NGOs claim, logistics partners deliver.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_exception_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    create_db_and_tables()
    with Session(engine) as session:
        aadhaar.seed_mock_aadhaar(session)


@app.get("/health")
def health_check():
    return {"success": True, "status": "healthy", "service": "givebridge"}


app.include_router(auth.router)
app.include_router(donor.router)
app.include_router(ngo.router)
app.include_router(logistics.router)
app.include_router(admin.router)
app.include_router(notifications.router)
app.include_router(aadhaar.router)
