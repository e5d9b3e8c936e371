from fastapi import FastAPI
from dotenv import load_dotenv

load_dotenv()
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from database import Base, engine
from datetime import datetime
import logging
import os
import models  # noqa: F401 (registers the ledger tables on Base.metadata)
import routers.payments as payments

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(log_dir: str) -> str:
    """Send INFO and above to a per-start log file and to the console. Returns the file path."""
    os.makedirs(log_dir, exist_ok=True)
    started = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = os.path.join(log_dir, f"app_{started}.log")

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, filename=log_file, filemode='a')

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(console)
    return log_file


LOG_FILE = configure_logging(os.getenv("LOG_DIR", "logs"))
logger = logging.getLogger(__name__)
logger.info(f"Payment ledger starting, logging to {LOG_FILE}")

# Alembic owns migrations in deployed databases; this only fills in missing tables
Base.metadata.create_all(bind=engine)


app = FastAPI(title="Internship Payment Ledger API")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(',')
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    schema = get_openapi(
        title="Internship Payment Ledger API",
        version="1.0.0",
        description="Installment (cicilan) tuition payments for internship registrations",
        routes=app.routes,
    )
    schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
    }
    # every route expects the registration service's bearer token
    schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = schema
    return app.openapi_schema

app.openapi = custom_openapi

app.include_router(payments.router)


@app.get("/")
async def root():
    return {"message": "Internship payment ledger is running"}
