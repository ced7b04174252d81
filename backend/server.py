from fastapi import FastAPI, APIRouter, HTTPException, Depends
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, timezone

from cost_resolver import CostResolution
from costing_errors import CostingError, ItemNotFoundError, SnapshotNotLoadedError, EntityId
from costing_service import CostingService, InventoryCountLine
from line_calculator import DocumentTotals, LineResult, TaxSpec, compute_line

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'procurement_db')]

costing_service = CostingService(db)

app = FastAPI(title="Procurement Costing API")

# ==================== CORS CONFIGURATION ====================
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

cors_origins_env = os.environ.get('CORS_ORIGINS', '')
if cors_origins_env:
    cors_origins = [origin.strip() for origin in cors_origins_env.split(',') if origin.strip()]
else:
    cors_origins = DEFAULT_CORS_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
    max_age=600,
)


@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {
        "ok": True,
        "time": datetime.now(timezone.utc).isoformat(),
        "service": "Procurement Costing API",
        "catalog_loaded": costing_service.is_loaded,
    }


api_router = APIRouter(prefix="/api/costing")


def get_costing_service() -> CostingService:
    return costing_service


def raise_http(error: CostingError):
    if isinstance(error, ItemNotFoundError):
        raise HTTPException(status_code=404, detail=error.to_dict())
    if isinstance(error, SnapshotNotLoadedError):
        raise HTTPException(status_code=503, detail=error.to_dict())
    raise HTTPException(status_code=400, detail=error.to_dict())


# ==================== REQUEST MODELS ====================

class ResolveCostRequest(BaseModel):
    item_id: EntityId
    unit_id: Optional[EntityId] = None


class LineRequest(BaseModel):
    quantity: float = 0
    unit_cost: float = 0
    discount: float = 0
    tax: Optional[TaxSpec] = None


class AggregateRequest(BaseModel):
    lines: List[LineRequest] = []
    rounded: bool = True


class InventoryCountLineRequest(BaseModel):
    item_id: EntityId
    unit_id: Optional[EntityId] = None
    quantity: float = 0


class InventoryCountRequest(BaseModel):
    lines: List[InventoryCountLineRequest] = []
    language: str = Field(default="ar", pattern="^(ar|en)$")


class InventoryCountResponse(BaseModel):
    lines: List[InventoryCountLine]
    grand_total: float


# ==================== ROUTES ====================

@api_router.post("/reload")
async def reload_catalog(service: CostingService = Depends(get_costing_service)):
    """Re-read units and items and swap the snapshot"""
    info = await service.reload()
    logger.info(f"Catalog reloaded via API: {info}")
    return info


@api_router.post("/resolve-cost", response_model=CostResolution)
async def resolve_cost(data: ResolveCostRequest, service: CostingService = Depends(get_costing_service)):
    try:
        return service.resolve_cost(data.item_id, data.unit_id)
    except CostingError as e:
        raise_http(e)


@api_router.post("/lines", response_model=LineResult)
async def compute_line_endpoint(data: LineRequest):
    return compute_line(data.quantity, data.unit_cost, data.discount, data.tax)


@api_router.post("/documents/aggregate", response_model=DocumentTotals)
async def aggregate_document_endpoint(data: AggregateRequest, service: CostingService = Depends(get_costing_service)):
    lines = [compute_line(line.quantity, line.unit_cost, line.discount, line.tax) for line in data.lines]
    totals = service.summarize(lines)
    return totals.rounded() if data.rounded else totals


@api_router.post("/inventory-count-lines", response_model=InventoryCountResponse)
async def price_inventory_count(data: InventoryCountRequest, service: CostingService = Depends(get_costing_service)):
    try:
        lines = [
            service.price_inventory_count_line(line.item_id, line.unit_id, line.quantity, data.language)
            for line in data.lines
        ]
    except CostingError as e:
        raise_http(e)
    return InventoryCountResponse(lines=lines, grand_total=service.summarize_inventory_count(lines))


@api_router.get("/units/diagnostics")
async def unit_diagnostics(service: CostingService = Depends(get_costing_service)):
    try:
        return service.unit_diagnostics()
    except CostingError as e:
        raise_http(e)


app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    try:
        info = await costing_service.reload()
        logger.info(f"Catalog snapshot loaded at startup: {info}")
    except Exception as e:
        # API stays up; costing routes answer 503 until /api/costing/reload succeeds
        logger.error(f"Failed to load catalog snapshot at startup: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
