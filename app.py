import os
import io
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Header, Request, Response, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sqlalchemy.orm import Session

import qrcode

from database import SessionLocal, init_db
from errors import (
    AddressOccupied, LedgerError, NonCompliantFarm, NotFound, TokenServiceError,
    Unauthorized, ValidationError,
)
from ledger import Ledger
import schemas
from schemas import (
    AddressOut, DDSReport, FarmPlotOut, HarvestBatchOut, RecordKind, RecordVerification,
    RegisterFarmPlot, RegisterHarvestBatch, StatusUpdateOut, UpdateBatchStatus, VerificationOut,
)
from tokens import get_token_service
from utils import farm_plot_address, harvest_batch_address, polygon_hash

# ---------- Config ----------
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="FarmTrace Ledger", version="0.5.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # restrict to known origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- DB ----------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_ledger(db: Session = Depends(get_db)) -> Ledger:
    return Ledger(db, token_service=get_token_service())

def get_caller(x_principal: Optional[str] = Header(None)) -> str:
    if not x_principal:
        raise HTTPException(status_code=401, detail="X-Principal header required")
    return x_principal

@app.on_event("startup")
def on_startup():
    init_db()

# ---------- Errors ----------
ERROR_STATUS = [
    (ValidationError, 400),
    (Unauthorized, 403),
    (NotFound, 404),
    (AddressOccupied, 409),
    (NonCompliantFarm, 422),
    (TokenServiceError, 502),
]

@app.exception_handler(LedgerError)
def ledger_error(request: Request, exc: LedgerError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 400)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": exc.code})

# ---------- APIs: farm plots ----------
@app.post("/api/plots", response_model=FarmPlotOut, status_code=201)
def register_farm_plot(body: RegisterFarmPlot, caller: str = Depends(get_caller),
                       ledger: Ledger = Depends(get_ledger)):
    address = ledger.register_farm_plot(
        caller,
        body.plot_id,
        body.farmer_name,
        body.location,
        body.geo_proof if body.geo_proof is not None else polygon_hash(body.polygon),
        body.area_hectares,
        body.commodity_type,
        body.registration_timestamp,
        validator=body.validator,
    )
    return FarmPlotOut(address=address, record=ledger.get_farm_plot(address))

@app.get("/api/plots", response_model=List[FarmPlotOut])
def list_farm_plots(farmer: Optional[str] = Query(None), ledger: Ledger = Depends(get_ledger)):
    return [FarmPlotOut(address=a, record=p) for a, p in ledger.list_farm_plots(farmer)]

@app.get("/api/plots/address", response_model=AddressOut)
def plot_address(plot_id: str, farmer: str):
    return AddressOut(kind=RecordKind.FARM_PLOT, address=farm_plot_address(plot_id, farmer))

@app.get("/api/plots/{address}", response_model=FarmPlotOut)
def get_farm_plot(address: str, ledger: Ledger = Depends(get_ledger)):
    return FarmPlotOut(address=address, record=ledger.get_farm_plot(address))

@app.post("/api/plots/{address}/validate", response_model=FarmPlotOut)
def validate_farm_plot(address: str, caller: str = Depends(get_caller), ledger: Ledger = Depends(get_ledger)):
    return FarmPlotOut(address=address, record=ledger.validate_farm_plot(caller, address))

@app.post("/api/plots/{address}/deactivate", response_model=FarmPlotOut)
def deactivate_farm_plot(address: str, caller: str = Depends(get_caller), ledger: Ledger = Depends(get_ledger)):
    return FarmPlotOut(address=address, record=ledger.deactivate_farm_plot(caller, address))

# ---------- APIs: verification ----------
@app.post("/api/plots/{address}/verifications", response_model=VerificationOut, status_code=201)
def record_satellite_verification(address: str, body: RecordVerification, caller: str = Depends(get_caller),
                                  ledger: Ledger = Depends(get_ledger)):
    v_addr = ledger.record_satellite_verification(
        caller, address, body.verification_hash, body.no_deforestation, body.verification_timestamp
    )
    return VerificationOut(address=v_addr, record=ledger.store.find(v_addr, RecordKind.VERIFICATION))

@app.get("/api/plots/{address}/verifications", response_model=List[VerificationOut])
def list_verifications(address: str, ledger: Ledger = Depends(get_ledger)):
    return [VerificationOut(address=a, record=v) for a, v in ledger.list_verifications(address)]

# ---------- APIs: harvest batches ----------
@app.post("/api/plots/{address}/batches", response_model=HarvestBatchOut, status_code=201)
def register_harvest_batch(address: str, body: RegisterHarvestBatch, caller: str = Depends(get_caller),
                           ledger: Ledger = Depends(get_ledger)):
    b_addr = ledger.register_harvest_batch(caller, address, body.batch_id, body.weight_kg, body.harvest_timestamp)
    return HarvestBatchOut(address=b_addr, record=ledger.get_harvest_batch(b_addr))

@app.get("/api/plots/{address}/batches", response_model=List[HarvestBatchOut])
def list_harvest_batches(address: str, ledger: Ledger = Depends(get_ledger)):
    return [HarvestBatchOut(address=a, record=b) for a, b in ledger.list_harvest_batches(address)]

@app.get("/api/batches/address", response_model=AddressOut)
def batch_address(batch_id: str, farmer: str):
    return AddressOut(kind=RecordKind.HARVEST_BATCH, address=harvest_batch_address(batch_id, farmer))

@app.get("/api/batches/{address}", response_model=HarvestBatchOut)
def get_harvest_batch(address: str, ledger: Ledger = Depends(get_ledger)):
    return HarvestBatchOut(address=address, record=ledger.get_harvest_batch(address))

@app.post("/api/batches/{address}/status", response_model=HarvestBatchOut)
def update_batch_status(address: str, body: UpdateBatchStatus, caller: str = Depends(get_caller),
                        ledger: Ledger = Depends(get_ledger)):
    batch = ledger.update_batch_status(
        caller, address, body.new_status, body.destination,
        update_timestamp=body.update_timestamp,
        compliance_status=body.compliance_status,
    )
    return HarvestBatchOut(address=address, record=batch)

@app.get("/api/batches/{address}/history", response_model=List[StatusUpdateOut])
def batch_history(address: str, ledger: Ledger = Depends(get_ledger)):
    return [StatusUpdateOut(address=a, record=u) for a, u in ledger.batch_history(address)]

@app.get("/api/batches/{address}/dds", response_model=DDSReport)
def generate_dds_data(address: str, plot: Optional[str] = Query(None, description="plot address; defaults to the batch's plot"),
                      ledger: Ledger = Depends(get_ledger)):
    if plot is None:
        plot = ledger.get_harvest_batch(address).farm_plot
    return ledger.generate_dds_data(address, plot)

@app.get("/api/batches/{address}/qrcode")
def batch_qrcode(address: str, ledger: Ledger = Depends(get_ledger)):
    ledger.get_harvest_batch(address)
    url = f"{BASE_URL}/api/batches/{address}/dds"
    img = qrcode.make(url)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")

# ---------- Audit log ----------
@app.get("/api/audit", response_model=schemas.AuditList)
def list_audit(
    address: Optional[str] = Query(None, description="only events for this record address"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    ledger: Ledger = Depends(get_ledger),
):
    items, total = ledger.audit.entries(address, page=page, page_size=page_size)
    return schemas.AuditList(
        items=[schemas.AuditEntry(**e) for e in items],
        total=total,
        page=page,
        page_size=page_size,
    )

@app.get("/api/audit/verify")
def verify_audit(ledger: Ledger = Depends(get_ledger)):
    ok, count = ledger.audit.verify()
    return {"verified": ok, "events": count}

@app.get("/health")
def health():
    return {"status": "ok"}
