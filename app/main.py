from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from scheduling.allocation_status import update_allocation_status
from scheduling.allocations import (
    allocate_company_by_entry_module,
    create_allocation,
    get_allocation_suggestions,
)
from scheduling.blocks import validate_blocks
from scheduling.cohorts import (
    create_cohort,
    delete_cohort,
    get_cohort,
    list_calendar_cohorts,
    list_cohorts,
    update_cohort,
)
from scheduling.companies import (
    create_company,
    delete_company,
    get_company_detail,
    list_companies,
    set_module_activation,
    update_company,
    update_priority,
    update_progress,
)
from scheduling.config import get_settings
from scheduling.conflicts import conflict_message, find_technician_conflict
from scheduling.logging import configure_logging, get_logger
from scheduling.modules import (
    create_module,
    delete_module,
    get_catalog,
    list_modules,
    set_prerequisites,
    update_module,
)
from scheduling.seed import seed_demo_data
from scheduling.storage import (
    CapacityError,
    ConflictError,
    NotFoundError,
    PrerequisiteError,
    SchedulingError,
    init_storage,
)
from scheduling.technicians import (
    create_technician,
    delete_technician,
    list_technicians,
    set_skills,
    technician_calendar,
    update_technician,
)

CohortStatus = Literal["Planejada", "Aguardando_quorum", "Confirmada", "Concluida", "Cancelada"]
AllocationStatus = Literal["Previsto", "Confirmado", "Executado", "Cancelado"]
ProgressStatus = Literal["Nao_iniciado", "Planejado", "Em_execucao", "Concluido"]
CompanyStatus = Literal["Ativo", "Inativo", "Em_treinamento", "Finalizado"]
PriorityLevel = Literal["Alta", "Normal", "Baixa", "Parado", "Aguardando_liberacao"]
Modality = Literal["Turma_Online", "Exclusivo_Online", "Presencial"]

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    init_storage()
    if get_settings().SEED_DEMO_DATA:
        seed_demo_data()
    yield


app = FastAPI(title="Programação de Turmas", lifespan=lifespan)


class CohortBlockIn(BaseModel):
    module_id: str
    order_in_cohort: int = Field(gt=0)
    start_day_offset: int = Field(gt=0)
    duration_days: int = Field(gt=0)


class CohortCreateIn(BaseModel):
    code: str = Field(min_length=3)
    name: str = Field(min_length=3)
    start_date: str = Field(min_length=10)
    technician_id: Optional[str] = None
    status: CohortStatus = "Planejada"
    capacity_companies: int = Field(gt=0)
    period: str = "Integral"
    delivery_mode: str = "Online"
    notes: Optional[str] = None
    blocks: List[CohortBlockIn] = Field(min_length=1)


class CohortUpdateIn(BaseModel):
    code: Optional[str] = Field(default=None, min_length=3)
    name: Optional[str] = Field(default=None, min_length=3)
    start_date: Optional[str] = Field(default=None, min_length=10)
    technician_id: Optional[str] = None
    status: Optional[CohortStatus] = None
    capacity_companies: Optional[int] = Field(default=None, gt=0)
    period: Optional[str] = None
    delivery_mode: Optional[str] = None
    notes: Optional[str] = None
    blocks: Optional[List[CohortBlockIn]] = Field(default=None, min_length=1)


class ConflictCheckIn(BaseModel):
    technician_id: str
    start_date: str = Field(min_length=10)
    status: CohortStatus = "Planejada"
    blocks: List[CohortBlockIn] = Field(min_length=1)
    exclude_cohort_id: Optional[str] = None


class AllocationIn(BaseModel):
    cohort_id: str
    company_id: str
    module_id: str
    entry_day: int = Field(gt=0)
    notes: Optional[str] = None


class GuidedAllocationIn(BaseModel):
    company_id: str
    entry_module_id: str
    module_ids: List[str] = Field(min_length=1)
    notes: Optional[str] = None


class AllocationStatusIn(BaseModel):
    status: AllocationStatus
    notes: Optional[str] = None
    override_installation_prereq: Optional[bool] = None
    override_reason: Optional[str] = None


class CompanyIn(BaseModel):
    name: str = Field(min_length=2)
    status: CompanyStatus = "Ativo"
    notes: Optional[str] = None
    priority: int = Field(default=0, ge=0, le=100)
    priority_level: PriorityLevel = "Normal"
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    modality: Modality = "Turma_Online"


class CompanyUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    status: Optional[CompanyStatus] = None
    notes: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=0, le=100)
    priority_level: Optional[PriorityLevel] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    modality: Optional[Modality] = None


class PriorityIn(BaseModel):
    priority: int = Field(ge=0, le=100)


class ActivationIn(BaseModel):
    is_enabled: bool


class ProgressIn(BaseModel):
    status: ProgressStatus
    completed_at: Optional[str] = None
    notes: Optional[str] = None


class TechnicianIn(BaseModel):
    name: str = Field(min_length=2)
    availability_notes: Optional[str] = None
    module_ids: List[str] = []


class TechnicianUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    availability_notes: Optional[str] = None
    module_ids: Optional[List[str]] = None


class SkillsIn(BaseModel):
    module_ids: List[str]


class ModuleIn(BaseModel):
    code: str = Field(min_length=3)
    category: str = Field(min_length=1)
    name: str = Field(min_length=2)
    description: Optional[str] = None
    duration_days: int = Field(gt=0)
    profile: Optional[str] = None
    is_mandatory: bool = False


class ModuleUpdateIn(BaseModel):
    code: Optional[str] = Field(default=None, min_length=3)
    category: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = None
    duration_days: Optional[int] = Field(default=None, gt=0)
    profile: Optional[str] = None
    is_mandatory: Optional[bool] = None


class PrerequisitesIn(BaseModel):
    prerequisite_module_ids: List[str]


def _error_body(exc: SchedulingError) -> Dict[str, Any]:
    return {"message": exc.message, "reason": exc.reason, "details": exc.details}


def _error_status(exc: SchedulingError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (ConflictError, CapacityError)):
        return 409
    return 400


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = _error_status(exc)
    logger.warning(
        "%s %s rejeitado: %s (%s)",
        request.method,
        request.url.path,
        exc.message,
        exc.reason,
        extra={"reason": exc.reason},
    )
    body = _error_body(exc)
    if isinstance(exc, PrerequisiteError):
        body["override_available"] = exc.override_available
    return JSONResponse(body, status_code=status_code)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/modules")
def modules_list():
    return list_modules()


@app.get("/admin/catalog")
def admin_catalog():
    return get_catalog()


@app.post("/admin/modules", status_code=201)
def admin_modules_create(payload: ModuleIn):
    module = create_module(payload.model_dump())
    return {"id": module["id"]}


@app.patch("/admin/modules/{module_id}")
def admin_modules_update(module_id: str, payload: ModuleUpdateIn):
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        return {"ok": True, "message": "Sem alterações"}
    update_module(module_id, updates)
    return {"ok": True}


@app.put("/admin/modules/{module_id}/prerequisites")
def admin_modules_prerequisites(module_id: str, payload: PrerequisitesIn):
    set_prerequisites(module_id, payload.prerequisite_module_ids)
    return {"ok": True}


@app.delete("/admin/modules/{module_id}")
def admin_modules_delete(module_id: str):
    delete_module(module_id)
    return {"ok": True}


@app.get("/companies")
def companies_list():
    return list_companies()


@app.post("/companies", status_code=201)
def companies_create(payload: CompanyIn):
    company = create_company(payload.model_dump())
    return {"id": company["id"]}


@app.get("/companies/{company_id}")
def companies_detail(company_id: str):
    return get_company_detail(company_id)


@app.patch("/companies/{company_id}")
def companies_update(company_id: str, payload: CompanyUpdateIn):
    update_company(company_id, payload.model_dump(exclude_unset=True))
    return {"ok": True}


@app.delete("/companies/{company_id}")
def companies_delete(company_id: str):
    delete_company(company_id)
    return {"ok": True}


@app.patch("/companies/{company_id}/priority")
def companies_priority(company_id: str, payload: PriorityIn):
    update_priority(company_id, payload.priority)
    return {"ok": True}


@app.patch("/companies/{company_id}/modules/{module_id}")
def companies_module_activation(company_id: str, module_id: str, payload: ActivationIn):
    set_module_activation(company_id, module_id, payload.is_enabled)
    return {"ok": True}


@app.patch("/companies/{company_id}/progress/{module_id}")
def companies_progress(company_id: str, module_id: str, payload: ProgressIn):
    update_progress(company_id, module_id, payload.status, payload.completed_at, payload.notes)
    return {"ok": True}


@app.get("/technicians")
def technicians_list():
    return list_technicians()


@app.post("/technicians", status_code=201)
def technicians_create(payload: TechnicianIn):
    technician = create_technician(payload.model_dump())
    return {"id": technician["id"]}


@app.patch("/technicians/{technician_id}")
def technicians_update(technician_id: str, payload: TechnicianUpdateIn):
    update_technician(technician_id, payload.model_dump(exclude_unset=True))
    return {"ok": True}


@app.patch("/technicians/{technician_id}/skills")
def technicians_skills(technician_id: str, payload: SkillsIn):
    set_skills(technician_id, payload.module_ids)
    return {"ok": True}


@app.delete("/technicians/{technician_id}")
def technicians_delete(technician_id: str):
    delete_technician(technician_id)
    return {"ok": True}


@app.get("/technicians/{technician_id}/calendar")
def technicians_calendar(technician_id: str, date_from: str = "", date_to: str = ""):
    return technician_calendar(technician_id, date_from.strip(), date_to.strip())


@app.get("/cohorts")
def cohorts_list():
    return list_cohorts()


@app.get("/calendar/cohorts")
def cohorts_calendar():
    return list_calendar_cohorts()


@app.post("/cohorts/check-technician-conflict")
def cohorts_check_conflict(payload: ConflictCheckIn):
    blocks = [block.model_dump() for block in payload.blocks]
    validate_blocks(blocks)
    conflict = find_technician_conflict(
        payload.technician_id,
        payload.start_date,
        blocks,
        exclude_cohort_id=payload.exclude_cohort_id,
        status=payload.status,
    )
    if not conflict:
        return {"has_conflict": False}
    return {
        "has_conflict": True,
        "message": conflict_message(conflict),
        "conflict": conflict.as_dict(),
    }


@app.post("/cohorts", status_code=201)
def cohorts_create(payload: CohortCreateIn):
    return create_cohort(payload.model_dump())


@app.get("/cohorts/{cohort_id}")
def cohorts_detail(cohort_id: str):
    return get_cohort(cohort_id)


@app.patch("/cohorts/{cohort_id}")
def cohorts_update(cohort_id: str, payload: CohortUpdateIn):
    result = update_cohort(cohort_id, payload.model_dump(exclude_unset=True))
    if not result["changed"]:
        return {"ok": True, "message": "Sem alterações"}
    return {"ok": True}


@app.delete("/cohorts/{cohort_id}")
def cohorts_delete(cohort_id: str):
    delete_cohort(cohort_id)
    return {"ok": True}


@app.post("/allocations", status_code=201)
def allocations_create(payload: AllocationIn):
    allocation = create_allocation(
        payload.cohort_id,
        payload.company_id,
        payload.module_id,
        payload.entry_day,
        payload.notes,
    )
    return {"ok": True, "id": allocation["id"]}


@app.post("/cohorts/{cohort_id}/allocate-company", status_code=201)
def cohorts_allocate_company(cohort_id: str, payload: GuidedAllocationIn):
    return allocate_company_by_entry_module(
        cohort_id,
        payload.company_id,
        payload.entry_module_id,
        payload.module_ids,
        payload.notes,
    )


@app.patch("/allocations/{allocation_id}/status")
def allocations_status(allocation_id: str, payload: AllocationStatusIn):
    return update_allocation_status(
        allocation_id,
        payload.status,
        notes=payload.notes,
        override_installation_prereq=payload.override_installation_prereq is True,
        override_reason=payload.override_reason,
    )


@app.get("/cohorts/{cohort_id}/suggestions/{module_id}")
def cohorts_suggestions(cohort_id: str, module_id: str):
    return get_allocation_suggestions(cohort_id, module_id)
