from __future__ import annotations

from .logging import get_logger
from .progress import add_default_rows
from .storage import (
    ACTIVATION_FILE,
    ALLOCATIONS_FILE,
    BLOCKS_FILE,
    COHORTS_FILE,
    COMPANIES_FILE,
    MODULES_FILE,
    PREREQUISITES_FILE,
    PROGRESS_FILE,
    TECHNICIANS_FILE,
    load_items,
    save_items,
    transaction,
)

logger = get_logger(__name__)

MODULES = [
    ("mod-01", "MOD-01", "Instalacao", "Instalacao TopSolid", 1, "Iniciante", True),
    ("mod-02", "MOD-02", "CAD", "TopSolid Design Basico", 3, "Iniciante", True),
    ("mod-03", "MOD-03", "CAD", "TopSolid Montagem", 2, "Intermediario", True),
    ("mod-04", "MOD-04", "CAD", "Detalhamento 2D", 2, "Intermediario", False),
    ("mod-05", "MOD-05", "CAM", "TopSolid CAM Basico", 3, "Intermediario", True),
    ("mod-06", "MOD-06", "CAM", "TopSolid CAM Avancado", 2, "Avancado", False),
]

COMPANIES = [
    ("comp-01", "Metal Forte", "Ativo", "Cliente industrial"),
    ("comp-02", "Usinagem Alpha", "Ativo", "Entrou em 2025"),
    ("comp-03", "Mecanica Beta", "Ativo", "Pendencia de instalacao"),
    ("comp-04", "Projeto Gama", "Inativo", "Conta em pausa"),
]

TECHNICIANS = [
    ("tech-01", "Carlos Lima", "Disponivel no periodo da manha", ["mod-01", "mod-02", "mod-03"]),
    ("tech-02", "Ana Souza", "Especialista em CAD/CAM", ["mod-02", "mod-03", "mod-05", "mod-06"]),
    ("tech-03", "Paulo Reis", "Foco em implantacao e consultoria", ["mod-01", "mod-04"]),
]

PROGRESS = [
    ("comp-01", "mod-01", "Concluido", "2025-12-10"),
    ("comp-01", "mod-02", "Concluido", "2026-01-12"),
    ("comp-02", "mod-01", "Concluido", "2026-01-03"),
    ("comp-02", "mod-02", "Planejado", None),
]

COHORTS = [
    ("coh-01", "TUR-001", "CAD Basico + Montagem", "2026-02-20", "tech-02", "Confirmada", 8),
    ("coh-02", "TUR-002", "Instalacao + CAD Basico", "2026-02-27", "tech-01", "Planejada", 10),
]

BLOCKS = [
    ("blk-001", "coh-01", "mod-02", 1, 1, 3),
    ("blk-002", "coh-01", "mod-03", 2, 4, 2),
    ("blk-003", "coh-02", "mod-01", 1, 1, 1),
    ("blk-004", "coh-02", "mod-02", 2, 2, 3),
]

ALLOCATIONS = [
    ("all-001", "coh-01", "comp-01", "mod-03", 4, "Confirmado", "Entrou no modulo de montagem"),
    ("all-002", "coh-02", "comp-03", "mod-01", 1, "Previsto", None),
]


def seed_demo_data() -> bool:
    """Carrega o catálogo de demonstração quando não há módulos cadastrados."""
    with transaction():
        if load_items(MODULES_FILE):
            return False

        save_items(
            MODULES_FILE,
            [
                {
                    "id": module_id,
                    "code": code,
                    "category": category,
                    "name": name,
                    "description": None,
                    "duration_days": duration,
                    "profile": profile,
                    "is_mandatory": mandatory,
                }
                for module_id, code, category, name, duration, profile, mandatory in MODULES
            ],
        )
        save_items(
            COMPANIES_FILE,
            [
                {
                    "id": company_id,
                    "name": name,
                    "status": status,
                    "notes": notes,
                    "priority": 0,
                    "priority_level": "Normal",
                    "contact_name": None,
                    "contact_phone": None,
                    "contact_email": None,
                    "modality": "Turma_Online",
                }
                for company_id, name, status, notes in COMPANIES
            ],
        )
        save_items(
            TECHNICIANS_FILE,
            [
                {"id": tech_id, "name": name, "availability_notes": notes, "module_ids": skills}
                for tech_id, name, notes, skills in TECHNICIANS
            ],
        )

        progress = []
        for index, (company_id, module_id, status, completed_at) in enumerate(PROGRESS, start=1):
            progress.append(
                {
                    "id": f"prog-{index:03d}",
                    "company_id": company_id,
                    "module_id": module_id,
                    "status": status,
                    "notes": None,
                    "completed_at": completed_at,
                    "custom_duration_days": None,
                }
            )
        activation: list = []
        for company in COMPANIES:
            for module in MODULES:
                add_default_rows(progress, activation, company[0], module[0])
        save_items(PROGRESS_FILE, progress)
        save_items(ACTIVATION_FILE, activation)

        save_items(
            COHORTS_FILE,
            [
                {
                    "id": cohort_id,
                    "code": code,
                    "name": name,
                    "start_date": start_date,
                    "technician_id": technician_id,
                    "status": status,
                    "capacity_companies": capacity,
                    "period": "Integral",
                    "delivery_mode": "Online",
                    "notes": None,
                }
                for cohort_id, code, name, start_date, technician_id, status, capacity in COHORTS
            ],
        )
        save_items(
            BLOCKS_FILE,
            [
                {
                    "id": block_id,
                    "cohort_id": cohort_id,
                    "module_id": module_id,
                    "order_in_cohort": order,
                    "start_day_offset": offset,
                    "duration_days": duration,
                }
                for block_id, cohort_id, module_id, order, offset, duration in BLOCKS
            ],
        )
        save_items(
            ALLOCATIONS_FILE,
            [
                {
                    "id": allocation_id,
                    "cohort_id": cohort_id,
                    "company_id": company_id,
                    "module_id": module_id,
                    "entry_day": entry_day,
                    "status": status,
                    "notes": notes,
                    "override_installation_prereq": False,
                    "override_reason": None,
                    "executed_at": None,
                }
                for allocation_id, cohort_id, company_id, module_id, entry_day, status, notes in ALLOCATIONS
            ],
        )
        save_items(
            PREREQUISITES_FILE,
            [
                {"module_id": module[0], "prerequisite_module_id": "mod-01"}
                for module in MODULES
                if module[1] != "MOD-01"
            ],
        )
    logger.info("Dados de demonstração carregados")
    return True
