"""
Tenant API schemas
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from tenancy.services.validator import ValidationReport


class TenantContextResponse(BaseModel):
    id: str
    name: str
    subdomain: Optional[str]
    custom_domain: Optional[str]
    schema_name: str
    plan: str
    row_counts: Dict[str, int]


class TenantSummary(BaseModel):
    id: str
    name: str
    subdomain: Optional[str]
    custom_domain: Optional[str]
    status: str
    schema_name: Optional[str]
    plan: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TenantListResponse(BaseModel):
    tenants: List[TenantSummary]
    total: int
    migrated: int


class TableCountResponse(BaseModel):
    source: int
    destination: Optional[int]
    skipped: int
    matches: bool


class ValidationResponse(BaseModel):
    tenant_id: str
    schema_name: str
    schema_exists: bool
    expected_tables: int
    found_tables: int
    missing_tables: List[str]
    missing_indexes: List[str]
    counts: Dict[str, TableCountResponse]
    mismatches: List[str]
    ok: bool

    @classmethod
    def from_report(cls, report: ValidationReport) -> "ValidationResponse":
        return cls(
            tenant_id=report.tenant_id,
            schema_name=report.schema_name,
            schema_exists=report.schema_exists,
            expected_tables=report.expected_tables,
            found_tables=report.found_tables,
            missing_tables=report.missing_tables,
            missing_indexes=report.missing_indexes,
            counts={
                name: TableCountResponse(
                    source=count.source,
                    destination=count.destination,
                    skipped=count.skipped,
                    matches=count.matches,
                )
                for name, count in report.counts.items()
            },
            mismatches=report.mismatches,
            ok=report.ok,
        )
