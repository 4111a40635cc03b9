"""
Statutory rule tables used by the compliance checks.

Notice windows, quorum floors and legal citations differ per jurisdiction.
Two tables are built in (District of Columbia and a bylaws-based default);
further jurisdictions are read from the JSON file named by
``settings.jurisdiction_rules_file``:

{
    "VA": {
        "name": "Virginia",
        "notice_min_days": 14,
        "notice_max_days": 60,
        "quorum_floor_pct": 33.3,
        "citations": {
            "notice": {"rule": "Va. Code § 55.1-1949", "source": "statute"}
        }
    }
}
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

from app.config import settings
from app.models.election import ComplianceSource, ElectionType

logger = logging.getLogger(__name__)

DEFAULT_CODE = "DEFAULT"


class RuleCitation(BaseModel):
    rule: str
    source: ComplianceSource


class JurisdictionRules(BaseModel):
    code: str
    name: str
    notice_min_days: int = 10
    # Notice shorter than this is a failure, between this and the minimum a warning
    notice_warning_days: int = 7
    notice_max_days: int | None = 60
    quorum_floor_pct: float = 25.0
    quorum_floor_by_type: dict[ElectionType, float] = Field(default_factory=dict)
    majority_pct: float = 50.0
    supermajority_pct: float = 66.7
    citations: dict[str, RuleCitation] = Field(default_factory=dict)

    def quorum_floor(self, election_type: ElectionType) -> float:
        return self.quorum_floor_by_type.get(election_type, self.quorum_floor_pct)

    def citation(self, key: str, default_rule: str, default_source: ComplianceSource) -> RuleCitation:
        return self.citations.get(key) or RuleCitation(rule=default_rule, source=default_source)


BUILTIN_RULES = {
    "DC": JurisdictionRules(
        code="DC",
        name="District of Columbia",
        notice_min_days=10,
        notice_warning_days=7,
        notice_max_days=60,
        quorum_floor_pct=25.0,
        citations={
            "notice": RuleCitation(
                rule="DC Code § 29-1135.08: Written notice required 10+ days before vote",
                source=ComplianceSource.STATUTE,
            ),
            "quorum": RuleCitation(
                rule="DC Code § 29-1135.03: Quorum required for valid vote",
                source=ComplianceSource.STATUTE,
            ),
            "proxy": RuleCitation(
                rule="DC Code § 29-1135.10: Proxy voting requirements",
                source=ComplianceSource.STATUTE,
            ),
            "records": RuleCitation(
                rule="DC Code § 29-1135.13: Records retention",
                source=ComplianceSource.STATUTE,
            ),
            "secret_ballot": RuleCitation(
                rule="DC Code § 29-1135.09: Secret ballot for board elections",
                source=ComplianceSource.STATUTE,
            ),
        },
    ),
    DEFAULT_CODE: JurisdictionRules(
        code=DEFAULT_CODE,
        name="Governing documents",
        citations={
            "notice": RuleCitation(
                rule="Bylaws: Adequate notice required before vote",
                source=ComplianceSource.BYLAWS,
            ),
            "quorum": RuleCitation(
                rule="Bylaws: Quorum requirement",
                source=ComplianceSource.BYLAWS,
            ),
            "proxy": RuleCitation(
                rule="Bylaws: Proxy authorization requirements",
                source=ComplianceSource.BYLAWS,
            ),
            "records": RuleCitation(
                rule="Best practice: Retain vote records",
                source=ComplianceSource.BEST_PRACTICE,
            ),
            "secret_ballot": RuleCitation(
                rule="Best practice: Secret ballot",
                source=ComplianceSource.BEST_PRACTICE,
            ),
        },
    ),
}


def parse_rules_table(raw: dict) -> dict[str, JurisdictionRules]:
    table = {}
    for code, entry in raw.items():
        code = code.strip().upper()
        table[code] = JurisdictionRules.model_validate({"code": code, "name": code, **entry})
    return table


@lru_cache(maxsize=8)
def _load_rules(path: Path | None) -> dict[str, JurisdictionRules]:
    table = dict(BUILTIN_RULES)
    if path is None:
        return table
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    extra = parse_rules_table(raw)
    table.update(extra)
    logger.info("Loaded %d jurisdiction rule tables from %s", len(extra), path)
    return table


def load_jurisdiction_rules() -> dict[str, JurisdictionRules]:
    return _load_rules(settings.jurisdiction_rules_file)


def get_jurisdiction_rules(
    code: str | None,
    table: dict[str, JurisdictionRules] | None = None,
) -> JurisdictionRules:
    """Rules for a jurisdiction code, falling back to the bylaws-based default."""
    if table is None:
        table = load_jurisdiction_rules()
    key = (code or DEFAULT_CODE).strip().upper()
    if key in table:
        return table[key]
    default = table.get(DEFAULT_CODE, BUILTIN_RULES[DEFAULT_CODE])
    return default.model_copy(update={"code": key, "name": key})
