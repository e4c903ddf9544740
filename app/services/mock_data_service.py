from functools import lru_cache
from pathlib import Path
import json
from typing import Dict, List, Optional, Any

from pydantic import BaseModel

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
LOAN_TYPES_PATH = DATA_DIR / "loan_types.json"
CUSTOMERS_PATH = DATA_DIR / "customers.json"


class LoanType(BaseModel):
    id: str
    name: str
    keywords: List[str] = []
    min_amount: int
    max_amount: int
    interest_rate: float
    tenure_months: List[int]


class LoanCatalog:
    """Ordered, read-only view over the loan products on offer."""

    def __init__(self, loan_types: List[LoanType]):
        self._items = list(loan_types)
        self._by_id = {lt.id: lt for lt in self._items}

    def __iter__(self):
        return iter(self._items)

    def __len__(self):
        return len(self._items)

    def get(self, loan_type_id: Optional[str]) -> Optional[LoanType]:
        if loan_type_id is None:
            return None
        return self._by_id.get(loan_type_id)

    @classmethod
    def from_dicts(cls, rows: List[Dict[str, Any]]) -> "LoanCatalog":
        return cls([LoanType(**row) for row in rows])


def _read_json(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def load_loan_catalog() -> LoanCatalog:
    return LoanCatalog.from_dicts(_read_json(LOAN_TYPES_PATH))


def load_customers() -> Dict[str, Dict[str, Any]]:
    return {c["pan"].upper(): c for c in _read_json(CUSTOMERS_PATH)}


def get_customer_by_pan(pan: str) -> Dict[str, Any] | None:
    customers = load_customers()
    return customers.get(pan.upper())
