"""JSON Schema contracts for identify and state payloads."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from functionary.errors import RecordValidationError

CONTRACTS_DIR = Path(__file__).resolve().parent / "contracts"


class PayloadContracts:
    """Validates outgoing payloads before they enter a batching cache."""

    def __init__(self, contracts_dir: Path = CONTRACTS_DIR) -> None:
        self._identify = _load_validator(contracts_dir / "identify.schema.json")
        self._state = _load_validator(contracts_dir / "state.schema.json")

    def check_identify(self, payload: dict[str, Any]) -> None:
        _check(self._identify, payload, "identify")

    def check_state(self, payload: dict[str, Any]) -> None:
        _check(self._state, payload, "state")


def _load_validator(path: Path) -> Draft202012Validator:
    schema = json.loads(path.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def _check(validator: Draft202012Validator, payload: dict[str, Any], kind: str) -> None:
    errors = sorted(validator.iter_errors(payload), key=str)
    if errors:
        details = "; ".join(err.message for err in errors)
        raise RecordValidationError(f"Invalid {kind} payload: {details}")
