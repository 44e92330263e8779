"""JSON Schema validation for incoming requests

Each request type declares the fields it needs as a JSON Schema Draft-07
object schema. Validation runs before a handler touches the message, so a
malformed request fails with a message naming the offending field.
"""

from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from download_router.frame import MessageType


class RequestValidationError(Exception):
    """Request validation failed"""
    def __init__(self, message_type: str, details: str):
        super().__init__(f"Invalid {message_type} request: {details}")
        self.message_type = message_type
        self.details = details


_NON_EMPTY_STRING = {"type": "string", "minLength": 1}
_OPTIONAL_STRING = {"type": ["string", "null"]}


REQUEST_SCHEMAS: Dict[MessageType, Dict[str, Any]] = {
    MessageType.GET_VERSION: {
        "type": "object",
    },
    MessageType.VERIFY_FOLDER: {
        "type": "object",
        "properties": {"path": _NON_EMPTY_STRING},
        "required": ["path"],
    },
    MessageType.CREATE_FOLDER: {
        "type": "object",
        "properties": {"path": _NON_EMPTY_STRING},
        "required": ["path"],
    },
    MessageType.LIST_FOLDERS: {
        "type": "object",
        "properties": {"path": _NON_EMPTY_STRING},
        "required": ["path"],
    },
    MessageType.MOVE_FILE: {
        "type": "object",
        "properties": {
            "source": _NON_EMPTY_STRING,
            "destination": _NON_EMPTY_STRING,
        },
        "required": ["source", "destination"],
    },
    MessageType.PICK_FOLDER: {
        "type": "object",
        "properties": {"startPath": _OPTIONAL_STRING},
    },
    MessageType.SHOW_SAVE_AS_DIALOG: {
        "type": "object",
        "properties": {
            "filename": _NON_EMPTY_STRING,
            "defaultDirectory": _OPTIONAL_STRING,
        },
        "required": ["filename"],
    },
}


class RequestValidator:
    """Request validator with cached compiled schemas"""

    def __init__(self, schemas: Optional[Dict[MessageType, Dict[str, Any]]] = None):
        self.schemas = dict(REQUEST_SCHEMAS if schemas is None else schemas)
        self._validators: Dict[MessageType, Draft7Validator] = {}

    def _validator_for(self, kind: MessageType) -> Optional[Draft7Validator]:
        if kind not in self._validators:
            schema = self.schemas.get(kind)
            if schema is None:
                return None
            Draft7Validator.check_schema(schema)
            self._validators[kind] = Draft7Validator(schema)
        return self._validators[kind]

    def validate(self, kind: MessageType, message: Dict[str, Any]) -> None:
        """Validate a request against the schema for its type

        Types without a schema are accepted as-is.

        Raises:
            RequestValidationError: If the message does not match
        """
        validator = self._validator_for(kind)
        if validator is None:
            return

        errors = sorted(validator.iter_errors(message), key=lambda e: list(e.path))
        if errors:
            details = "; ".join(_describe(e) for e in errors)
            raise RequestValidationError(kind.value, details)


def _describe(error) -> str:
    if error.path:
        field = ".".join(str(p) for p in error.path)
        return f"'{field}' {error.message}"
    return error.message
