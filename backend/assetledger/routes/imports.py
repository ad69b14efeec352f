# Overview: Flask API routes for imports; parses input and returns JSON responses.

"""
Import Routes

Inventory can be sent as:
- JSON body {"rows": [...]}
- a raw text/csv body
- a multipart upload (field "file") of a .csv or .xlsx file
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..errors import ValidationError
from ..services import import_service


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


@imports_bp.post("/inventory")
@require_auth
def import_inventory_route():
    user_id = g.current_user.id

    if "file" in request.files:
        file = request.files["file"]
        ext = (file.filename or "").rsplit(".", 1)[-1].lower()
        if ext == "csv":
            try:
                text = file.stream.read().decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError("CSV file must be UTF-8 encoded")
            result = import_service.import_inventory_csv(user_id=user_id, text=text)
        elif ext in {"xlsx", "xlsm"}:
            result = import_service.import_inventory_xlsx(user_id=user_id, stream=file.stream)
        else:
            raise ValidationError("Unsupported file format", details={"allowed": ["csv", "xlsx"]})

    elif request.mimetype == "text/csv":
        result = import_service.import_inventory_csv(user_id=user_id, text=request.get_data(as_text=True))

    else:
        data = request.get_json(silent=True) or {}
        rows = data.get("rows")
        if not isinstance(rows, list):
            raise ValidationError("rows must be a list")
        result = import_service.import_inventory_rows(user_id=user_id, rows=rows)

    status = 201 if result["imported"] else 200
    return jsonify({"success": True, **result}), status
