"""CSV serialization for manufacturing exports.

Escaping rule: a field that contains a comma, a double quote, a carriage
return or a newline is wrapped in double quotes and embedded quotes are
doubled. ``None`` becomes an empty field. Rows end with ``\\n``.
"""

import io
from typing import Any, Iterable, Mapping, Sequence

MINT_COLUMNS = (
    "id",
    "batch_id",
    "batch_label",
    "public_token",
    "url",
    "claim_code_display",
    "claim_code",
)

EXPORT_COLUMNS = (
    "id",
    "public_token",
    "url",
    "claim_code",
    "claim_code_display",
    "batch_id",
    "batch_label",
)


_QUOTE_TRIGGERS = (",", '"', "\r", "\n")


def _cell(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    # A bare "\r" splits the row for most readers, so it is quoted as well
    if any(ch in text for ch in _QUOTE_TRIGGERS):
        return '"' + text.replace('"', '""') + '"'
    return text


def _line(cells: Iterable[Any]) -> str:
    return ",".join(_cell(cell) for cell in cells) + "\n"


def to_csv(columns: Sequence[str], rows: Iterable[Mapping[str, Any]]) -> str:
    """Render rows as CSV text with a header line.

    Args:
        columns: Column names, in output order
        rows: Mappings keyed by column name (missing keys render empty)

    Returns:
        CSV document, one line per row plus the header
    """
    buffer = io.StringIO()
    buffer.write(_line(columns))
    for row in rows:
        buffer.write(_line(row.get(column) for column in columns))
    return buffer.getvalue()
