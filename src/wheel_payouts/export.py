from __future__ import annotations

import os
from datetime import date
from typing import Optional, Sequence

from .errors import ValidationError
from .participants import SpinResult
from .project_constants import EXPORT_FILE_PREFIX, EXPORT_HEADER, TOKEN_TYPE


def render_payout_csv(results: Sequence[SpinResult], token_address: str) -> str:
    """
    Payout sheet for batch-transfer tools: header, then one row per result in
    log order. The id column is left empty. Same log in, same bytes out.
    """
    if not results:
        raise ValidationError("There are no results to export")
    lines = [EXPORT_HEADER]
    for r in results:
        lines.append(
            f"{TOKEN_TYPE},{token_address},{r.participant.wallet_address},{r.prize_value},"
        )
    return "\n".join(lines) + "\n"


def export_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"{EXPORT_FILE_PREFIX}_{day:%d%m}.csv"


def write_payout_csv(
    results: Sequence[SpinResult],
    token_address: str,
    directory: str = ".",
    day: Optional[date] = None,
) -> str:
    content = render_payout_csv(results, token_address)
    path = os.path.join(directory, export_filename(day))
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    return path
