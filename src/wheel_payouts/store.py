from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from .draw import WheelConfig
from .participants import Participant, ParticipantQueue, SpinResult
from .project_constants import DEFAULT_TOKEN_ADDRESS
from .settlement import SettlementRecord

SESSION_VERSION = 1


@dataclass
class Session:
    config: WheelConfig = field(default_factory=WheelConfig)
    queue: ParticipantQueue = field(default_factory=ParticipantQueue)
    token_address: str = DEFAULT_TOKEN_ADDRESS
    settlements: List[SettlementRecord] = field(default_factory=list)


def _participant_to_dict(p: Participant) -> Dict[str, Any]:
    return {
        "wallet": p.wallet_address,
        "username": p.display_name,
        "redemption_id": p.redemption_id,
        "reward_id": p.reward_id,
    }


def _participant_from_dict(d: Dict[str, Any]) -> Participant:
    return Participant(
        wallet_address=d["wallet"],
        display_name=d.get("username") or "",
        redemption_id=d.get("redemption_id"),
        reward_id=d.get("reward_id"),
    )


def session_to_dict(session: Session) -> Dict[str, Any]:
    q = session.queue
    return {
        "version": SESSION_VERSION,
        "token_address": session.token_address,
        **session.config.to_dict(),
        "pending": [_participant_to_dict(p) for p in q.pending],
        "completed": [
            {
                **_participant_to_dict(r.participant),
                # Decimal as string; floats would drift.
                "prize": str(r.prize_value),
                "timestamp": r.timestamp.isoformat(),
            }
            for r in q.completed
        ],
        "total_enqueued": q.total_enqueued,
        "total_canceled": q.total_canceled,
        "settlements": [s.to_dict() for s in session.settlements],
    }


def session_from_dict(data: Dict[str, Any]) -> Session:
    config = WheelConfig(
        labels=list(data["segments"]),
        weights=list(data.get("weights") or []),
    )
    queue = ParticipantQueue()
    pending = [_participant_from_dict(p) for p in data.get("pending", [])]
    completed = [
        SpinResult(
            participant=_participant_from_dict(r),
            prize_value=Decimal(r["prize"]),
            timestamp=datetime.fromisoformat(r["timestamp"]),
        )
        for r in data.get("completed", [])
    ]
    queue.restore(
        pending,
        completed,
        total_enqueued=int(data.get("total_enqueued", len(pending) + len(completed))),
        total_canceled=int(data.get("total_canceled", 0)),
    )
    return Session(
        config=config,
        queue=queue,
        token_address=data.get("token_address") or DEFAULT_TOKEN_ADDRESS,
        settlements=[SettlementRecord.from_dict(s) for s in data.get("settlements", [])],
    )


def load_session(path: str) -> Session:
    if not os.path.exists(path):
        return Session()
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if data.get("version") != SESSION_VERSION:
        raise RuntimeError(f"{path}: unsupported session version {data.get('version')!r}")
    return session_from_dict(data)


def save_session(path: str, session: Session) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(session_to_dict(session), f, indent=2)
    os.replace(tmp, path)
